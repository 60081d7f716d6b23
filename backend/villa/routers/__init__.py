from villa.routers import auth, bookings, customers, ledgers

__all__ = ["auth", "bookings", "customers", "ledgers"]
