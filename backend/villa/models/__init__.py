# Domain Models
from villa.models.ontology import (
    Customer, GroupMember, ExtraCharge, CustomerPayment, Refund,
    Occupancy, OccupancyNight, Expense, Sale, SyncOutbox, Employee
)

__all__ = [
    'Customer', 'GroupMember', 'ExtraCharge', 'CustomerPayment', 'Refund',
    'Occupancy', 'OccupancyNight', 'Expense', 'Sale', 'SyncOutbox', 'Employee'
]
