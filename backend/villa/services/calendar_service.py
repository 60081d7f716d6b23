"""
日历服务 - 月视图、可用性查询、管理员封锁/解封
"""
from datetime import date, datetime
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from villa.models.events import EventType
from villa.models.ontology import Customer, Occupancy
from villa.services.availability_service import AvailabilityChecker, AvailabilityResult
from villa.services.booking_store import BookingStore
from villa.services.event_bus import Event, event_bus

logger = logging.getLogger(__name__)


class CalendarService:
    """日历服务"""

    def __init__(self, db: Session):
        self.db = db
        self.store = BookingStore(db)
        self.checker = AvailabilityChecker(db, self.store)

    def month_view(self, year: int, month: int) -> List[dict]:
        """与指定月份有交集的占用，附带客户姓名"""
        occupancies = self.store.query_by_month(year, month)
        customer_ids = {o.customer_id for o in occupancies if o.customer_id is not None}
        names = {}
        if customer_ids:
            names = dict(self.db.query(Customer.id, Customer.name).filter(Customer.id.in_(customer_ids)).all())
        return [
            {
                "id": o.id,
                "customer_id": o.customer_id,
                "check_in": o.check_in,
                "check_out": o.check_out,
                "occupant_count": o.occupant_count,
                "booking_type": o.booking_type,
                "reason": o.reason,
                "customer_name": names.get(o.customer_id),
            }
            for o in occupancies
        ]

    def check_availability(self, check_in: date, check_out: date,
                           exclude_booking_id: Optional[int] = None,
                           exclude_customer_id: Optional[int] = None) -> AvailabilityResult:
        return self.checker.check(check_in, check_out, exclude_booking_id, exclude_customer_id)

    def block_dates(self, check_in: date, check_out: date, reason: Optional[str] = None) -> Occupancy:
        """封锁日期；与任何已有占用冲突时抛出 ConflictError"""
        with self.checker.guarded():
            occupancy = self.checker.reserve_if_available(check_in, check_out, reason=reason)
            self.db.commit()
        self.db.refresh(occupancy)

        event_bus.publish(Event(
            event_type=EventType.DATES_BLOCKED.value,
            timestamp=datetime.now(),
            data={"occupancy_id": occupancy.id, "check_in": check_in.isoformat(),
                  "check_out": check_out.isoformat(), "reason": reason},
            source="calendar_service",
        ))
        return occupancy

    def unblock_dates(self, check_in: date, check_out: date) -> int:
        """解封与区间完全一致的封锁记录；不存在时为空操作"""
        with self.checker.guarded():
            released = self.store.release(check_in, check_out)
            self.db.commit()

        if released:
            event_bus.publish(Event(
                event_type=EventType.DATES_UNBLOCKED.value,
                timestamp=datetime.now(),
                data={"check_in": check_in.isoformat(), "check_out": check_out.isoformat(),
                      "released": released},
                source="calendar_service",
            ))
        return released
