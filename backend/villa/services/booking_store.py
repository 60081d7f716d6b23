"""
预订占用存储
一条 Occupancy 表示一段预留区间，OccupancyNight 按夜晚展开，
night 的唯一约束保证同一夜不会被两条记录占用
"""
import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from villa.models.ontology import Occupancy, OccupancyNight, OccupancyType
from villa.services.date_utils import month_bounds, nights_in_range
from villa.services.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


class BookingStore:
    """
    占用记录的读写入口

    reserve 不做可用性校验，调用方必须先通过 AvailabilityChecker；
    release 按区间精确匹配，不存在时为空操作
    """

    def __init__(self, db: Session):
        self.db = db

    def reserve(self, check_in: date, check_out: date, customer_id: Optional[int] = None,
                occupant_count: int = 0, reason: Optional[str] = None) -> Occupancy:
        """预留 [check_in, check_out)；customer_id 为空时记为封锁"""
        if check_out <= check_in:
            raise ValidationError("离店日期必须晚于入住日期")

        occupancy = Occupancy(
            customer_id=customer_id,
            check_in=check_in,
            check_out=check_out,
            occupant_count=occupant_count,
            booking_type=OccupancyType.CUSTOMER if customer_id is not None else OccupancyType.BLOCKED,
            reason=reason,
        )
        occupancy.nights = [OccupancyNight(night=n) for n in nights_in_range(check_in, check_out)]
        self.db.add(occupancy)

        try:
            self.db.flush()
        except IntegrityError:
            # 并发写入者抢先占用了某个夜晚
            self.db.rollback()
            logger.warning(f"Night collision while reserving {check_in}..{check_out}")
            raise ConflictError("所选日期已被占用")
        except OperationalError as e:
            # SQLite 快照过期：另一个连接已提交写入
            if "locked" not in str(e.orig):
                raise
            self.db.rollback()
            logger.warning(f"Calendar changed concurrently while reserving {check_in}..{check_out}")
            raise ConflictError("所选日期已被占用")

        logger.info(
            f"Reserved {check_in}..{check_out} "
            f"({occupancy.booking_type.value}, customer={customer_id}, occupancy={occupancy.id})"
        )
        return occupancy

    def release(self, check_in: date, check_out: date, customer_id: Optional[int] = None) -> int:
        """
        释放与区间完全一致的占用记录

        指定 customer_id 时只匹配该客户的记录，否则只匹配封锁记录。
        返回释放的条数，0 表示本来就不存在。
        """
        query = self.db.query(Occupancy).filter(
            Occupancy.check_in == check_in,
            Occupancy.check_out == check_out,
        )
        if customer_id is not None:
            query = query.filter(Occupancy.customer_id == customer_id)
        else:
            query = query.filter(Occupancy.booking_type == OccupancyType.BLOCKED)

        released = 0
        for occupancy in query.all():
            self.db.delete(occupancy)
            released += 1

        if released:
            self.db.flush()
            logger.info(f"Released {released} occupancy record(s) for {check_in}..{check_out}")
        return released

    def release_customer(self, customer_id: int) -> int:
        """释放某客户名下的全部占用"""
        released = 0
        for occupancy in self.get_for_customer(customer_id):
            self.db.delete(occupancy)
            released += 1
        if released:
            self.db.flush()
        return released

    def get_for_customer(self, customer_id: int) -> List[Occupancy]:
        return self.db.query(Occupancy).filter(Occupancy.customer_id == customer_id).all()

    def find_overlapping(self, check_in: date, check_out: date) -> List[Occupancy]:
        """所有与 [check_in, check_out) 有交集的占用，按入住日期排序"""
        return self.db.query(Occupancy).filter(
            Occupancy.check_in < check_out,
            Occupancy.check_out > check_in,
        ).order_by(Occupancy.check_in, Occupancy.id).all()

    def query_by_month(self, year: int, month: int) -> List[Occupancy]:
        """与指定月份有交集的占用记录，month 从 1 开始"""
        try:
            start, end = month_bounds(year, month)
        except ValueError as e:
            raise ValidationError(str(e))
        return self.find_overlapping(start, end)

    def set_occupant_count(self, customer_id: int, occupant_count: int) -> None:
        for occupancy in self.get_for_customer(customer_id):
            occupancy.occupant_count = occupant_count
