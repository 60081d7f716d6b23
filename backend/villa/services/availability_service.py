"""
可用性检查
检查候选区间是否与现有占用（客户预订或封锁）冲突，
并提供"检查 + 预留"的原子原语
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session

from villa.models.ontology import Occupancy
from villa.services.booking_store import BookingStore
from villa.services.date_utils import overlaps
from villa.services.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

# 日历写锁：同一进程内串行化"检查 + 预留"，跨进程由 night 唯一约束兜底
_calendar_lock = threading.RLock()
_lock_depth = threading.local()


@dataclass
class AvailabilityResult:
    """可用性检查结果"""
    available: bool
    conflicting_booking_id: Optional[int] = None
    conflicts: List[Occupancy] = field(default_factory=list)


class AvailabilityChecker:
    """可用性检查服务"""

    def __init__(self, db: Session, store: Optional[BookingStore] = None):
        self.db = db
        self.store = store or BookingStore(db)

    @contextmanager
    def guarded(self) -> Iterator[None]:
        """
        持有日历写锁；调用方应在锁内完成读取、检查、预留与提交

        最外层加锁时先提交会话中已开启的事务，锁内的检查从新快照读取，
        能看到其他会话在等锁期间提交的占用
        """
        with _calendar_lock:
            depth = getattr(_lock_depth, "value", 0)
            _lock_depth.value = depth + 1
            try:
                if depth == 0 and self.db.in_transaction():
                    self.db.commit()
                yield
            except Exception:
                # 锁内失败的修改不能被下一次加锁时的提交带出去
                if depth == 0:
                    self.db.rollback()
                raise
            finally:
                _lock_depth.value = depth

    def check(self, check_in: date, check_out: date,
              exclude_booking_id: Optional[int] = None,
              exclude_customer_id: Optional[int] = None) -> AvailabilityResult:
        """
        检查 [check_in, check_out) 是否可用

        Args:
            exclude_booking_id: 忽略的占用记录 ID
            exclude_customer_id: 忽略该客户名下的占用（修改自身日期时使用）
        """
        if check_in is None or check_out is None:
            raise ValidationError("入住和离店日期不能为空")
        if check_out <= check_in:
            raise ValidationError("离店日期必须晚于入住日期")

        conflicts = []
        for occupancy in self.store.find_overlapping(check_in, check_out):
            if exclude_booking_id is not None and occupancy.id == exclude_booking_id:
                continue
            if exclude_customer_id is not None and occupancy.customer_id == exclude_customer_id:
                continue
            if overlaps(check_in, check_out, occupancy.check_in, occupancy.check_out):
                conflicts.append(occupancy)

        if conflicts:
            return AvailabilityResult(
                available=False,
                conflicting_booking_id=conflicts[0].id,
                conflicts=conflicts,
            )
        return AvailabilityResult(available=True)

    def reserve_if_available(self, check_in: date, check_out: date,
                             customer_id: Optional[int] = None,
                             occupant_count: int = 0,
                             reason: Optional[str] = None) -> Occupancy:
        """原子地检查并预留；冲突时抛出 ConflictError 且不写入任何记录"""
        with self.guarded():
            result = self.check(check_in, check_out)
            if not result.available:
                raise self.conflict_error(result)
            return self.store.reserve(check_in, check_out, customer_id, occupant_count, reason)

    def move_reservation(self, customer_id: int, new_check_in: date, new_check_out: date,
                         occupant_count: int = 0) -> Occupancy:
        """
        把客户的占用移动到新区间

        检查时排除客户自己的旧占用；释放旧区间与预留新区间在同一事务中，
        新区间预留失败时由调用方回滚，旧占用保持不变
        """
        with self.guarded():
            result = self.check(new_check_in, new_check_out, exclude_customer_id=customer_id)
            if not result.available:
                raise self.conflict_error(result)
            self.store.release_customer(customer_id)
            return self.store.reserve(new_check_in, new_check_out, customer_id, occupant_count)

    def conflict_error(self, result: AvailabilityResult) -> ConflictError:
        blocker = result.conflicts[0]
        logger.info(
            f"Availability conflict with occupancy {blocker.id} "
            f"({blocker.check_in}..{blocker.check_out}, customer={blocker.customer_id})"
        )
        if blocker.customer_id is None:
            message = "所选日期已被封锁"
        else:
            message = "所选日期已被预订"
        return ConflictError(
            message,
            conflicting_booking_id=blocker.id,
            conflicting_customer_id=blocker.customer_id,
        )
