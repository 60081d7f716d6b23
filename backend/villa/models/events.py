"""
领域事件定义
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Dict, Any


class EventType(str, Enum):
    """事件类型枚举"""
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_DATES_CHANGED = "customer.dates_changed"
    CUSTOMER_COMPLETED = "customer.completed"
    CUSTOMER_REOPENED = "customer.reopened"
    CUSTOMER_CANCELLED = "customer.cancelled"
    CUSTOMER_DELETED = "customer.deleted"

    DATES_BLOCKED = "calendar.blocked"
    DATES_UNBLOCKED = "calendar.unblocked"

    LEDGER_SYNC_FAILED = "ledger.sync_failed"


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（日期、金额转为字符串）"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, (datetime, date)):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
        return result


@dataclass
class CustomerCreatedData(BaseEventData):
    customer_id: int = 0
    name: str = ""
    email: Optional[str] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    total_amount: Decimal = Decimal("0")


@dataclass
class CustomerCancelledData(BaseEventData):
    """取消事件数据 - 取消确认邮件所需字段"""
    customer_id: int = 0
    name: str = ""
    email: Optional[str] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    original_received: Decimal = Decimal("0")
    refund_amount: Decimal = Decimal("0")
    remaining_balance: Decimal = Decimal("0")


@dataclass
class CustomerStatusData(BaseEventData):
    customer_id: int = 0
    old_status: str = ""
    new_status: str = ""


@dataclass
class LedgerSyncFailedData(BaseEventData):
    outbox_id: Optional[int] = None
    ledger_kind: str = ""
    operation: str = ""
    source_id: str = ""
    customer_id: Optional[int] = None
    error: str = ""
