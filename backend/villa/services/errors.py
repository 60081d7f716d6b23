"""
业务错误类型

全部继承 ValueError，路由层按类型映射到 HTTP 状态码：
ValidationError -> 400, ConflictError -> 409, NotFoundError -> 404。
SyncError 只在同步器内部出现，被记录后吞掉，不会传给调用方。
"""
from typing import Any, Dict, Optional


class BookingError(ValueError):
    """业务错误基类"""

    error_type = "booking_error"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.error_type,
            "message": self.message,
            "context": self.context,
        }


class ValidationError(BookingError):
    """输入不合法（缺字段、金额非正、日期倒置、退款超额等）"""

    error_type = "validation_error"


class ConflictError(BookingError):
    """日期区间冲突"""

    error_type = "conflict"

    def __init__(self, message: str, conflicting_booking_id: Optional[int] = None,
                 conflicting_customer_id: Optional[int] = None):
        super().__init__(message, {
            "conflicting_booking_id": conflicting_booking_id,
            "conflicting_customer_id": conflicting_customer_id,
        })
        self.conflicting_booking_id = conflicting_booking_id
        self.conflicting_customer_id = conflicting_customer_id


class NotFoundError(BookingError):
    """引用的客户/费用/预订不存在"""

    error_type = "not_found"


class SyncError(BookingError):
    """镜像写入失败（内部使用）"""

    error_type = "sync_error"
