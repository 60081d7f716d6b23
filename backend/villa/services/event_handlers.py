"""
事件处理器
订阅领域事件并执行外部副作用（邮件通知、告警日志）
"""
from datetime import date
from decimal import Decimal
from typing import Optional
import logging

from villa.config import settings
from villa.core.notification import NotificationChannelRegistry
from villa.models.events import EventType
from villa.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)


def _format_date(value: Optional[str]) -> str:
    if not value:
        return "-"
    return date.fromisoformat(value).strftime("%d %b %Y")


def _format_amount(value: Optional[str]) -> str:
    return f"₹{Decimal(value or '0'):,.2f}"


def render_cancellation_email(data: dict) -> tuple:
    """取消确认邮件：返回 (标题, 纯文本, HTML)"""
    villa_name = settings.VILLA_NAME
    subject = f"Booking Cancellation Confirmation - {villa_name}"
    rows = [
        ("Booking ID", str(data.get("customer_id"))),
        ("Check-In Date", _format_date(data.get("check_in"))),
        ("Check-Out Date", _format_date(data.get("check_out"))),
        ("Total Paid", _format_amount(data.get("original_received"))),
        ("Refund Amount", _format_amount(data.get("refund_amount"))),
    ]

    text_lines = [f"Dear {data.get('name', '')},", "",
                  "Your booking has been cancelled. Cancellation details:"]
    text_lines += [f"  {label}: {value}" for label, value in rows]
    text_lines += ["", "The refund will be processed within 5-7 business days to your original payment method.",
                   "", f"{villa_name}"]

    html_rows = "".join(
        f"<tr><td><strong>{label}</strong></td><td>{value}</td></tr>" for label, value in rows
    )
    html = (
        f"<h2>Dear {data.get('name', '')},</h2>"
        f"<p>Your booking has been cancelled. Below are the details of your cancellation:</p>"
        f"<table>{html_rows}</table>"
        f"<p>The refund will be processed within 5-7 business days to your original payment method.</p>"
        f"<p>&copy; {villa_name}</p>"
    )
    return subject, "\n".join(text_lines), html


class EventHandlers:
    """事件处理器集合"""

    def __init__(self, registry: Optional[NotificationChannelRegistry] = None):
        self._registry = registry or NotificationChannelRegistry()
        self._registered = False

    def handle_customer_cancelled(self, event: Event) -> None:
        """
        处理取消事件：向客人发送取消确认邮件

        客人没有邮箱或邮件渠道未注册时跳过
        """
        data = event.data
        email = data.get("email")
        if not email:
            logger.info(f"Customer {data.get('customer_id')} has no email, skip cancellation notice")
            return

        subject, text, html = render_cancellation_email(data)
        sent = self._registry.send("email", email, subject, text, html)
        if not sent:
            logger.warning(f"Cancellation email to {email} was not sent")

    def handle_ledger_sync_failed(self, event: Event) -> None:
        data = event.data
        logger.warning(
            f"Ledger mirror pending reconciliation: outbox={data.get('outbox_id')} "
            f"{data.get('ledger_kind')} {data.get('operation')} {data.get('source_id')}"
        )

    def register_handlers(self, event_bus_instance=None) -> None:
        """注册所有事件处理器"""
        if self._registered:
            return
        bus = event_bus_instance or event_bus
        bus.subscribe(EventType.CUSTOMER_CANCELLED.value, self.handle_customer_cancelled)
        bus.subscribe(EventType.LEDGER_SYNC_FAILED.value, self.handle_ledger_sync_failed)
        self._registered = True
        logger.info("Event handlers registered successfully")

    def unregister_handlers(self, event_bus_instance=None) -> None:
        """取消注册所有事件处理器（用于测试）"""
        bus = event_bus_instance or event_bus
        bus.unsubscribe(EventType.CUSTOMER_CANCELLED.value, self.handle_customer_cancelled)
        bus.unsubscribe(EventType.LEDGER_SYNC_FAILED.value, self.handle_ledger_sync_failed)
        self._registered = False


# 全局事件处理器实例
event_handlers = EventHandlers()


def register_event_handlers():
    """注册所有事件处理器（应用启动时调用）"""
    event_handlers.register_handlers()
