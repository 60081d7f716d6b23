"""
事件总线
客户服务提交事务后发布住宿与账本事件，取消邮件、同步失败告警由订阅者处理；
订阅者的异常只记日志，已提交的业务结果不受影响
"""
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from collections import deque
import logging
import threading
import uuid

logger = logging.getLogger(__name__)

Handler = Callable[["Event"], None]


@dataclass
class Event:
    event_type: str  # EventType.value，如 customer.cancelled
    timestamp: datetime
    data: Dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class EventBus:
    """进程内单例；最近 100 条事件保留在 history 中供测试与排查"""

    _instance: Optional["EventBus"] = None
    _create_lock = threading.Lock()

    def __new__(cls):
        with cls._create_lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._handlers = {}
                instance._history = deque(maxlen=100)
                instance._lock = threading.Lock()
                cls._instance = instance
        return cls._instance

    def subscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: Event) -> None:
        """同步调用订阅者"""
        self._history.append(event)
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"{event.event_type} handler {handler.__name__} failed: {e}", exc_info=True)

    def get_history(self, event_type: Optional[str] = None, limit: int = 50) -> List[Event]:
        """最新的在前"""
        events = [e for e in reversed(self._history) if event_type is None or e.event_type == event_type]
        return events[:limit]

    def clear_subscribers(self) -> None:
        with self._lock:
            self._handlers.clear()

    def clear_history(self) -> None:
        self._history.clear()


event_bus = EventBus()
