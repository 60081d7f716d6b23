"""
事件总线单元测试
"""
import pytest
from datetime import date, datetime
from decimal import Decimal

from villa.models.events import CustomerCancelledData, EventType
from villa.services.event_bus import EventBus, Event


@pytest.fixture
def bus():
    bus = EventBus()
    bus.clear_subscribers()
    bus.clear_history()
    return bus


@pytest.fixture
def cancelled_event():
    return Event(
        event_type=EventType.CUSTOMER_CANCELLED.value,
        timestamp=datetime.now(),
        data={"customer_id": 1},
        source="test",
    )


class TestEventBus:

    def test_singleton(self):
        assert EventBus() is EventBus()

    def test_subscribe_and_publish(self, bus, cancelled_event):
        received = []
        bus.subscribe("customer.cancelled", received.append)

        bus.publish(cancelled_event)

        assert received == [cancelled_event]

    def test_duplicate_subscription_ignored(self, bus, cancelled_event):
        received = []

        def handler(event):
            received.append(event)

        bus.subscribe(EventType.CUSTOMER_CANCELLED.value, handler)
        bus.subscribe(EventType.CUSTOMER_CANCELLED.value, handler)
        bus.publish(cancelled_event)

        assert len(received) == 1

    def test_unsubscribe(self, bus, cancelled_event):
        received = []

        def handler(event):
            received.append(event)

        bus.subscribe(EventType.CUSTOMER_CANCELLED.value, handler)
        bus.unsubscribe(EventType.CUSTOMER_CANCELLED.value, handler)
        bus.publish(cancelled_event)

        assert received == []

    def test_handler_exception_isolation(self, bus, cancelled_event):
        """处理器异常不影响其他处理器与发布方"""
        calls = []

        def failing_handler(event):
            raise RuntimeError("smtp down")

        def working_handler(event):
            calls.append(event.event_id)

        bus.subscribe(EventType.CUSTOMER_CANCELLED.value, failing_handler)
        bus.subscribe(EventType.CUSTOMER_CANCELLED.value, working_handler)
        bus.publish(cancelled_event)

        assert calls == [cancelled_event.event_id]

    def test_history_newest_first(self, bus):
        for i in range(3):
            bus.publish(Event(event_type="calendar.blocked", timestamp=datetime.now(),
                              data={"n": i}, source="test"))
        bus.publish(Event(event_type="calendar.unblocked", timestamp=datetime.now(), data={}, source="test"))

        history = bus.get_history("calendar.blocked", limit=2)
        assert [e.data["n"] for e in history] == [2, 1]
        assert len(bus.get_history()) == 4


class TestEventData:

    def test_to_dict_serializes_dates_and_amounts(self):
        data = CustomerCancelledData(
            customer_id=3, name="Asha", check_in=date(2024, 5, 10),
            refund_amount=Decimal("4000.00"),
        ).to_dict()

        assert data["check_in"] == "2024-05-10"
        assert data["refund_amount"] == "4000.00"
        assert data["check_out"] is None
        assert isinstance(data["timestamp"], str)
