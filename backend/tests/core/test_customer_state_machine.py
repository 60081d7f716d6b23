"""
状态机单元测试
"""
import pytest
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

from villa.core.state_machine import (
    StateMachine, StateMachineConfig, StateTransition,
    build_customer_state_machine, TRIGGER_CANCEL, TRIGGER_COMPLETE, TRIGGER_UNDO
)
from villa.models.ontology import CustomerStatus


class TestStateMachine:

    def _machine(self, effects=None):
        config = StateMachineConfig(
            name="Door",
            states=["closed", "open"],
            transitions=[
                StateTransition("closed", "open", "push", side_effects=effects or []),
                StateTransition("open", "closed", "pull",
                                condition=lambda ctx: not ctx.get("blocked", False)),
            ],
            initial_state="closed",
        )
        return StateMachine(config)

    def test_initial_state(self):
        assert self._machine().current_state == "closed"

    def test_transition_runs_side_effects(self):
        seen = []
        machine = self._machine(effects=[lambda ctx: seen.append(ctx["who"])])

        assert machine.transition_to("open", "push", {"who": "guest"}) is True

        assert machine.current_state == "open"
        assert seen == ["guest"]

    def test_rejected_transition_skips_side_effects(self):
        seen = []
        machine = self._machine(effects=[lambda ctx: seen.append(ctx)])
        machine.transition_to("open", "push")

        assert machine.transition_to("open", "push") is False
        assert len(seen) == 1

    def test_condition_blocks_transition(self):
        machine = self._machine()
        machine.transition_to("open", "push")

        assert machine.transition_to("closed", "pull", {"blocked": True}) is False
        assert machine.current_state == "open"
        assert machine.transition_to("closed", "pull") is True

    def test_unknown_trigger_or_state(self):
        machine = self._machine()
        assert machine.can_transition_to("open", "pull") is False
        assert machine.can_transition_to("ajar", "push") is False


class TestCustomerStateMachine:

    @pytest.mark.parametrize("balance,allowed", [
        (Decimal("0"), True),
        (Decimal("-50"), True),
        (Decimal("0.01"), False),
    ])
    def test_complete_requires_settled_balance(self, balance, allowed):
        machine = build_customer_state_machine("active")
        assert machine.can_transition_to("completed", TRIGGER_COMPLETE, {"balance": balance}) is allowed

    def test_undo_only_from_completed(self):
        assert build_customer_state_machine("completed").can_transition_to("active", TRIGGER_UNDO)
        assert not build_customer_state_machine("active").can_transition_to("active", TRIGGER_UNDO)

    @pytest.mark.parametrize("state,allowed", [
        ("active", True),
        ("completed", True),
        ("cancelled", False),
    ])
    def test_cancel(self, state, allowed):
        assert build_customer_state_machine(state).can_transition_to("cancelled", TRIGGER_CANCEL) is allowed

    def test_cancelled_is_terminal(self):
        machine = build_customer_state_machine("cancelled")
        for target, trigger in (("active", TRIGGER_UNDO), ("completed", TRIGGER_COMPLETE)):
            assert machine.transition_to(target, trigger, {"balance": 0}) is False
        assert machine.current_state == "cancelled"


class TestCustomerStatusStamps:

    def _customer(self, status):
        return SimpleNamespace(status=status, completed_at=None, cancelled_at=None)

    def test_complete_stamps_customer(self):
        customer = self._customer(CustomerStatus.ACTIVE)

        assert build_customer_state_machine("active").transition_to(
            "completed", TRIGGER_COMPLETE, {"customer": customer, "balance": Decimal("0")}
        )

        assert customer.status == CustomerStatus.COMPLETED
        assert customer.completed_at is not None

    def test_undo_clears_completed_at(self):
        customer = self._customer(CustomerStatus.COMPLETED)
        customer.completed_at = datetime(2024, 5, 15, 10, 0)

        build_customer_state_machine("completed").transition_to("active", TRIGGER_UNDO, {"customer": customer})

        assert customer.status == CustomerStatus.ACTIVE
        assert customer.completed_at is None

    def test_cancel_stamps_cancelled_at(self):
        customer = self._customer(CustomerStatus.COMPLETED)

        build_customer_state_machine("completed").transition_to("cancelled", TRIGGER_CANCEL, {"customer": customer})

        assert customer.status == CustomerStatus.CANCELLED
        assert customer.cancelled_at is not None

    def test_unsettled_balance_leaves_customer_untouched(self):
        customer = self._customer(CustomerStatus.ACTIVE)

        assert not build_customer_state_machine("active").transition_to(
            "completed", TRIGGER_COMPLETE, {"customer": customer, "balance": Decimal("10")}
        )
        assert customer.status == CustomerStatus.ACTIVE
        assert customer.completed_at is None
