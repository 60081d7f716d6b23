"""
core/state_machine.py

状态机 - 状态转换校验与副作用
"""
from datetime import datetime
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass, field
import logging

from villa.models.ontology import CustomerStatus

logger = logging.getLogger(__name__)


@dataclass
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
        condition: 可选的转换条件
        side_effects: 转换成功后按顺序执行，接收同一个 context
    """

    from_state: str
    to_state: str
    trigger: str
    condition: Optional[Callable[[Dict[str, Any]], bool]] = None
    side_effects: List[Callable[[Dict[str, Any]], None]] = field(default_factory=list)

    def is_allowed(self, context: Dict[str, Any]) -> bool:
        if self.condition is None:
            return True
        return bool(self.condition(context))

    def execute_side_effects(self, context: Dict[str, Any]) -> None:
        for effect in self.side_effects:
            effect(context)


@dataclass
class StateMachineConfig:
    name: str
    states: List[str]
    transitions: List[StateTransition]
    initial_state: str


class StateMachine:
    """
    状态机

    Example:
        >>> machine = build_customer_state_machine(customer.status.value)
        >>> machine.transition_to("completed", "complete", {"customer": customer, "balance": 0})
    """

    def __init__(self, config: StateMachineConfig, state: Optional[str] = None):
        self._config = config
        self._current_state = state if state is not None else config.initial_state
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}

        # (from_state, trigger) -> transition
        for t in config.transitions:
            self._transition_map.setdefault(t.from_state, {})[t.trigger] = t

    @property
    def current_state(self) -> str:
        return self._current_state

    def find_transition(self, trigger: str) -> Optional[StateTransition]:
        return self._transition_map.get(self._current_state, {}).get(trigger)

    def can_transition_to(self, target_state: str, trigger: str,
                          context: Optional[Dict[str, Any]] = None) -> bool:
        """
        检查是否可以转换到目标状态

        Args:
            target_state: 目标状态
            trigger: 触发动作
            context: 转换条件所需的上下文

        Returns:
            True 如果转换被允许
        """
        if target_state not in self._config.states:
            return False

        transition = self.find_transition(trigger)
        if transition is None or transition.to_state != target_state:
            return False

        return transition.is_allowed(context or {})

    def transition_to(self, target_state: str, trigger: str,
                      context: Optional[Dict[str, Any]] = None) -> bool:
        """执行状态转换并运行副作用，不允许时返回 False 且状态不变"""
        context = context or {}
        if not self.can_transition_to(target_state, trigger, context):
            logger.warning(
                f"Invalid transition: {self._current_state} -> {target_state} (trigger: {trigger})"
            )
            return False

        transition = self.find_transition(trigger)
        previous_state = self._current_state
        self._current_state = target_state
        transition.execute_side_effects(context)

        logger.info(f"{self._config.name} transition: {previous_state} -> {target_state} (trigger: {trigger})")
        return True


# ============== 客户状态 ==============

TRIGGER_COMPLETE = "complete"
TRIGGER_UNDO = "undo"
TRIGGER_CANCEL = "cancel"


def _balance_settled(context: Dict[str, Any]) -> bool:
    return context.get("balance", 0) <= 0


def _stamp_completed(context: Dict[str, Any]) -> None:
    customer = context.get("customer")
    if customer is not None:
        customer.status = CustomerStatus.COMPLETED
        customer.completed_at = datetime.utcnow()


def _reopen(context: Dict[str, Any]) -> None:
    customer = context.get("customer")
    if customer is not None:
        customer.status = CustomerStatus.ACTIVE
        customer.completed_at = None


def _stamp_cancelled(context: Dict[str, Any]) -> None:
    customer = context.get("customer")
    if customer is not None:
        customer.status = CustomerStatus.CANCELLED
        customer.cancelled_at = datetime.utcnow()


def build_customer_state_machine(state: str) -> StateMachine:
    """
    客户状态机，context["customer"] 存在时由副作用写回状态与时间戳

    active -> completed   余额结清后标记完成
    completed -> active   撤销完成
    active -> cancelled   退款取消，不可逆
    completed -> cancelled 已完成的住宿同样可以退款取消
    """
    active = CustomerStatus.ACTIVE.value
    completed = CustomerStatus.COMPLETED.value
    cancelled = CustomerStatus.CANCELLED.value
    config = StateMachineConfig(
        name="Customer",
        states=[active, completed, cancelled],
        transitions=[
            StateTransition(active, completed, TRIGGER_COMPLETE, condition=_balance_settled,
                            side_effects=[_stamp_completed]),
            StateTransition(completed, active, TRIGGER_UNDO, side_effects=[_reopen]),
            StateTransition(active, cancelled, TRIGGER_CANCEL, side_effects=[_stamp_cancelled]),
            StateTransition(completed, cancelled, TRIGGER_CANCEL, side_effects=[_stamp_cancelled]),
        ],
        initial_state=active,
    )
    return StateMachine(config, state=state)
