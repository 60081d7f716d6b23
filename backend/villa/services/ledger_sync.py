"""
账本同步器
把客户子账本事件（附加费用、付款、退款）镜像到支出 / 销售汇总账本

- 镜像行 source_type = customer，source_id = "charge:12" / "payment:7" / "refund:3"
- 子账本行上保存镜像 ID，create / update / delete 按"是否已有镜像"与"开关是否打开"路由
- 镜像写入失败只记录日志并写入同步失败队列，不影响主写入
"""
import json
import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from villa.models.events import EventType, LedgerSyncFailedData
from villa.models.ontology import (
    Customer, CustomerPayment, Expense, ExpenseCategory, ExtraCharge, LedgerKind,
    LedgerSourceType, OutboxStatus, PaymentMode, PaymentType, Refund, Sale,
    SaleCategory, SyncOperation, SyncOutbox
)
from villa.services.balance import to_amount
from villa.services.date_utils import financial_year_for
from villa.services.errors import SyncError
from villa.services.event_bus import Event, event_bus

logger = logging.getLogger(__name__)

SYSTEM_CREATOR = "system"

SubLedgerEvent = Union[ExtraCharge, CustomerPayment, Refund]
LedgerEntry = Union[Expense, Sale]


@dataclass
class MirrorPayload:
    """镜像行内容"""
    amount: Decimal
    description: str
    entry_date: date
    category: str
    payment_mode: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["amount"] = str(self.amount)
        data["entry_date"] = self.entry_date.isoformat()
        return data


@dataclass
class SyncOutcome:
    """一次镜像同步的结果"""
    ok: bool
    operation: Optional[SyncOperation]
    mirror_id: Optional[int] = None
    outbox_id: Optional[int] = None


# ============== 镜像内容规则 ==============

def charge_expense_payload(charge: ExtraCharge) -> MirrorPayload:
    return MirrorPayload(
        amount=to_amount(charge.amount),
        description=charge.description,
        entry_date=charge.charge_date,
        category=ExpenseCategory.MISCELLANEOUS.value,
    )


def charge_sale_payload(charge: ExtraCharge) -> MirrorPayload:
    desc = (charge.description or "").lower()
    if any(word in desc for word in ("cuisine", "food", "meal")):
        category = SaleCategory.CUISINE
    else:
        category = SaleCategory.EXTRA_SERVICES
    return MirrorPayload(
        amount=to_amount(charge.amount),
        description=charge.description,
        entry_date=charge.charge_date,
        category=category.value,
        payment_mode=PaymentMode.CASH.value,  # 附加费用没有付款方式
    )


def payment_sale_payload(payment: CustomerPayment) -> MirrorPayload:
    payment_type = PaymentType(payment.payment_type)
    if payment_type == PaymentType.ADVANCE:
        category = SaleCategory.ADVANCE
    elif payment_type in (PaymentType.PART, PaymentType.FINAL):
        category = SaleCategory.STAY
    else:
        category = SaleCategory.OTHER

    description = f"Customer Payment - {payment_type.value}"
    if payment.notes:
        description += f": {payment.notes}"

    paid_at = payment.paid_at or datetime.utcnow()
    return MirrorPayload(
        amount=to_amount(payment.amount),
        description=description,
        entry_date=paid_at.date(),
        category=category.value,
        payment_mode=PaymentMode(payment.mode).value,
    )


def refund_expense_payload(refund: Refund) -> MirrorPayload:
    description = "Customer Refund"
    if refund.reason:
        description += f": {refund.reason}"
    refunded_at = refund.refunded_at or datetime.utcnow()
    return MirrorPayload(
        amount=to_amount(refund.amount),
        description=description,
        entry_date=refunded_at.date(),
        category=ExpenseCategory.REFUND.value,
    )


@dataclass(frozen=True)
class MirrorBinding:
    """子账本事件与某个汇总账本之间的镜像绑定"""
    toggle_attr: Optional[str]   # None 表示无条件镜像
    mirror_attr: str
    build_payload: Callable[[Any], MirrorPayload]


MIRROR_BINDINGS: Dict[Tuple[str, LedgerKind], MirrorBinding] = {
    ("charge", LedgerKind.EXPENSES): MirrorBinding("record_in_expenses", "expense_mirror_id", charge_expense_payload),
    ("charge", LedgerKind.SALES): MirrorBinding("record_in_sales", "sale_mirror_id", charge_sale_payload),
    ("payment", LedgerKind.SALES): MirrorBinding(None, "sale_mirror_id", payment_sale_payload),
    ("refund", LedgerKind.EXPENSES): MirrorBinding("record_in_expenses", "expense_mirror_id", refund_expense_payload),
}

SOURCE_MODELS = {
    "charge": ExtraCharge,
    "payment": CustomerPayment,
    "refund": Refund,
}


def source_prefix(event: SubLedgerEvent) -> str:
    return event.source_ref.split(":", 1)[0]


def parse_source_ref(source_id: str) -> Tuple[str, int]:
    prefix, _, raw_id = source_id.partition(":")
    if prefix not in SOURCE_MODELS or not raw_id.isdigit():
        raise SyncError(f"无法识别的来源引用: {source_id}")
    return prefix, int(raw_id)


def route_operation(has_mirror: bool, enabled: bool, changed: bool = True) -> Optional[SyncOperation]:
    """
    开关迁移路由

    | 已有镜像 | 开关 | 操作   |
    |----------|------|--------|
    | 否       | 关   | 无     |
    | 否       | 开   | create |
    | 是       | 开   | update（内容有变化时） |
    | 是       | 关   | delete |
    """
    if not has_mirror:
        return SyncOperation.CREATE if enabled else None
    if not enabled:
        return SyncOperation.DELETE
    return SyncOperation.UPDATE if changed else None


class LedgerSynchronizer:
    """账本同步器"""

    def __init__(self, db: Session):
        self.db = db

    # ============== 基础操作 ==============

    def _model(self, ledger_kind: LedgerKind):
        return Expense if LedgerKind(ledger_kind) == LedgerKind.EXPENSES else Sale

    def find_mirror(self, ledger_kind: LedgerKind, source_id: str) -> Optional[LedgerEntry]:
        """按 (账本, 来源引用) 查找镜像行"""
        model = self._model(ledger_kind)
        return self.db.query(model).filter(
            model.source_type == LedgerSourceType.CUSTOMER,
            model.source_id == source_id,
        ).first()

    def sync(self, ledger_kind: LedgerKind, customer_id: Optional[int], source_id: str,
             payload: Optional[MirrorPayload], operation: SyncOperation) -> Optional[int]:
        """
        执行一次镜像写入

        create: 插入镜像行；同一来源已有镜像时抛出 SyncError
        update: 覆盖已有镜像；镜像不存在时抛出 SyncError（调用方应改走 create）
        delete: 删除镜像；不存在时为空操作

        Returns:
            create/update 返回镜像行 ID，delete 返回 None
        """
        ledger_kind = LedgerKind(ledger_kind)
        operation = SyncOperation(operation)
        existing = self.find_mirror(ledger_kind, source_id)

        if operation == SyncOperation.DELETE:
            if existing is not None:
                self.db.delete(existing)
                self.db.flush()
                logger.info(f"Deleted {ledger_kind.value} mirror {existing.id} for {source_id}")
            return None

        if payload is None:
            raise SyncError(f"{operation.value} 操作缺少镜像内容")

        if operation == SyncOperation.CREATE:
            if existing is not None:
                raise SyncError(f"{source_id} 在 {ledger_kind.value} 中已有镜像 {existing.id}")
            entry = self._new_entry(ledger_kind, customer_id, source_id, payload)
            self.db.add(entry)
            self.db.flush()
            logger.info(f"Created {ledger_kind.value} mirror {entry.id} for {source_id}")
            return entry.id

        if existing is None:
            raise SyncError(f"{source_id} 在 {ledger_kind.value} 中没有可更新的镜像")
        self._write_payload(ledger_kind, existing, payload)
        self.db.flush()
        logger.info(f"Updated {ledger_kind.value} mirror {existing.id} for {source_id}")
        return existing.id

    def _new_entry(self, ledger_kind: LedgerKind, customer_id: Optional[int],
                   source_id: str, payload: MirrorPayload) -> LedgerEntry:
        model = self._model(ledger_kind)
        entry = model(
            source_type=LedgerSourceType.CUSTOMER,
            source_id=source_id,
            customer_id=customer_id,
            receipt_urls="[]",
            created_by=SYSTEM_CREATOR,
        )
        self._write_payload(ledger_kind, entry, payload)
        return entry

    def _write_payload(self, ledger_kind: LedgerKind, entry: LedgerEntry, payload: MirrorPayload) -> None:
        entry.amount = payload.amount
        entry.description = payload.description
        entry.entry_date = payload.entry_date
        entry.financial_year = financial_year_for(payload.entry_date)
        if ledger_kind == LedgerKind.EXPENSES:
            entry.category = ExpenseCategory(payload.category)
        else:
            entry.category = SaleCategory(payload.category)
            entry.payment_mode = PaymentMode(payload.payment_mode or PaymentMode.CASH.value)

    @staticmethod
    def _differs(entry: LedgerEntry, payload: MirrorPayload) -> bool:
        if to_amount(entry.amount) != payload.amount:
            return True
        if entry.description != payload.description or entry.entry_date != payload.entry_date:
            return True
        if entry.category is None or entry.category.value != payload.category:
            return True
        payment_mode = getattr(entry, "payment_mode", None)
        if payload.payment_mode and (payment_mode is None or payment_mode.value != payload.payment_mode):
            return True
        return False

    # ============== 尽力而为的同步 ==============

    def apply(self, ledger_kind: LedgerKind, customer_id: Optional[int], source_id: str,
              payload: Optional[MirrorPayload], operation: SyncOperation) -> SyncOutcome:
        """
        在保存点内执行 sync；失败时回滚保存点、记录日志并写入同步失败队列
        """
        ledger_kind = LedgerKind(ledger_kind)
        operation = SyncOperation(operation)
        try:
            with self.db.begin_nested():
                mirror_id = self.sync(ledger_kind, customer_id, source_id, payload, operation)
            return SyncOutcome(ok=True, operation=operation, mirror_id=mirror_id)
        except Exception as e:
            logger.error(
                f"Ledger sync failed ({ledger_kind.value} {operation.value} {source_id}, "
                f"customer={customer_id}): {e}",
                exc_info=True
            )
            outbox = self._record_failure(ledger_kind, customer_id, source_id, payload, operation, e)
            return SyncOutcome(ok=False, operation=operation, outbox_id=outbox.id)

    def _record_failure(self, ledger_kind: LedgerKind, customer_id: Optional[int], source_id: str,
                        payload: Optional[MirrorPayload], operation: SyncOperation,
                        error: Exception) -> SyncOutbox:
        outbox = SyncOutbox(
            ledger_kind=ledger_kind,
            operation=operation,
            customer_id=customer_id,
            source_id=source_id,
            payload=json.dumps(payload.to_dict()) if payload else None,
            error=str(error),
            status=OutboxStatus.PENDING,
        )
        self.db.add(outbox)
        self.db.flush()

        event_bus.publish(Event(
            event_type=EventType.LEDGER_SYNC_FAILED.value,
            timestamp=datetime.now(),
            data=LedgerSyncFailedData(
                outbox_id=outbox.id,
                ledger_kind=ledger_kind.value,
                operation=operation.value,
                source_id=source_id,
                customer_id=customer_id,
                error=str(error),
            ).to_dict(),
            source="ledger_sync",
        ))
        return outbox

    def sync_event(self, ledger_kind: LedgerKind, event: SubLedgerEvent, customer_id: int,
                   removed: bool = False) -> Optional[SyncOutcome]:
        """
        让一个子账本事件在某个账本中的镜像与其当前状态一致

        期望状态由开关决定（无开关的绑定始终镜像，removed=True 时始终不镜像）；
        是否已有镜像看事件上保存的镜像 ID。
        成功后回写镜像 ID；失败时保持原值，使下次编辑或重试能再次路由。
        """
        ledger_kind = LedgerKind(ledger_kind)
        binding = MIRROR_BINDINGS[(source_prefix(event), ledger_kind)]

        if removed:
            enabled = False
        elif binding.toggle_attr is None:
            enabled = True
        else:
            enabled = bool(getattr(event, binding.toggle_attr))

        has_mirror = getattr(event, binding.mirror_attr) is not None
        payload = binding.build_payload(event) if enabled else None

        changed = True
        if has_mirror and enabled:
            existing = self.find_mirror(ledger_kind, event.source_ref)
            changed = existing is None or self._differs(existing, payload)

        operation = route_operation(has_mirror, enabled, changed)
        if operation is None:
            return None

        outcome = self.apply(ledger_kind, customer_id, event.source_ref, payload, operation)
        if outcome.ok and not removed:
            setattr(event, binding.mirror_attr, outcome.mirror_id)
        return outcome

    def sync_all_for_event(self, event: SubLedgerEvent, customer_id: int,
                           removed: bool = False) -> List[SyncOutcome]:
        """对事件绑定的每个账本执行 sync_event"""
        prefix = source_prefix(event)
        outcomes = []
        for (bound_prefix, ledger_kind) in MIRROR_BINDINGS:
            if bound_prefix != prefix:
                continue
            outcome = self.sync_event(ledger_kind, event, customer_id, removed=removed)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    # ============== 重试与对账 ==============

    def pending_failures(self) -> List[SyncOutbox]:
        return self.db.query(SyncOutbox).filter(
            SyncOutbox.status == OutboxStatus.PENDING
        ).order_by(SyncOutbox.id).all()

    def retry_pending(self) -> Dict[str, int]:
        """
        从来源子账本记录重新推导镜像并重试失败项

        来源记录已删除时，目标状态为"无镜像"
        """
        stats = {"resolved": 0, "failed": 0}
        for item in self.pending_failures():
            ledger_kind = LedgerKind(item.ledger_kind)
            try:
                with self.db.begin_nested():
                    self._converge(ledger_kind, item.customer_id, item.source_id)
                item.status = OutboxStatus.RESOLVED
                item.resolved_at = datetime.utcnow()
                stats["resolved"] += 1
            except Exception as e:
                item.attempts = (item.attempts or 0) + 1
                item.error = str(e)
                stats["failed"] += 1
                logger.error(f"Retry of outbox {item.id} ({item.source_id}) failed: {e}")
        self.db.flush()
        return stats

    def _converge(self, ledger_kind: LedgerKind, customer_id: Optional[int], source_id: str) -> None:
        prefix, event_id = parse_source_ref(source_id)
        binding = MIRROR_BINDINGS.get((prefix, ledger_kind))
        if binding is None:
            raise SyncError(f"{prefix} 不会镜像到 {ledger_kind.value}")

        event = self.db.get(SOURCE_MODELS[prefix], event_id)
        existing = self.find_mirror(ledger_kind, source_id)

        if event is None:
            if existing is not None:
                self.sync(ledger_kind, customer_id, source_id, None, SyncOperation.DELETE)
            return

        enabled = binding.toggle_attr is None or bool(getattr(event, binding.toggle_attr))
        if not enabled:
            if existing is not None:
                self.sync(ledger_kind, event.customer_id, source_id, None, SyncOperation.DELETE)
            setattr(event, binding.mirror_attr, None)
            return

        payload = binding.build_payload(event)
        operation = SyncOperation.UPDATE if existing is not None else SyncOperation.CREATE
        mirror_id = self.sync(ledger_kind, event.customer_id, source_id, payload, operation)
        setattr(event, binding.mirror_attr, mirror_id)

    def reconciliation_report(self) -> Dict[str, Any]:
        """
        对账报表：未处理的同步失败 + 子账本与镜像不一致的项 + 孤立镜像
        """
        drift = []
        live_refs = {LedgerKind.EXPENSES: set(), LedgerKind.SALES: set()}

        for (prefix, ledger_kind), binding in MIRROR_BINDINGS.items():
            for event in self.db.query(SOURCE_MODELS[prefix]).order_by(SOURCE_MODELS[prefix].id).all():
                enabled = binding.toggle_attr is None or bool(getattr(event, binding.toggle_attr))
                mirror = self.find_mirror(ledger_kind, event.source_ref)
                if enabled:
                    live_refs[ledger_kind].add(event.source_ref)
                problem = None
                if enabled and mirror is None:
                    problem = "missing_mirror"
                elif not enabled and mirror is not None:
                    problem = "unexpected_mirror"
                elif enabled and self._differs(mirror, binding.build_payload(event)):
                    problem = "stale_mirror"
                if problem:
                    drift.append({
                        "ledger_kind": ledger_kind.value,
                        "source_id": event.source_ref,
                        "customer_id": event.customer_id,
                        "problem": problem,
                    })

        for ledger_kind in (LedgerKind.EXPENSES, LedgerKind.SALES):
            model = self._model(ledger_kind)
            mirrors = self.db.query(model).filter(model.source_type == LedgerSourceType.CUSTOMER).all()
            for mirror in mirrors:
                if mirror.source_id not in live_refs[ledger_kind]:
                    prefix = (mirror.source_id or "").split(":", 1)[0]
                    if (prefix, ledger_kind) in MIRROR_BINDINGS and self._source_exists(mirror.source_id):
                        continue  # 已在上面记为 unexpected_mirror
                    drift.append({
                        "ledger_kind": ledger_kind.value,
                        "source_id": mirror.source_id,
                        "customer_id": mirror.customer_id,
                        "problem": "orphan_mirror",
                    })

        pending = self.pending_failures()
        return {
            "pending_failures": pending,
            "drift": drift,
            "is_consistent": not pending and not drift,
        }

    def _source_exists(self, source_id: str) -> bool:
        try:
            prefix, event_id = parse_source_ref(source_id)
        except SyncError:
            return False
        return self.db.get(SOURCE_MODELS[prefix], event_id) is not None

    def remove_customer_mirrors(self, customer: Customer) -> List[SyncOutcome]:
        """删除客户所有子账本事件创建的镜像（删除客户前调用）"""
        outcomes = []
        for event in list(customer.extra_charges) + list(customer.payments) + list(customer.refunds):
            outcomes.extend(self.sync_all_for_event(event, customer.id, removed=True))
        return outcomes
