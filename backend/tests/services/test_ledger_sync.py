"""
账本同步器测试
覆盖开关迁移路由、镜像内容规则、失败队列与重试、对账报表
"""
import pytest
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import patch

from villa.models.events import EventType
from villa.models.ontology import (
    Expense, ExpenseCategory, LedgerKind, LedgerSourceType, OutboxStatus,
    PaymentMode, PaymentType, Sale, SaleCategory, SyncOperation, SyncOutbox
)
from villa.models.schemas import (
    CustomerCreate, ExtraChargeCreate, ExtraChargeUpdate, PaymentCreate, PaymentUpdate, RefundCreate, RefundUpdate
)
from villa.services.errors import SyncError
from villa.services.event_bus import event_bus
from villa.services.ledger_sync import (
    LedgerSynchronizer, MirrorPayload, parse_source_ref, route_operation
)


def customer_mirrors(db_session, model, customer_id):
    return db_session.query(model).filter(
        model.source_type == LedgerSourceType.CUSTOMER,
        model.customer_id == customer_id,
    ).order_by(model.id).all()


def _payload(amount="500"):
    return MirrorPayload(
        amount=Decimal(amount),
        description="BBQ dinner",
        entry_date=date(2024, 5, 11),
        category=ExpenseCategory.MISCELLANEOUS.value,
    )


class TestRouteOperation:

    @pytest.mark.parametrize("has_mirror,enabled,changed,expected", [
        (False, False, True, None),
        (False, True, True, SyncOperation.CREATE),
        (True, True, True, SyncOperation.UPDATE),
        (True, True, False, None),
        (True, False, True, SyncOperation.DELETE),
        (True, False, False, SyncOperation.DELETE),
    ])
    def test_toggle_transitions(self, has_mirror, enabled, changed, expected):
        assert route_operation(has_mirror, enabled, changed) == expected

    def test_parse_source_ref(self):
        assert parse_source_ref("charge:12") == ("charge", 12)
        assert parse_source_ref("refund:3") == ("refund", 3)
        with pytest.raises(SyncError):
            parse_source_ref("booking:1")
        with pytest.raises(SyncError):
            parse_source_ref("charge:abc")


class TestSyncContract:
    """sync 的原始 create / update / delete 语义"""

    def test_create_then_duplicate_create_fails(self, db_session):
        sync = LedgerSynchronizer(db_session)
        mirror_id = sync.sync(LedgerKind.EXPENSES, 1, "charge:1", _payload(), SyncOperation.CREATE)

        expense = db_session.get(Expense, mirror_id)
        assert expense.source_type == LedgerSourceType.CUSTOMER
        assert expense.source_id == "charge:1"
        assert expense.created_by == "system"
        assert expense.financial_year == "2024-2025"

        with pytest.raises(SyncError):
            sync.sync(LedgerKind.EXPENSES, 1, "charge:1", _payload(), SyncOperation.CREATE)

    def test_update_requires_existing_mirror(self, db_session):
        sync = LedgerSynchronizer(db_session)
        with pytest.raises(SyncError):
            sync.sync(LedgerKind.EXPENSES, 1, "charge:2", _payload(), SyncOperation.UPDATE)

    def test_update_overwrites_mirror(self, db_session):
        sync = LedgerSynchronizer(db_session)
        mirror_id = sync.sync(LedgerKind.EXPENSES, 1, "charge:1", _payload("500"), SyncOperation.CREATE)
        assert sync.sync(LedgerKind.EXPENSES, 1, "charge:1", _payload("800"), SyncOperation.UPDATE) == mirror_id
        assert db_session.get(Expense, mirror_id).amount == Decimal("800.00")

    def test_delete_is_idempotent(self, db_session):
        sync = LedgerSynchronizer(db_session)
        sync.sync(LedgerKind.EXPENSES, 1, "charge:1", _payload(), SyncOperation.CREATE)

        assert sync.sync(LedgerKind.EXPENSES, 1, "charge:1", None, SyncOperation.DELETE) is None
        assert sync.sync(LedgerKind.EXPENSES, 1, "charge:1", None, SyncOperation.DELETE) is None
        assert db_session.query(Expense).count() == 0


class TestChargeMirrors:

    def test_default_charge_mirrors_to_expenses_only(self, customer_service, booked_customer, db_session):
        charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
        ))

        expenses = customer_mirrors(db_session, Expense, booked_customer.id)
        assert len(expenses) == 1
        assert expenses[0].id == charge.expense_mirror_id
        assert expenses[0].source_id == f"charge:{charge.id}"
        assert expenses[0].category == ExpenseCategory.MISCELLANEOUS
        assert expenses[0].amount == Decimal("500.00")
        assert customer_mirrors(db_session, Sale, booked_customer.id) == []

    def test_toggle_off_on_keeps_single_mirror(self, customer_service, booked_customer, db_session):
        charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
        ))

        customer_service.update_charge(booked_customer.id, charge.id,
                                       ExtraChargeUpdate(record_in_expenses=False))
        assert customer_mirrors(db_session, Expense, booked_customer.id) == []
        assert charge.expense_mirror_id is None

        customer_service.update_charge(booked_customer.id, charge.id,
                                       ExtraChargeUpdate(record_in_expenses=True, amount=Decimal("700")))

        expenses = customer_mirrors(db_session, Expense, booked_customer.id)
        assert len(expenses) == 1
        assert expenses[0].amount == Decimal("700.00")
        assert charge.expense_mirror_id == expenses[0].id

    def test_edit_updates_existing_mirror(self, customer_service, booked_customer, db_session):
        charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
        ))
        mirror_id = charge.expense_mirror_id

        customer_service.update_charge(booked_customer.id, charge.id,
                                       ExtraChargeUpdate(description="Bonfire and music", amount=Decimal("650")))

        expense = db_session.get(Expense, mirror_id)
        assert expense.description == "Bonfire and music"
        assert expense.amount == Decimal("650.00")
        assert len(customer_mirrors(db_session, Expense, booked_customer.id)) == 1

    @pytest.mark.parametrize("description,category", [
        ("Cuisine - special dinner", SaleCategory.CUISINE),
        ("Extra meal for driver", SaleCategory.CUISINE),
        ("Boat ride", SaleCategory.EXTRA_SERVICES),
    ])
    def test_sale_mirror_category(self, customer_service, booked_customer, db_session, description, category):
        customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description=description, amount=Decimal("900"), charge_date=date(2024, 5, 12),
            record_in_expenses=False, record_in_sales=True,
        ))

        sales = customer_mirrors(db_session, Sale, booked_customer.id)
        assert len(sales) == 1
        assert sales[0].category == category
        assert sales[0].payment_mode == PaymentMode.CASH
        assert customer_mirrors(db_session, Expense, booked_customer.id) == []

    def test_delete_charge_removes_mirrors(self, customer_service, booked_customer, db_session):
        charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Food platter", amount=Decimal("300"), charge_date=date(2024, 5, 11),
            record_in_sales=True,
        ))
        assert len(customer_mirrors(db_session, Sale, booked_customer.id)) == 1

        customer_service.delete_charge(booked_customer.id, charge.id)

        assert customer_mirrors(db_session, Expense, booked_customer.id) == []
        assert customer_mirrors(db_session, Sale, booked_customer.id) == []


class TestPaymentMirrors:

    def test_payment_always_mirrors_to_sales(self, customer_service, booked_customer, db_session):
        payment = customer_service.add_payment(booked_customer.id, PaymentCreate(
            amount=Decimal("4000"), mode=PaymentMode.UPI, payment_type=PaymentType.PART,
            paid_at=datetime(2024, 5, 10, 9, 30),
        ))

        sale = db_session.get(Sale, payment.sale_mirror_id)
        assert sale.source_id == f"payment:{payment.id}"
        assert sale.category == SaleCategory.STAY
        assert sale.payment_mode == PaymentMode.UPI
        assert sale.description == "Customer Payment - part"
        assert sale.entry_date == date(2024, 5, 10)
        assert sale.financial_year == "2024-2025"

    def test_advance_payment_on_create(self, customer_service, make_customer_data, db_session):
        customer = customer_service.create_customer(CustomerCreate(**make_customer_data(
            received_amount=Decimal("2000"), advance_payment_mode=PaymentMode.BANK,
        )))

        sales = customer_mirrors(db_session, Sale, customer.id)
        assert len(sales) == 1
        assert sales[0].category == SaleCategory.ADVANCE
        assert sales[0].payment_mode == PaymentMode.BANK
        assert sales[0].description == "Customer Payment - advance: Advance payment"
        assert customer.received_amount == Decimal("2000.00")

    def test_payment_edit_and_delete(self, customer_service, booked_customer, db_session):
        payment = customer_service.add_payment(booked_customer.id, PaymentCreate(amount=Decimal("1000")))
        customer_service.update_payment(booked_customer.id, payment.id, PaymentUpdate(
            amount=Decimal("1200"), payment_type=PaymentType.EXTRA, notes="tips"
        ))

        sale = db_session.get(Sale, payment.sale_mirror_id)
        assert sale.amount == Decimal("1200.00")
        assert sale.category == SaleCategory.OTHER
        assert sale.description == "Customer Payment - extra: tips"

        customer_service.delete_payment(booked_customer.id, payment.id)
        assert customer_mirrors(db_session, Sale, booked_customer.id) == []


class TestRefundMirrors:

    def test_refund_mirrors_to_expenses_and_leaves_sales(self, customer_service, booked_customer, db_session):
        customer_service.add_payment(booked_customer.id, PaymentCreate(amount=Decimal("4000")))
        sales_before = [(s.id, s.amount) for s in db_session.query(Sale).all()]

        refund = customer_service.add_refund(booked_customer.id, RefundCreate(
            amount=Decimal("1500"), reason="Family emergency", record_in_expenses=True,
        ))

        expense = db_session.get(Expense, refund.expense_mirror_id)
        assert expense.category == ExpenseCategory.REFUND
        assert expense.amount == Decimal("1500.00")
        assert expense.description == "Customer Refund: Family emergency"
        assert [(s.id, s.amount) for s in db_session.query(Sale).all()] == sales_before

    def test_refund_without_toggle_has_no_mirror(self, customer_service, booked_customer, db_session):
        customer_service.add_payment(booked_customer.id, PaymentCreate(amount=Decimal("4000")))
        refund = customer_service.add_refund(booked_customer.id, RefundCreate(amount=Decimal("1000")))

        assert refund.expense_mirror_id is None
        assert customer_mirrors(db_session, Expense, booked_customer.id) == []

        customer_service.update_refund(booked_customer.id, refund.id, RefundUpdate(record_in_expenses=True))
        assert len(customer_mirrors(db_session, Expense, booked_customer.id)) == 1


class TestFailureQueue:

    def test_failed_mirror_does_not_block_primary_write(self, customer_service, booked_customer, db_session):
        with patch.object(LedgerSynchronizer, "sync", side_effect=RuntimeError("ledger down")):
            charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
                description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
            ))

        assert charge.id is not None
        assert charge.expense_mirror_id is None
        assert booked_customer.total_amount == Decimal("10500.00")
        assert customer_mirrors(db_session, Expense, booked_customer.id) == []

        outbox = db_session.query(SyncOutbox).one()
        assert outbox.status == OutboxStatus.PENDING
        assert outbox.operation == SyncOperation.CREATE
        assert outbox.ledger_kind == LedgerKind.EXPENSES
        assert outbox.source_id == f"charge:{charge.id}"
        assert "ledger down" in outbox.error

        events = event_bus.get_history(EventType.LEDGER_SYNC_FAILED.value)
        assert len(events) == 1
        assert events[0].data["outbox_id"] == outbox.id

    def test_retry_resolves_pending_create(self, customer_service, booked_customer, db_session):
        with patch.object(LedgerSynchronizer, "sync", side_effect=RuntimeError("ledger down")):
            charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
                description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
            ))

        stats = customer_service.synchronizer.retry_pending()
        db_session.commit()

        assert stats == {"resolved": 1, "failed": 0}
        expenses = customer_mirrors(db_session, Expense, booked_customer.id)
        assert len(expenses) == 1
        assert charge.expense_mirror_id == expenses[0].id
        assert db_session.query(SyncOutbox).one().status == OutboxStatus.RESOLVED

    def test_next_edit_self_heals_failed_create(self, customer_service, booked_customer, db_session):
        with patch.object(LedgerSynchronizer, "sync", side_effect=RuntimeError("ledger down")):
            charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
                description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
            ))

        customer_service.update_charge(booked_customer.id, charge.id, ExtraChargeUpdate(amount=Decimal("550")))

        expenses = customer_mirrors(db_session, Expense, booked_customer.id)
        assert len(expenses) == 1
        assert expenses[0].amount == Decimal("550.00")

    def test_retry_deletes_mirror_of_removed_charge(self, customer_service, booked_customer, db_session):
        charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
        ))
        with patch.object(LedgerSynchronizer, "sync", side_effect=RuntimeError("ledger down")):
            customer_service.delete_charge(booked_customer.id, charge.id)

        assert len(customer_mirrors(db_session, Expense, booked_customer.id)) == 1
        assert db_session.query(SyncOutbox).one().operation == SyncOperation.DELETE

        stats = customer_service.synchronizer.retry_pending()
        db_session.commit()

        assert stats["resolved"] == 1
        assert customer_mirrors(db_session, Expense, booked_customer.id) == []

    def test_failed_retry_counts_attempts(self, customer_service, booked_customer, db_session):
        with patch.object(LedgerSynchronizer, "sync", side_effect=RuntimeError("ledger down")):
            customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
                description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
            ))
            stats = customer_service.synchronizer.retry_pending()

        assert stats == {"resolved": 0, "failed": 1}
        outbox = db_session.query(SyncOutbox).one()
        assert outbox.status == OutboxStatus.PENDING
        assert outbox.attempts == 2


class TestReconciliationReport:

    def test_consistent_after_normal_writes(self, customer_service, booked_customer):
        customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
        ))
        customer_service.add_payment(booked_customer.id, PaymentCreate(amount=Decimal("4000")))

        report = customer_service.synchronizer.reconciliation_report()

        assert report["is_consistent"] is True
        assert report["drift"] == []
        assert report["pending_failures"] == []

    def test_reports_missing_stale_and_orphan_mirrors(self, customer_service, booked_customer, db_session):
        charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
        ))
        payment = customer_service.add_payment(booked_customer.id, PaymentCreate(amount=Decimal("4000")))

        db_session.delete(db_session.get(Expense, charge.expense_mirror_id))
        db_session.get(Sale, payment.sale_mirror_id).amount = Decimal("3999")
        db_session.add(Expense(
            entry_date=date(2024, 5, 1), amount=Decimal("10"), category=ExpenseCategory.MISCELLANEOUS,
            description="leftover", source_type=LedgerSourceType.CUSTOMER, source_id="charge:999",
        ))
        db_session.commit()

        report = customer_service.synchronizer.reconciliation_report()
        problems = {(d["source_id"], d["problem"]) for d in report["drift"]}

        assert report["is_consistent"] is False
        assert (f"charge:{charge.id}", "missing_mirror") in problems
        assert (f"payment:{payment.id}", "stale_mirror") in problems
        assert ("charge:999", "orphan_mirror") in problems
