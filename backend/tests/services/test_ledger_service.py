"""
汇总账本服务测试
"""
import pytest
from datetime import date
from decimal import Decimal

from villa.models.ontology import ExpenseCategory, LedgerSourceType, PaymentMode, SaleCategory
from villa.models.schemas import (
    ExpenseCreate, ExpenseUpdate, ExtraChargeCreate, PaymentCreate, SaleCreate, SaleUpdate
)
from villa.services.errors import NotFoundError, ValidationError
from villa.services.ledger_service import ExpenseService, SaleService


@pytest.fixture
def expense_service(db_session):
    return ExpenseService(db_session)


@pytest.fixture
def sale_service(db_session):
    return SaleService(db_session)


class TestExpenseService:

    def test_manual_expense_crud(self, expense_service):
        expense = expense_service.create_expense(ExpenseCreate(
            entry_date=date(2025, 2, 3), amount=Decimal("1200"), category=ExpenseCategory.MAINTENANCE,
            description="Pool pump repair", receipt_urls=["https://files.example.com/r/1.pdf"],
        ), created_by="Admin")

        assert expense.source_type == LedgerSourceType.MANUAL
        assert expense.financial_year == "2024-2025"
        assert ExpenseService.to_dict(expense)["receipt_urls"] == ["https://files.example.com/r/1.pdf"]

        updated = expense_service.update_expense(expense.id, ExpenseUpdate(
            amount=Decimal("1350"), entry_date=date(2025, 4, 2)
        ))
        assert updated.amount == Decimal("1350.00")
        assert updated.financial_year == "2025-2026"

        expense_service.delete_expense(expense.id)
        with pytest.raises(NotFoundError):
            expense_service.get_expense(expense.id)

    def test_non_positive_amount_rejected(self, expense_service):
        with pytest.raises(ValidationError):
            expense_service.create_expense(ExpenseCreate(
                entry_date=date(2025, 2, 3), amount=Decimal("0"), category=ExpenseCategory.OTHER,
                description="nothing",
            ))

    def test_mirror_rows_are_read_only(self, expense_service, customer_service, booked_customer):
        charge = customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
        ))

        with pytest.raises(ValidationError):
            expense_service.update_expense(charge.expense_mirror_id, ExpenseUpdate(amount=Decimal("1")))
        with pytest.raises(ValidationError):
            expense_service.delete_expense(charge.expense_mirror_id)

    def test_list_filters(self, expense_service, customer_service, booked_customer):
        expense_service.create_expense(ExpenseCreate(
            entry_date=date(2024, 5, 20), amount=Decimal("300"), category=ExpenseCategory.FOOD,
            description="Groceries",
        ))
        customer_service.add_charge(booked_customer.id, ExtraChargeCreate(
            description="Bonfire", amount=Decimal("500"), charge_date=date(2024, 5, 11)
        ))

        assert len(expense_service.list_expenses()) == 2
        assert len(expense_service.list_expenses(source_type=LedgerSourceType.CUSTOMER)) == 1
        assert len(expense_service.list_expenses(customer_id=booked_customer.id)) == 1
        assert len(expense_service.list_expenses(category=ExpenseCategory.FOOD)) == 1
        assert len(expense_service.list_expenses(start_date=date(2024, 5, 15))) == 1


class TestSaleService:

    def test_manual_sale_crud(self, sale_service):
        sale = sale_service.create_sale(SaleCreate(
            entry_date=date(2024, 7, 1), amount=Decimal("2500"), category=SaleCategory.OTHER,
            payment_mode=PaymentMode.UPI, description="Photo shoot venue fee",
        ))
        assert sale.financial_year == "2024-2025"

        sale_service.update_sale(sale.id, SaleUpdate(description="Venue fee"))
        assert sale_service.get_sale(sale.id).description == "Venue fee"

        sale_service.delete_sale(sale.id)
        assert sale_service.list_sales() == []

    def test_summary_groups_by_source(self, sale_service, customer_service, booked_customer):
        sale_service.create_sale(SaleCreate(
            entry_date=date(2024, 5, 1), amount=Decimal("1000"), category=SaleCategory.OTHER,
            description="Event booking",
        ))
        customer_service.add_payment(booked_customer.id, PaymentCreate(
            amount=Decimal("4000"), mode=PaymentMode.UPI
        ))

        summary = sale_service.summary()

        assert summary["total"] == Decimal("5000.00")
        assert summary["count"] == 2
        assert summary["by_source_type"] == {"manual": Decimal("1000.00"), "customer": Decimal("4000.00")}
        assert summary["by_category"] == {"other": Decimal("1000.00"), "stay": Decimal("4000.00")}
        assert summary["by_payment_mode"] == {"cash": Decimal("1000.00"), "UPI": Decimal("4000.00")}

    def test_mirror_sale_is_read_only(self, sale_service, customer_service, booked_customer):
        payment = customer_service.add_payment(booked_customer.id, PaymentCreate(amount=Decimal("4000")))
        with pytest.raises(ValidationError):
            sale_service.delete_sale(payment.sale_mirror_id)
