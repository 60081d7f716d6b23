"""
汇总账本服务 - 支出 / 销售
手工录入条目可增删改；镜像条目（source_type != manual）只读，只能由同步器改写
"""
import json
from datetime import date
from decimal import Decimal
from typing import List, Optional, Union
import logging

from sqlalchemy.orm import Session

from villa.models.ontology import (
    Expense, ExpenseCategory, LedgerSourceType, Sale, SaleCategory
)
from villa.models.schemas import ExpenseCreate, ExpenseUpdate, SaleCreate, SaleUpdate
from villa.services.balance import sum_amounts, to_amount
from villa.services.date_utils import financial_year_for
from villa.services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _entry_to_dict(entry: Union[Expense, Sale]) -> dict:
    data = {column.name: getattr(entry, column.name) for column in entry.__table__.columns}
    data["receipt_urls"] = json.loads(entry.receipt_urls or "[]")
    return data


def _ensure_manual(entry: Union[Expense, Sale]) -> None:
    if entry.source_type != LedgerSourceType.MANUAL:
        raise ValidationError(
            "该条目由客户账单自动同步，请在来源记录上修改",
            {"source_type": entry.source_type.value, "source_id": entry.source_id}
        )


class ExpenseService:
    """支出账本"""

    def __init__(self, db: Session):
        self.db = db

    def get_expense(self, expense_id: int) -> Expense:
        expense = self.db.query(Expense).filter(Expense.id == expense_id).first()
        if not expense:
            raise NotFoundError("支出记录不存在", {"expense_id": expense_id})
        return expense

    def list_expenses(self, category: Optional[ExpenseCategory] = None,
                      start_date: Optional[date] = None,
                      end_date: Optional[date] = None,
                      customer_id: Optional[int] = None,
                      source_type: Optional[LedgerSourceType] = None) -> List[Expense]:
        query = self.db.query(Expense)
        if category:
            query = query.filter(Expense.category == category)
        if start_date:
            query = query.filter(Expense.entry_date >= start_date)
        if end_date:
            query = query.filter(Expense.entry_date <= end_date)
        if customer_id is not None:
            query = query.filter(Expense.customer_id == customer_id)
        if source_type:
            query = query.filter(Expense.source_type == source_type)
        return query.order_by(Expense.entry_date.desc(), Expense.id.desc()).all()

    def create_expense(self, data: ExpenseCreate, created_by: Optional[str] = None) -> Expense:
        if to_amount(data.amount) <= 0:
            raise ValidationError("金额必须大于0", {"field": "amount"})
        expense = Expense(
            entry_date=data.entry_date,
            amount=to_amount(data.amount),
            category=data.category,
            mode=data.mode,
            description=data.description,
            receipt_urls=json.dumps(data.receipt_urls),
            yearly_sub_category=data.yearly_sub_category,
            financial_year=financial_year_for(data.entry_date),
            source_type=LedgerSourceType.MANUAL,
            created_by=created_by,
        )
        self.db.add(expense)
        self.db.commit()
        self.db.refresh(expense)
        return expense

    def update_expense(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get_expense(expense_id)
        _ensure_manual(expense)

        update_data = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if "amount" in update_data:
            if to_amount(update_data["amount"]) <= 0:
                raise ValidationError("金额必须大于0", {"field": "amount"})
            update_data["amount"] = to_amount(update_data["amount"])
        if "receipt_urls" in update_data:
            update_data["receipt_urls"] = json.dumps(update_data["receipt_urls"])
        for key, value in update_data.items():
            setattr(expense, key, value)
        expense.financial_year = financial_year_for(expense.entry_date)

        self.db.commit()
        self.db.refresh(expense)
        return expense

    def delete_expense(self, expense_id: int) -> None:
        expense = self.get_expense(expense_id)
        _ensure_manual(expense)
        self.db.delete(expense)
        self.db.commit()

    to_dict = staticmethod(_entry_to_dict)


class SaleService:
    """销售账本"""

    def __init__(self, db: Session):
        self.db = db

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.db.query(Sale).filter(Sale.id == sale_id).first()
        if not sale:
            raise NotFoundError("销售记录不存在", {"sale_id": sale_id})
        return sale

    def list_sales(self, category: Optional[SaleCategory] = None,
                   start_date: Optional[date] = None,
                   end_date: Optional[date] = None,
                   customer_id: Optional[int] = None,
                   source_type: Optional[LedgerSourceType] = None,
                   financial_year: Optional[str] = None) -> List[Sale]:
        query = self.db.query(Sale)
        if category:
            query = query.filter(Sale.category == category)
        if start_date:
            query = query.filter(Sale.entry_date >= start_date)
        if end_date:
            query = query.filter(Sale.entry_date <= end_date)
        if customer_id is not None:
            query = query.filter(Sale.customer_id == customer_id)
        if source_type:
            query = query.filter(Sale.source_type == source_type)
        if financial_year:
            query = query.filter(Sale.financial_year == financial_year)
        return query.order_by(Sale.entry_date.desc(), Sale.id.desc()).all()

    def create_sale(self, data: SaleCreate, created_by: Optional[str] = None) -> Sale:
        if to_amount(data.amount) <= 0:
            raise ValidationError("金额必须大于0", {"field": "amount"})
        sale = Sale(
            entry_date=data.entry_date,
            amount=to_amount(data.amount),
            category=data.category,
            payment_mode=data.payment_mode,
            description=data.description,
            receipt_urls=json.dumps(data.receipt_urls),
            financial_year=financial_year_for(data.entry_date),
            source_type=LedgerSourceType.MANUAL,
            created_by=created_by,
        )
        self.db.add(sale)
        self.db.commit()
        self.db.refresh(sale)
        return sale

    def update_sale(self, sale_id: int, data: SaleUpdate) -> Sale:
        sale = self.get_sale(sale_id)
        _ensure_manual(sale)

        update_data = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if "amount" in update_data:
            if to_amount(update_data["amount"]) <= 0:
                raise ValidationError("金额必须大于0", {"field": "amount"})
            update_data["amount"] = to_amount(update_data["amount"])
        if "receipt_urls" in update_data:
            update_data["receipt_urls"] = json.dumps(update_data["receipt_urls"])
        for key, value in update_data.items():
            setattr(sale, key, value)
        sale.financial_year = financial_year_for(sale.entry_date)

        self.db.commit()
        self.db.refresh(sale)
        return sale

    def delete_sale(self, sale_id: int) -> None:
        sale = self.get_sale(sale_id)
        _ensure_manual(sale)
        self.db.delete(sale)
        self.db.commit()

    def summary(self, start_date: Optional[date] = None, end_date: Optional[date] = None,
                financial_year: Optional[str] = None) -> dict:
        """销售汇总：总额、笔数、按类别 / 付款方式 / 来源统计"""
        sales = self.list_sales(start_date=start_date, end_date=end_date, financial_year=financial_year)

        def group(key) -> dict:
            buckets = {}
            for sale in sales:
                name = key(sale).value
                buckets[name] = buckets.get(name, Decimal("0.00")) + to_amount(sale.amount)
            return buckets

        return {
            "total": sum_amounts(s.amount for s in sales),
            "count": len(sales),
            "by_category": group(lambda s: s.category),
            "by_payment_mode": group(lambda s: s.payment_mode),
            "by_source_type": group(lambda s: s.source_type),
        }

    to_dict = staticmethod(_entry_to_dict)
