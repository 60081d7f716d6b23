"""
汇总账本路由 - 支出、销售、对账
"""
from typing import List, Optional
from datetime import date
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from villa.database import get_db
from villa.models.ontology import Employee, ExpenseCategory, LedgerSourceType, SaleCategory
from villa.models.schemas import (
    ExpenseCreate, ExpenseResponse, ExpenseUpdate, ReconciliationReport, RetryResult,
    SaleCreate, SaleResponse, SalesSummary, SaleUpdate, SyncOutboxResponse
)
from villa.routers.errors import to_http_exception
from villa.security import permissions as perm
from villa.security.auth import require_all_permissions, require_permission
from villa.services.ledger_service import ExpenseService, SaleService
from villa.services.ledger_sync import LedgerSynchronizer

router = APIRouter(prefix="/ledgers", tags=["账本"])


# ============== 支出 ==============

@router.get("/expenses", response_model=List[ExpenseResponse])
def list_expenses(
    category: Optional[ExpenseCategory] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    customer_id: Optional[int] = None,
    source_type: Optional[LedgerSourceType] = None,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.EXPENSES_VIEW))
):
    """获取支出列表"""
    service = ExpenseService(db)
    expenses = service.list_expenses(category, start_date, end_date, customer_id, source_type)
    return [service.to_dict(e) for e in expenses]


@router.post("/expenses", response_model=ExpenseResponse)
def create_expense(
    data: ExpenseCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.EXPENSES_CREATE))
):
    """手工录入支出"""
    service = ExpenseService(db)
    try:
        return service.to_dict(service.create_expense(data, current_user.username))
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.EXPENSES_EDIT))
):
    """修改支出（仅限手工录入）"""
    service = ExpenseService(db)
    try:
        return service.to_dict(service.update_expense(expense_id, data))
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.EXPENSES_DELETE))
):
    """删除支出（仅限手工录入）"""
    try:
        ExpenseService(db).delete_expense(expense_id)
    except ValueError as e:
        raise to_http_exception(e)
    return {"message": "支出已删除"}


# ============== 销售 ==============

@router.get("/sales", response_model=List[SaleResponse])
def list_sales(
    category: Optional[SaleCategory] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    customer_id: Optional[int] = None,
    source_type: Optional[LedgerSourceType] = None,
    financial_year: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.SALES_VIEW))
):
    """获取销售列表"""
    service = SaleService(db)
    sales = service.list_sales(category, start_date, end_date, customer_id, source_type, financial_year)
    return [service.to_dict(s) for s in sales]


@router.get("/sales/summary", response_model=SalesSummary)
def sales_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    financial_year: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.SALES_VIEW))
):
    """销售汇总"""
    return SaleService(db).summary(start_date, end_date, financial_year)


@router.post("/sales", response_model=SaleResponse)
def create_sale(
    data: SaleCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.SALES_CREATE))
):
    """手工录入销售"""
    service = SaleService(db)
    try:
        return service.to_dict(service.create_sale(data, current_user.username))
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/sales/{sale_id}", response_model=SaleResponse)
def update_sale(
    sale_id: int,
    data: SaleUpdate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.SALES_EDIT))
):
    """修改销售（仅限手工录入）"""
    service = SaleService(db)
    try:
        return service.to_dict(service.update_sale(sale_id, data))
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/sales/{sale_id}")
def delete_sale(
    sale_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.SALES_DELETE))
):
    """删除销售（仅限手工录入）"""
    try:
        SaleService(db).delete_sale(sale_id)
    except ValueError as e:
        raise to_http_exception(e)
    return {"message": "销售已删除"}


# ============== 对账 ==============

@router.get("/reconciliation", response_model=ReconciliationReport)
def reconciliation_report(
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.SALES_VIEW, perm.EXPENSES_VIEW))
):
    """镜像对账：未处理的同步失败与镜像偏差"""
    report = LedgerSynchronizer(db).reconciliation_report()
    return ReconciliationReport(
        pending_failures=[SyncOutboxResponse.model_validate(o) for o in report["pending_failures"]],
        drift=report["drift"],
        is_consistent=report["is_consistent"],
    )


@router.post("/reconciliation/retry", response_model=RetryResult)
def retry_failed_syncs(
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_all_permissions(perm.SALES_EDIT, perm.EXPENSES_EDIT))
):
    """从来源记录重新推导并重试失败的镜像写入"""
    stats = LedgerSynchronizer(db).retry_pending()
    db.commit()
    return RetryResult(**stats)
