"""
客户（住宿）路由
"""
from typing import List, Optional
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from villa.database import get_db
from villa.models.ontology import CustomerStatus, Employee
from villa.models.schemas import (
    BookingDatesUpdate, CompletionToggle, CustomerCreate, CustomerDetail,
    CustomerResponse, CustomerUpdate, ExtraChargeCreate, ExtraChargeResponse,
    ExtraChargeUpdate, GroupMemberCreate, GroupMemberResponse, PaymentCreate,
    PaymentResponse, PaymentUpdate, RefundCreate, RefundResponse, RefundUpdate
)
from villa.routers.errors import to_http_exception
from villa.security import permissions as perm
from villa.security.auth import require_all_permissions, require_permission
from villa.services.customer_service import CustomerService

router = APIRouter(prefix="/customers", tags=["客户管理"])


@router.get("", response_model=List[CustomerResponse])
def list_customers(
    status: Optional[CustomerStatus] = None,
    check_in_from: Optional[date] = None,
    check_in_to: Optional[date] = None,
    search: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_VIEW))
):
    """获取客户列表"""
    return CustomerService(db).list_customers(status, check_in_from, check_in_to, search, limit)


@router.post("", response_model=CustomerResponse)
def create_customer(
    data: CustomerCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_all_permissions(perm.CUSTOMERS_CREATE, perm.BOOKINGS_CREATE))
):
    """创建住宿（检查并预留日期）"""
    try:
        return CustomerService(db).create_customer(data, current_user.id)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/{customer_id}", response_model=CustomerDetail)
def get_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_VIEW))
):
    """获取客户详情（含子账本）"""
    try:
        return CustomerService(db).require_customer(customer_id)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{customer_id}", response_model=CustomerResponse)
def update_customer(
    customer_id: int,
    data: CustomerUpdate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_EDIT))
):
    """修改客户资料"""
    try:
        return CustomerService(db).update_customer(customer_id, data)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{customer_id}/dates", response_model=CustomerResponse)
def update_booking_dates(
    customer_id: int,
    data: BookingDatesUpdate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.BOOKINGS_EDIT))
):
    """修改住宿日期"""
    try:
        return CustomerService(db).update_dates(customer_id, data.check_in, data.check_out)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{customer_id}")
def delete_customer(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_DELETE))
):
    """删除客户（删除镜像、释放日期）"""
    try:
        CustomerService(db).delete_customer(customer_id)
    except ValueError as e:
        raise to_http_exception(e)
    return {"message": "客户已删除", "customer_id": customer_id}


@router.post("/{customer_id}/mark-completed", response_model=CustomerResponse)
def toggle_completed(
    customer_id: int,
    data: CompletionToggle,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_EDIT))
):
    """标记完成 / 撤销完成"""
    service = CustomerService(db)
    try:
        if data.action == "undo":
            return service.undo_completed(customer_id)
        return service.mark_completed(customer_id)
    except ValueError as e:
        raise to_http_exception(e)


# ============== 同行成员 ==============

@router.get("/{customer_id}/members", response_model=List[GroupMemberResponse])
def list_members(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_VIEW))
):
    try:
        return CustomerService(db).require_customer(customer_id).members
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{customer_id}/members", response_model=GroupMemberResponse)
def add_member(
    customer_id: int,
    data: GroupMemberCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_EDIT))
):
    try:
        return CustomerService(db).add_member(customer_id, data)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{customer_id}/members/{member_id}")
def delete_member(
    customer_id: int,
    member_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_EDIT))
):
    try:
        CustomerService(db).delete_member(customer_id, member_id)
    except ValueError as e:
        raise to_http_exception(e)
    return {"message": "成员已删除"}


# ============== 附加费用 ==============

@router.get("/{customer_id}/charges", response_model=List[ExtraChargeResponse])
def list_charges(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_VIEW))
):
    try:
        return CustomerService(db).require_customer(customer_id).extra_charges
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{customer_id}/charges", response_model=ExtraChargeResponse)
def add_charge(
    customer_id: int,
    data: ExtraChargeCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_EDIT))
):
    """添加附加费用"""
    try:
        return CustomerService(db).add_charge(customer_id, data)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{customer_id}/charges/{charge_id}", response_model=ExtraChargeResponse)
def update_charge(
    customer_id: int,
    charge_id: int,
    data: ExtraChargeUpdate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_EDIT))
):
    """修改附加费用（含镜像开关）"""
    try:
        return CustomerService(db).update_charge(customer_id, charge_id, data)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{customer_id}/charges/{charge_id}")
def delete_charge(
    customer_id: int,
    charge_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.CUSTOMERS_EDIT))
):
    try:
        CustomerService(db).delete_charge(customer_id, charge_id)
    except ValueError as e:
        raise to_http_exception(e)
    return {"message": "费用已删除"}


# ============== 付款 ==============

@router.get("/{customer_id}/payments", response_model=List[PaymentResponse])
def list_payments(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.PAYMENTS_VIEW))
):
    try:
        return CustomerService(db).require_customer(customer_id).payments
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{customer_id}/payments", response_model=PaymentResponse)
def add_payment(
    customer_id: int,
    data: PaymentCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.PAYMENTS_CREATE))
):
    """添加付款"""
    try:
        return CustomerService(db).add_payment(customer_id, data)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{customer_id}/payments/{payment_id}", response_model=PaymentResponse)
def update_payment(
    customer_id: int,
    payment_id: int,
    data: PaymentUpdate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.PAYMENTS_CREATE))
):
    try:
        return CustomerService(db).update_payment(customer_id, payment_id, data)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{customer_id}/payments/{payment_id}")
def delete_payment(
    customer_id: int,
    payment_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.PAYMENTS_CREATE))
):
    try:
        CustomerService(db).delete_payment(customer_id, payment_id)
    except ValueError as e:
        raise to_http_exception(e)
    return {"message": "付款已删除"}


# ============== 退款 ==============

@router.get("/{customer_id}/refunds", response_model=List[RefundResponse])
def list_refunds(
    customer_id: int,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.PAYMENTS_VIEW))
):
    try:
        return CustomerService(db).require_customer(customer_id).refunds
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{customer_id}/refunds", response_model=RefundResponse)
def add_refund(
    customer_id: int,
    data: RefundCreate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.BOOKINGS_DELETE, perm.BOOKINGS_EDIT))
):
    """退款并取消住宿"""
    try:
        return CustomerService(db).add_refund(customer_id, data, processed_by=current_user.name)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{customer_id}/refunds/{refund_id}", response_model=RefundResponse)
def update_refund(
    customer_id: int,
    refund_id: int,
    data: RefundUpdate,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.BOOKINGS_DELETE, perm.BOOKINGS_EDIT))
):
    try:
        return CustomerService(db).update_refund(customer_id, refund_id, data)
    except ValueError as e:
        raise to_http_exception(e)
