"""
Pydantic 模式定义
用于 API 请求/响应验证

业务规则（必填项、金额为正、日期顺序）由服务层校验并抛出 ValidationError，
这里只约束字段类型与长度
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, ConfigDict
from villa.models.ontology import (
    CustomerStatus, Gender, IdType, PaymentMode, PaymentType, OccupancyType,
    ExpenseCategory, SaleCategory, LedgerSourceType, LedgerKind, SyncOperation,
    OutboxStatus, EmployeeRole
)


# ============== 同行成员 Schemas ==============

class GroupMemberCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    age: Optional[int] = Field(None, ge=0)
    gender: Optional[Gender] = None
    id_type: Optional[IdType] = None
    id_value: Optional[str] = Field(None, max_length=50)
    id_proof_url: Optional[str] = Field(None, max_length=500)


class GroupMemberResponse(GroupMemberCreate):
    id: int
    customer_id: int
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ============== 客户 Schemas ==============

class CustomerCreate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    age: Optional[int] = Field(None, ge=0)
    gender: Optional[Gender] = None
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = None
    id_type: Optional[IdType] = None
    id_value: Optional[str] = Field(None, max_length=50)
    id_proof_url: Optional[str] = Field(None, max_length=500)
    vehicle_number: Optional[str] = Field(None, max_length=30)
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    check_in_time: Optional[str] = Field(None, max_length=5)
    check_out_time: Optional[str] = Field(None, max_length=5)
    instructions: Optional[str] = None
    stay_charges: Decimal = Decimal("0")
    cuisine_charges: Decimal = Decimal("0")
    received_amount: Decimal = Decimal("0")           # 预付金额，记为 advance 付款
    advance_payment_mode: PaymentMode = PaymentMode.CASH
    members: List[GroupMemberCreate] = []


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    age: Optional[int] = Field(None, ge=0)
    gender: Optional[Gender] = None
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = None
    id_type: Optional[IdType] = None
    id_value: Optional[str] = Field(None, max_length=50)
    id_proof_url: Optional[str] = Field(None, max_length=500)
    vehicle_number: Optional[str] = Field(None, max_length=30)
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    check_in_time: Optional[str] = Field(None, max_length=5)
    check_out_time: Optional[str] = Field(None, max_length=5)
    instructions: Optional[str] = None
    stay_charges: Optional[Decimal] = None
    cuisine_charges: Optional[Decimal] = None


class BookingDatesUpdate(BaseModel):
    check_in: date
    check_out: date


class CustomerResponse(BaseModel):
    id: int
    name: str
    age: Optional[int] = None
    gender: Optional[Gender] = None
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    id_type: Optional[IdType] = None
    id_value: Optional[str] = None
    id_proof_url: Optional[str] = None
    vehicle_number: Optional[str] = None
    check_in: date
    check_out: date
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None
    instructions: Optional[str] = None
    stay_charges: Decimal
    cuisine_charges: Decimal
    extra_charges_total: Decimal
    total_amount: Decimal
    received_amount: Decimal
    balance_amount: Decimal
    refund_amount: Decimal
    status: CustomerStatus
    occupant_count: int
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class CompletionToggle(BaseModel):
    action: Literal["complete", "undo"] = "complete"


# ============== 附加费用 Schemas ==============

class ExtraChargeCreate(BaseModel):
    description: str = Field(..., max_length=255)
    amount: Decimal
    charge_date: Optional[date] = None
    record_in_expenses: bool = True
    record_in_sales: bool = False


class ExtraChargeUpdate(BaseModel):
    description: Optional[str] = Field(None, max_length=255)
    amount: Optional[Decimal] = None
    charge_date: Optional[date] = None
    record_in_expenses: Optional[bool] = None
    record_in_sales: Optional[bool] = None


class ExtraChargeResponse(BaseModel):
    id: int
    customer_id: int
    description: str
    amount: Decimal
    charge_date: date
    record_in_expenses: bool
    record_in_sales: bool
    expense_mirror_id: Optional[int] = None
    sale_mirror_id: Optional[int] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ============== 付款 Schemas ==============

class PaymentCreate(BaseModel):
    amount: Decimal
    mode: PaymentMode = PaymentMode.CASH
    payment_type: PaymentType = PaymentType.PART
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = Field(None, max_length=500)


class PaymentUpdate(BaseModel):
    amount: Optional[Decimal] = None
    mode: Optional[PaymentMode] = None
    payment_type: Optional[PaymentType] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    id: int
    customer_id: int
    amount: Decimal
    mode: PaymentMode
    payment_type: PaymentType
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = None
    sale_mirror_id: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


# ============== 退款 Schemas ==============

class RefundCreate(BaseModel):
    amount: Decimal
    method: PaymentMode = PaymentMode.CASH
    reason: Optional[str] = None
    receipt_url: Optional[str] = Field(None, max_length=500)
    record_in_expenses: bool = False


class RefundUpdate(BaseModel):
    reason: Optional[str] = None
    receipt_url: Optional[str] = Field(None, max_length=500)
    record_in_expenses: Optional[bool] = None


class RefundResponse(BaseModel):
    id: int
    customer_id: int
    amount: Decimal
    method: PaymentMode
    reason: Optional[str] = None
    receipt_url: Optional[str] = None
    processed_by: Optional[str] = None
    record_in_expenses: bool
    expense_mirror_id: Optional[int] = None
    refunded_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class CustomerDetail(CustomerResponse):
    members: List[GroupMemberResponse] = []
    extra_charges: List[ExtraChargeResponse] = []
    payments: List[PaymentResponse] = []
    refunds: List[RefundResponse] = []


# ============== 日历 Schemas ==============

class DateRange(BaseModel):
    check_in: date
    check_out: date
    reason: Optional[str] = None


class AvailabilityRequest(BaseModel):
    check_in: date
    check_out: date
    exclude_booking_id: Optional[int] = None
    exclude_customer_id: Optional[int] = None


class AvailabilityResponse(BaseModel):
    available: bool
    conflicting_booking_id: Optional[int] = None
    conflicting_customer_id: Optional[int] = None


class OccupancyResponse(BaseModel):
    id: int
    customer_id: Optional[int] = None
    check_in: date
    check_out: date
    occupant_count: int
    booking_type: OccupancyType
    reason: Optional[str] = None
    customer_name: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


# ============== 汇总账本 Schemas ==============

class ExpenseCreate(BaseModel):
    entry_date: date
    amount: Decimal
    category: ExpenseCategory
    mode: Optional[str] = Field(None, max_length=20)
    description: str
    receipt_urls: List[str] = []
    yearly_sub_category: Optional[str] = Field(None, max_length=50)


class ExpenseUpdate(BaseModel):
    entry_date: Optional[date] = None
    amount: Optional[Decimal] = None
    category: Optional[ExpenseCategory] = None
    mode: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    receipt_urls: Optional[List[str]] = None
    yearly_sub_category: Optional[str] = Field(None, max_length=50)


class ExpenseResponse(BaseModel):
    id: int
    entry_date: date
    amount: Decimal
    category: ExpenseCategory
    mode: Optional[str] = None
    description: str
    receipt_urls: List[str] = []
    yearly_sub_category: Optional[str] = None
    financial_year: Optional[str] = None
    source_type: LedgerSourceType
    source_id: Optional[str] = None
    customer_id: Optional[int] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class SaleCreate(BaseModel):
    entry_date: date
    amount: Decimal
    category: SaleCategory
    payment_mode: PaymentMode = PaymentMode.CASH
    description: str
    receipt_urls: List[str] = []


class SaleUpdate(BaseModel):
    entry_date: Optional[date] = None
    amount: Optional[Decimal] = None
    category: Optional[SaleCategory] = None
    payment_mode: Optional[PaymentMode] = None
    description: Optional[str] = None
    receipt_urls: Optional[List[str]] = None


class SaleResponse(BaseModel):
    id: int
    entry_date: date
    amount: Decimal
    category: SaleCategory
    payment_mode: PaymentMode
    description: str
    receipt_urls: List[str] = []
    financial_year: str
    source_type: LedgerSourceType
    source_id: Optional[str] = None
    customer_id: Optional[int] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class SalesSummary(BaseModel):
    total: Decimal
    count: int
    by_category: dict
    by_payment_mode: dict
    by_source_type: dict


# ============== 对账 Schemas ==============

class SyncOutboxResponse(BaseModel):
    id: int
    ledger_kind: LedgerKind
    operation: SyncOperation
    customer_id: Optional[int] = None
    source_id: str
    error: Optional[str] = None
    attempts: int
    status: OutboxStatus
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class MirrorDrift(BaseModel):
    ledger_kind: LedgerKind
    source_id: str
    customer_id: Optional[int] = None
    problem: str


class ReconciliationReport(BaseModel):
    pending_failures: List[SyncOutboxResponse]
    drift: List[MirrorDrift]
    is_consistent: bool


class RetryResult(BaseModel):
    resolved: int
    failed: int


# ============== 认证 Schemas ==============

class LoginRequest(BaseModel):
    username: str
    password: str


class EmployeeResponse(BaseModel):
    id: int
    username: str
    name: str
    email: Optional[str] = None
    role: EmployeeRole
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    employee: EmployeeResponse
    permissions: List[str] = []
