"""
领域对象定义
客户（住宿预订）拥有自己的子账本（附加费用、付款、退款）；
日历占用与销售/支出汇总账本独立存放，只通过弱引用指回来源记录
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text,
    Enum as SQLEnum, Boolean, Numeric, UniqueConstraint
)
from sqlalchemy.orm import relationship
from villa.database import Base


# ============== 枚举定义 ==============

class CustomerStatus(str, Enum):
    """客户（住宿）状态"""
    ACTIVE = "active"          # 进行中
    COMPLETED = "completed"    # 已完成
    CANCELLED = "cancelled"    # 已取消


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class IdType(str, Enum):
    """证件类型"""
    AADHAR = "Aadhar"
    PAN = "PAN"
    DRIVING_LICENSE = "Driving License"
    PASSPORT = "Passport"
    OTHER = "Other"


class PaymentMode(str, Enum):
    """付款方式"""
    CASH = "cash"
    UPI = "UPI"
    BANK = "bank"


class PaymentType(str, Enum):
    """付款类型"""
    ADVANCE = "advance"            # 预付
    PART = "part"                  # 部分付款
    FINAL = "final"                # 尾款
    EXTRA = "extra"                # 额外
    CANCELLATION = "cancellation"  # 取消费


class OccupancyType(str, Enum):
    """占用类型"""
    CUSTOMER = "customer"  # 客户预订
    BLOCKED = "blocked"    # 管理员封锁


class LedgerKind(str, Enum):
    """汇总账本类型"""
    EXPENSES = "expenses"
    SALES = "sales"


class LedgerSourceType(str, Enum):
    """汇总账本条目来源"""
    MANUAL = "manual"                # 手工录入
    CUSTOMER = "customer"            # 客户子账本镜像
    STAFF_PAYMENT = "staff_payment"  # 员工工资
    STAFF_EXPENSE = "staff_expense"  # 员工报销


class ExpenseCategory(str, Enum):
    """支出类别"""
    FOOD = "food"
    MISCELLANEOUS = "miscellaneous"
    SERVICE = "service"
    MAINTENANCE = "maintenance"
    STAFF = "staff"
    REFUND = "refund"
    OTHER = "other"
    SALARY = "salary"
    YEARLY = "yearly"


class SaleCategory(str, Enum):
    """销售类别"""
    STAY = "stay"
    CUISINE = "cuisine"
    EXTRA_SERVICES = "extra_services"
    ADVANCE = "advance"
    OTHER = "other"


class SyncOperation(str, Enum):
    """镜像同步操作"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OutboxStatus(str, Enum):
    """同步失败队列状态"""
    PENDING = "pending"
    RESOLVED = "resolved"


class EmployeeRole(str, Enum):
    """员工角色"""
    ADMIN = "admin"        # 管理员
    MANAGER = "manager"    # 经理
    STAFF = "staff"        # 前台员工


# ============== 客户与子账本 ==============

class Customer(Base):
    """
    客户对象 - 一次住宿的聚合根
    total_amount / balance_amount 只由余额计算器写入
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    age = Column(Integer)
    gender = Column(SQLEnum(Gender))
    phone = Column(String(20), nullable=False)
    email = Column(String(100))
    address = Column(Text)
    id_type = Column(SQLEnum(IdType))
    id_value = Column(String(50), default="")
    id_proof_url = Column(String(500), default="")
    vehicle_number = Column(String(30))
    check_in = Column(Date, nullable=False)              # 入住日期
    check_out = Column(Date, nullable=False)             # 离店日期（不含）
    check_in_time = Column(String(5), default="12:00")
    check_out_time = Column(String(5), default="10:00")
    instructions = Column(Text, default="")

    stay_charges = Column(Numeric(12, 2), nullable=False, default=0)
    cuisine_charges = Column(Numeric(12, 2), nullable=False, default=0)
    extra_charges_total = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    received_amount = Column(Numeric(12, 2), nullable=False, default=0)
    balance_amount = Column(Numeric(12, 2), nullable=False, default=0)
    refund_amount = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(SQLEnum(CustomerStatus), default=CustomerStatus.ACTIVE, nullable=False)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_by = Column(Integer, ForeignKey("employees.id"))

    # 链接：子账本归客户独占
    members = relationship("GroupMember", back_populates="customer", cascade="all, delete-orphan")
    payments = relationship("CustomerPayment", back_populates="customer", cascade="all, delete-orphan",
                            order_by="CustomerPayment.id")
    extra_charges = relationship("ExtraCharge", back_populates="customer", cascade="all, delete-orphan",
                                 order_by="ExtraCharge.id")
    refunds = relationship("Refund", back_populates="customer", cascade="all, delete-orphan",
                           order_by="Refund.id")
    creator = relationship("Employee", foreign_keys=[created_by])

    @property
    def occupant_count(self) -> int:
        """入住人数 = 同行成员 + 主客人"""
        return len(self.members) + 1


class GroupMember(Base):
    """同行成员"""
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    name = Column(String(100), nullable=False)
    age = Column(Integer)
    gender = Column(SQLEnum(Gender))
    id_type = Column(SQLEnum(IdType))
    id_value = Column(String(50))
    id_proof_url = Column(String(500))
    created_at = Column(DateTime, default=datetime.utcnow)

    customer = relationship("Customer", back_populates="members")


class ExtraCharge(Base):
    """
    附加费用 - 客户子账本
    expense_mirror_id / sale_mirror_id 记录当前镜像行，决定同步路由
    """
    __tablename__ = "extra_charges"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    description = Column(String(255), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    charge_date = Column(Date, nullable=False)
    record_in_expenses = Column(Boolean, default=True, nullable=False)
    record_in_sales = Column(Boolean, default=False, nullable=False)
    expense_mirror_id = Column(Integer)
    sale_mirror_id = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer", back_populates="extra_charges")

    @property
    def source_ref(self) -> str:
        return f"charge:{self.id}"


class CustomerPayment(Base):
    """付款 - 客户子账本，无条件镜像到销售账本"""
    __tablename__ = "customer_payments"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    mode = Column(SQLEnum(PaymentMode), nullable=False, default=PaymentMode.CASH)
    payment_type = Column(SQLEnum(PaymentType), nullable=False, default=PaymentType.PART)
    paid_at = Column(DateTime, default=datetime.utcnow)
    notes = Column(Text)
    receipt_url = Column(String(500))
    sale_mirror_id = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer", back_populates="payments")

    @property
    def source_ref(self) -> str:
        return f"payment:{self.id}"


class Refund(Base):
    """退款 - 触发取消与日期释放"""
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(SQLEnum(PaymentMode), nullable=False, default=PaymentMode.CASH)
    reason = Column(Text)
    receipt_url = Column(String(500))
    processed_by = Column(String(100))
    record_in_expenses = Column(Boolean, default=False, nullable=False)
    expense_mirror_id = Column(Integer)
    refunded_at = Column(DateTime, default=datetime.utcnow)

    customer = relationship("Customer", back_populates="refunds")

    @property
    def source_ref(self) -> str:
        return f"refund:{self.id}"


# ============== 日历占用 ==============

class Occupancy(Base):
    """
    占用记录 - 一段 [check_in, check_out) 的预留
    customer_id 为空表示管理员封锁
    """
    __tablename__ = "occupancies"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    occupant_count = Column(Integer, default=0)
    booking_type = Column(SQLEnum(OccupancyType), nullable=False, default=OccupancyType.CUSTOMER)
    reason = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    nights = relationship("OccupancyNight", back_populates="occupancy", cascade="all, delete-orphan")


class OccupancyNight(Base):
    """
    占用夜晚 - 每个被占用的日历日一行
    night 唯一约束是并发预留的最终防线
    """
    __tablename__ = "occupancy_nights"

    id = Column(Integer, primary_key=True, index=True)
    occupancy_id = Column(Integer, ForeignKey("occupancies.id"), nullable=False)
    night = Column(Date, nullable=False, unique=True)

    occupancy = relationship("Occupancy", back_populates="nights")


# ============== 汇总账本 ==============

class Expense(Base):
    """
    支出账本条目
    source_type != manual 的行只能由同步器改写
    """
    __tablename__ = "expenses"
    __table_args__ = (UniqueConstraint("source_type", "source_id", name="uq_expense_source"),)

    id = Column(Integer, primary_key=True, index=True)
    entry_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(SQLEnum(ExpenseCategory), nullable=False)
    mode = Column(String(20))
    description = Column(Text, nullable=False)
    receipt_urls = Column(Text, default="[]")           # JSON 数组
    yearly_sub_category = Column(String(50))
    financial_year = Column(String(9))
    source_type = Column(SQLEnum(LedgerSourceType), nullable=False, default=LedgerSourceType.MANUAL)
    source_id = Column(String(50))                      # 来源记录弱引用，如 charge:12
    customer_id = Column(Integer, index=True)           # 弱引用，不建外键
    staff_id = Column(Integer)
    created_by = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Sale(Base):
    """销售账本条目"""
    __tablename__ = "sales"
    __table_args__ = (UniqueConstraint("source_type", "source_id", name="uq_sale_source"),)

    id = Column(Integer, primary_key=True, index=True)
    entry_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(SQLEnum(SaleCategory), nullable=False)
    payment_mode = Column(SQLEnum(PaymentMode), nullable=False, default=PaymentMode.CASH)
    description = Column(Text, nullable=False)
    receipt_urls = Column(Text, default="[]")
    financial_year = Column(String(9), nullable=False)  # 如 2024-2025
    source_type = Column(SQLEnum(LedgerSourceType), nullable=False, default=LedgerSourceType.MANUAL)
    source_id = Column(String(50))
    customer_id = Column(Integer, index=True)
    created_by = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SyncOutbox(Base):
    """
    镜像同步失败队列
    失败的镜像写入落在这里，供对账报表与重试使用
    """
    __tablename__ = "sync_outbox"

    id = Column(Integer, primary_key=True, index=True)
    ledger_kind = Column(SQLEnum(LedgerKind), nullable=False)
    operation = Column(SQLEnum(SyncOperation), nullable=False)
    customer_id = Column(Integer, index=True)
    source_id = Column(String(50), nullable=False)
    payload = Column(Text)                               # JSON
    error = Column(Text)
    attempts = Column(Integer, default=1)
    status = Column(SQLEnum(OutboxStatus), default=OutboxStatus.PENDING, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    resolved_at = Column(DateTime)


# ============== 员工 ==============

class Employee(Base):
    """
    员工对象（调用方身份）
    permissions 为空时使用角色默认权限集
    """
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    email = Column(String(100))
    role = Column(SQLEnum(EmployeeRole), nullable=False, default=EmployeeRole.STAFF)
    permissions = Column(Text)                           # JSON 数组，覆盖角色默认
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
