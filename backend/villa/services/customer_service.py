"""
客户服务 - 住宿生命周期编排
创建 / 改期 / 子账本变更 / 退款取消 / 完成切换

每个写操作的顺序：
    校验 -> （日历锁内）可用性检查与占用变更 -> 子账本变更 -> 余额重算 -> flush
    -> 镜像同步（保存点内，失败进入同步失败队列） -> 提交 -> 发布事件
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from villa.config import settings
from villa.core.state_machine import (
    build_customer_state_machine, TRIGGER_CANCEL, TRIGGER_COMPLETE, TRIGGER_UNDO
)
from villa.models.events import (
    EventType, CustomerCancelledData, CustomerCreatedData, CustomerStatusData
)
from villa.models.ontology import (
    Customer, CustomerPayment, CustomerStatus, ExtraCharge, GroupMember,
    PaymentType, Refund
)
from villa.models.schemas import (
    CustomerCreate, CustomerUpdate, ExtraChargeCreate, ExtraChargeUpdate,
    GroupMemberCreate, PaymentCreate, PaymentUpdate, RefundCreate, RefundUpdate
)
from villa.services.availability_service import AvailabilityChecker
from villa.services.balance import recalculate_customer, to_amount
from villa.services.booking_store import BookingStore
from villa.services.errors import NotFoundError, ValidationError
from villa.services.event_bus import Event, event_bus
from villa.services.ledger_sync import LedgerSynchronizer

logger = logging.getLogger(__name__)


class CustomerService:
    """客户服务"""

    def __init__(self, db: Session, synchronizer: Optional[LedgerSynchronizer] = None):
        self.db = db
        self.store = BookingStore(db)
        self.checker = AvailabilityChecker(db, self.store)
        self.synchronizer = synchronizer or LedgerSynchronizer(db)

    # ============== 查询 ==============

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.id == customer_id).first()

    def require_customer(self, customer_id: int) -> Customer:
        customer = self.get_customer(customer_id)
        if not customer:
            raise NotFoundError("客户不存在", {"customer_id": customer_id})
        return customer

    def list_customers(self, status: Optional[CustomerStatus] = None,
                       check_in_from: Optional[date] = None,
                       check_in_to: Optional[date] = None,
                       search: Optional[str] = None,
                       limit: int = 100) -> List[Customer]:
        """按状态、入住日期窗口、姓名/邮箱/电话搜索"""
        query = self.db.query(Customer)
        if status:
            query = query.filter(Customer.status == status)
        if check_in_from:
            query = query.filter(Customer.check_in >= check_in_from)
        if check_in_to:
            query = query.filter(Customer.check_in <= check_in_to)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Customer.name.ilike(pattern),
                Customer.email.ilike(pattern),
                Customer.phone.ilike(pattern),
            ))
        return query.order_by(Customer.check_in.desc(), Customer.id.desc()).limit(limit).all()

    # ============== 校验 ==============

    @staticmethod
    def _require_positive(amount: Optional[Decimal], field: str) -> Decimal:
        if amount is None or to_amount(amount) <= 0:
            raise ValidationError(f"{field}必须大于0", {"field": field})
        return to_amount(amount)

    @staticmethod
    def _require_non_negative(amount: Optional[Decimal], field: str) -> Decimal:
        if amount is None or to_amount(amount) < 0:
            raise ValidationError(f"{field}不能为负数", {"field": field})
        return to_amount(amount)

    @staticmethod
    def _validate_dates(check_in: Optional[date], check_out: Optional[date]) -> None:
        if check_in is None or check_out is None:
            raise ValidationError("入住和离店日期不能为空")
        if check_out <= check_in:
            raise ValidationError("离店日期必须晚于入住日期")

    def _validate_new_customer(self, data: CustomerCreate) -> None:
        for field, label in (("name", "姓名"), ("phone", "电话"),
                             ("check_in", "入住日期"), ("check_out", "离店日期")):
            value = getattr(data, field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"{label}不能为空", {"field": field})
        if not data.id_value and not data.id_proof_url:
            raise ValidationError("证件号码和证件照片至少填写一项", {"field": "id_value"})
        self._validate_dates(data.check_in, data.check_out)
        self._require_non_negative(data.stay_charges, "住宿费")
        self._require_non_negative(data.cuisine_charges, "餐饮费")
        self._require_non_negative(data.received_amount, "预付金额")

    # ============== 创建 / 修改 / 删除 ==============

    def create_customer(self, data: CustomerCreate, operator_id: Optional[int] = None) -> Customer:
        """
        创建住宿

        检查、预留、写入客户记录在日历锁内一次提交；
        预付金额记为 advance 付款并镜像到销售账本
        """
        self._validate_new_customer(data)

        with self.checker.guarded():
            result = self.checker.check(data.check_in, data.check_out)
            if not result.available:
                raise self.checker.conflict_error(result)

            customer = Customer(
                name=data.name.strip(),
                age=data.age,
                gender=data.gender,
                phone=data.phone.strip(),
                email=data.email,
                address=data.address,
                id_type=data.id_type,
                id_value=data.id_value or "",
                id_proof_url=data.id_proof_url or "",
                vehicle_number=data.vehicle_number,
                check_in=data.check_in,
                check_out=data.check_out,
                check_in_time=data.check_in_time or settings.DEFAULT_CHECK_IN_TIME,
                check_out_time=data.check_out_time or settings.DEFAULT_CHECK_OUT_TIME,
                instructions=data.instructions or "",
                stay_charges=to_amount(data.stay_charges),
                cuisine_charges=to_amount(data.cuisine_charges),
                status=CustomerStatus.ACTIVE,
                created_by=operator_id,
            )
            for member in data.members:
                customer.members.append(GroupMember(**member.model_dump()))

            self.db.add(customer)
            self.db.flush()  # 获取 customer.id

            self.store.reserve(data.check_in, data.check_out, customer.id, customer.occupant_count)

            advance = None
            if to_amount(data.received_amount) > 0:
                advance = CustomerPayment(
                    amount=to_amount(data.received_amount),
                    mode=data.advance_payment_mode,
                    payment_type=PaymentType.ADVANCE,
                    paid_at=datetime.utcnow(),
                    notes="Advance payment",
                )
                customer.payments.append(advance)

            recalculate_customer(customer)
            self.db.flush()

            if advance is not None:
                self.synchronizer.sync_all_for_event(advance, customer.id)

            self.db.commit()

        self.db.refresh(customer)
        logger.info(f"Customer {customer.id} booked {customer.check_in}..{customer.check_out}")

        event_bus.publish(Event(
            event_type=EventType.CUSTOMER_CREATED.value,
            timestamp=datetime.now(),
            data=CustomerCreatedData(
                customer_id=customer.id,
                name=customer.name,
                email=customer.email,
                check_in=customer.check_in,
                check_out=customer.check_out,
                total_amount=customer.total_amount,
            ).to_dict(),
            source="customer_service",
        ))
        return customer

    def update_dates(self, customer_id: int, check_in: date, check_out: date) -> Customer:
        """修改住宿日期"""
        return self.update_customer(customer_id, CustomerUpdate(check_in=check_in, check_out=check_out))

    def update_customer(self, customer_id: int, data: CustomerUpdate) -> Customer:
        """
        修改客户资料

        住宿费/餐饮费变化时重算余额；日期变化时排除自身占用做可用性检查，
        释放旧区间、预留新区间与其余字段修改在同一事务中提交，冲突时什么都不写
        """
        update_data = data.model_dump(exclude_unset=True)

        with self.checker.guarded():
            customer = self.require_customer(customer_id)

            new_check_in = update_data.pop("check_in", None) or customer.check_in
            new_check_out = update_data.pop("check_out", None) or customer.check_out
            self._validate_dates(new_check_in, new_check_out)
            dates_changed = (new_check_in, new_check_out) != (customer.check_in, customer.check_out)
            if dates_changed and customer.status == CustomerStatus.CANCELLED:
                raise ValidationError("已取消的住宿不能修改日期")

            for field in ("name", "phone"):
                if field in update_data and not (update_data[field] or "").strip():
                    raise ValidationError(f"{field} 不能为空", {"field": field})
            for field in ("id_value", "id_proof_url"):
                if field in update_data:
                    update_data[field] = update_data[field] or ""
            id_value = update_data.get("id_value", customer.id_value)
            id_proof_url = update_data.get("id_proof_url", customer.id_proof_url)
            if not id_value and not id_proof_url:
                raise ValidationError("证件号码和证件照片至少填写一项", {"field": "id_value"})
            for field, label in (("stay_charges", "住宿费"), ("cuisine_charges", "餐饮费")):
                if field in update_data:
                    update_data[field] = self._require_non_negative(update_data[field], label)

            old_range = (customer.check_in, customer.check_out)
            if dates_changed:
                self.checker.move_reservation(customer.id, new_check_in, new_check_out,
                                              customer.occupant_count)
                customer.check_in = new_check_in
                customer.check_out = new_check_out

            for key, value in update_data.items():
                setattr(customer, key, value)
            recalculate_customer(customer)
            self.db.commit()

        self.db.refresh(customer)
        if dates_changed:
            logger.info(
                f"Customer {customer.id} moved {old_range[0]}..{old_range[1]} "
                f"-> {new_check_in}..{new_check_out}"
            )
            event_bus.publish(Event(
                event_type=EventType.CUSTOMER_DATES_CHANGED.value,
                timestamp=datetime.now(),
                data={
                    "customer_id": customer.id,
                    "old_check_in": old_range[0].isoformat(),
                    "old_check_out": old_range[1].isoformat(),
                    "check_in": new_check_in.isoformat(),
                    "check_out": new_check_out.isoformat(),
                },
                source="customer_service",
            ))
        return customer

    def delete_customer(self, customer_id: int) -> None:
        """删除客户：先删除其创建的镜像，再释放占用，最后删除记录与子账本"""
        with self.checker.guarded():
            customer = self.require_customer(customer_id)
            self.synchronizer.remove_customer_mirrors(customer)
            self.store.release_customer(customer.id)
            self.db.delete(customer)
            self.db.commit()

        logger.info(f"Customer {customer_id} deleted")
        event_bus.publish(Event(
            event_type=EventType.CUSTOMER_DELETED.value,
            timestamp=datetime.now(),
            data={"customer_id": customer_id},
            source="customer_service",
        ))

    # ============== 同行成员 ==============

    def add_member(self, customer_id: int, data: GroupMemberCreate) -> GroupMember:
        customer = self.require_customer(customer_id)
        member = GroupMember(**data.model_dump())
        customer.members.append(member)
        self.db.flush()
        self.store.set_occupant_count(customer.id, customer.occupant_count)
        self.db.commit()
        self.db.refresh(member)
        return member

    def delete_member(self, customer_id: int, member_id: int) -> None:
        customer = self.require_customer(customer_id)
        member = next((m for m in customer.members if m.id == member_id), None)
        if member is None:
            raise NotFoundError("成员不存在", {"member_id": member_id})
        customer.members.remove(member)
        self.db.flush()
        self.store.set_occupant_count(customer.id, customer.occupant_count)
        self.db.commit()

    # ============== 附加费用 ==============

    def _require_charge(self, customer: Customer, charge_id: int) -> ExtraCharge:
        charge = next((c for c in customer.extra_charges if c.id == charge_id), None)
        if charge is None:
            raise NotFoundError("附加费用不存在", {"charge_id": charge_id})
        return charge

    def add_charge(self, customer_id: int, data: ExtraChargeCreate) -> ExtraCharge:
        """添加附加费用，按开关镜像到支出/销售账本"""
        customer = self.require_customer(customer_id)
        if not (data.description or "").strip():
            raise ValidationError("费用说明不能为空", {"field": "description"})
        amount = self._require_positive(data.amount, "费用金额")

        charge = ExtraCharge(
            description=data.description.strip(),
            amount=amount,
            charge_date=data.charge_date or date.today(),
            record_in_expenses=data.record_in_expenses,
            record_in_sales=data.record_in_sales,
        )
        customer.extra_charges.append(charge)
        recalculate_customer(customer)
        self.db.flush()

        self.synchronizer.sync_all_for_event(charge, customer.id)
        self.db.commit()
        self.db.refresh(charge)
        logger.info(f"Charge {charge.id} ({amount}) added to customer {customer.id}")
        return charge

    def update_charge(self, customer_id: int, charge_id: int, data: ExtraChargeUpdate) -> ExtraCharge:
        """修改附加费用；两个账本分别按开关迁移表同步"""
        customer = self.require_customer(customer_id)
        charge = self._require_charge(customer, charge_id)
        update_data = data.model_dump(exclude_unset=True)

        if "amount" in update_data:
            update_data["amount"] = self._require_positive(update_data["amount"], "费用金额")
        if "description" in update_data:
            if not (update_data["description"] or "").strip():
                raise ValidationError("费用说明不能为空", {"field": "description"})
            update_data["description"] = update_data["description"].strip()
        for toggle in ("record_in_expenses", "record_in_sales", "charge_date"):
            if toggle in update_data and update_data[toggle] is None:
                update_data.pop(toggle)

        for key, value in update_data.items():
            setattr(charge, key, value)
        recalculate_customer(customer)
        self.db.flush()

        self.synchronizer.sync_all_for_event(charge, customer.id)
        self.db.commit()
        self.db.refresh(charge)
        return charge

    def delete_charge(self, customer_id: int, charge_id: int) -> None:
        """删除附加费用：先删镜像，再删子账本行"""
        customer = self.require_customer(customer_id)
        charge = self._require_charge(customer, charge_id)

        self.synchronizer.sync_all_for_event(charge, customer.id, removed=True)
        customer.extra_charges.remove(charge)
        recalculate_customer(customer)
        self.db.commit()
        logger.info(f"Charge {charge_id} removed from customer {customer.id}")

    # ============== 付款 ==============

    def _require_payment(self, customer: Customer, payment_id: int) -> CustomerPayment:
        payment = next((p for p in customer.payments if p.id == payment_id), None)
        if payment is None:
            raise NotFoundError("付款记录不存在", {"payment_id": payment_id})
        return payment

    def add_payment(self, customer_id: int, data: PaymentCreate) -> CustomerPayment:
        """添加付款，无条件镜像到销售账本"""
        customer = self.require_customer(customer_id)
        amount = self._require_positive(data.amount, "付款金额")

        payment = CustomerPayment(
            amount=amount,
            mode=data.mode,
            payment_type=data.payment_type,
            paid_at=data.paid_at or datetime.utcnow(),
            notes=data.notes,
            receipt_url=data.receipt_url,
        )
        customer.payments.append(payment)
        recalculate_customer(customer)
        self.db.flush()

        self.synchronizer.sync_all_for_event(payment, customer.id)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"Payment {payment.id} ({amount}, {payment.payment_type.value}) for customer {customer.id}")
        return payment

    def update_payment(self, customer_id: int, payment_id: int, data: PaymentUpdate) -> CustomerPayment:
        customer = self.require_customer(customer_id)
        payment = self._require_payment(customer, payment_id)
        update_data = {k: v for k, v in data.model_dump(exclude_unset=True).items()
                       if v is not None or k in ("notes", "receipt_url")}

        if "amount" in update_data:
            update_data["amount"] = self._require_positive(update_data["amount"], "付款金额")

        for key, value in update_data.items():
            setattr(payment, key, value)
        recalculate_customer(customer)
        self.db.flush()

        self.synchronizer.sync_all_for_event(payment, customer.id)
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def delete_payment(self, customer_id: int, payment_id: int) -> None:
        customer = self.require_customer(customer_id)
        payment = self._require_payment(customer, payment_id)

        self.synchronizer.sync_all_for_event(payment, customer.id, removed=True)
        customer.payments.remove(payment)
        recalculate_customer(customer)
        self.db.commit()

    # ============== 退款 / 取消 ==============

    def add_refund(self, customer_id: int, data: RefundCreate,
                   processed_by: Optional[str] = None) -> Refund:
        """
        退款并取消住宿

        金额必须为正且不超过已收金额；释放日期，状态置为 cancelled（不可逆）。
        退款不冲减销售账本。
        """
        with self.checker.guarded():
            customer = self.require_customer(customer_id)
            amount = self._require_positive(data.amount, "退款金额")
            if customer.status == CustomerStatus.CANCELLED:
                raise ValidationError("该住宿已取消")
            received = to_amount(customer.received_amount)
            if amount > received:
                raise ValidationError(
                    f"退款金额不能超过已收金额 {received}",
                    {"amount": str(amount), "received_amount": str(received)}
                )

            machine = build_customer_state_machine(customer.status.value)
            if not machine.can_transition_to(CustomerStatus.CANCELLED.value, TRIGGER_CANCEL):
                raise ValidationError("当前状态不能取消")

            original_received = received
            refund = Refund(
                amount=amount,
                method=data.method,
                reason=data.reason,
                receipt_url=data.receipt_url,
                processed_by=processed_by,
                record_in_expenses=data.record_in_expenses,
                refunded_at=datetime.utcnow(),
            )

            customer.refunds.append(refund)
            machine.transition_to(CustomerStatus.CANCELLED.value, TRIGGER_CANCEL, {"customer": customer})
            recalculate_customer(customer)
            self.db.flush()

            self.store.release(customer.check_in, customer.check_out, customer.id)
            self.synchronizer.sync_all_for_event(refund, customer.id)
            self.db.commit()

        self.db.refresh(refund)
        logger.info(f"Customer {customer.id} cancelled with refund {refund.id} ({amount})")

        event_bus.publish(Event(
            event_type=EventType.CUSTOMER_CANCELLED.value,
            timestamp=datetime.now(),
            data=CustomerCancelledData(
                customer_id=customer.id,
                name=customer.name,
                email=customer.email,
                check_in=customer.check_in,
                check_out=customer.check_out,
                original_received=original_received,
                refund_amount=amount,
                remaining_balance=original_received - amount,
            ).to_dict(),
            source="customer_service",
        ))
        return refund

    def update_refund(self, customer_id: int, refund_id: int, data: RefundUpdate) -> Refund:
        """修改退款备注或支出镜像开关；金额不可修改"""
        customer = self.require_customer(customer_id)
        refund = next((r for r in customer.refunds if r.id == refund_id), None)
        if refund is None:
            raise NotFoundError("退款记录不存在", {"refund_id": refund_id})

        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("record_in_expenses") is None:
            update_data.pop("record_in_expenses", None)
        for key, value in update_data.items():
            setattr(refund, key, value)
        self.db.flush()

        self.synchronizer.sync_all_for_event(refund, customer.id)
        self.db.commit()
        self.db.refresh(refund)
        return refund

    # ============== 完成切换 ==============

    def _publish_status(self, customer: Customer, old_status: str, event_type: EventType) -> None:
        event_bus.publish(Event(
            event_type=event_type.value,
            timestamp=datetime.now(),
            data=CustomerStatusData(
                customer_id=customer.id,
                old_status=old_status,
                new_status=customer.status.value,
            ).to_dict(),
            source="customer_service",
        ))

    def mark_completed(self, customer_id: int) -> Customer:
        """余额结清（<= 0）后标记完成"""
        customer = self.require_customer(customer_id)
        recalculate_customer(customer)
        old_status = customer.status.value

        if customer.status != CustomerStatus.ACTIVE:
            raise ValidationError(f"当前状态 {old_status} 不能标记完成")

        machine = build_customer_state_machine(old_status)
        context = {"customer": customer, "balance": to_amount(customer.balance_amount)}
        if not machine.transition_to(CustomerStatus.COMPLETED.value, TRIGGER_COMPLETE, context):
            raise ValidationError(
                f"尚有余额 {customer.balance_amount} 未结清",
                {"balance_amount": str(customer.balance_amount)}
            )

        self.db.commit()
        self.db.refresh(customer)
        self._publish_status(customer, old_status, EventType.CUSTOMER_COMPLETED)
        return customer

    def undo_completed(self, customer_id: int) -> Customer:
        """撤销完成，回到 active"""
        customer = self.require_customer(customer_id)
        old_status = customer.status.value

        machine = build_customer_state_machine(old_status)
        if not machine.transition_to(CustomerStatus.ACTIVE.value, TRIGGER_UNDO, {"customer": customer}):
            raise ValidationError(f"当前状态 {old_status} 不能撤销完成")

        self.db.commit()
        self.db.refresh(customer)
        self._publish_status(customer, old_status, EventType.CUSTOMER_REOPENED)
        return customer
