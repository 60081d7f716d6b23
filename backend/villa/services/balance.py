"""
余额计算器

每次重新全量计算，不做增量修补：
    total_amount   = stay_charges + cuisine_charges + extra_charges_total
    balance_amount = total_amount - received_amount
"""
from decimal import Decimal
from typing import Iterable, Tuple, Union

from villa.models.ontology import Customer

Number = Union[Decimal, int, float, str, None]

_CENT = Decimal("0.01")


def to_amount(value: Number) -> Decimal:
    """统一转为两位小数的 Decimal"""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(_CENT)


def calculate_totals(stay_charges: Number, cuisine_charges: Number,
                     extra_charges_total: Number, received_amount: Number) -> Tuple[Decimal, Decimal]:
    """返回 (total_amount, balance_amount)"""
    total = to_amount(stay_charges) + to_amount(cuisine_charges) + to_amount(extra_charges_total)
    balance = total - to_amount(received_amount)
    return total, balance


def sum_amounts(amounts: Iterable[Number]) -> Decimal:
    return sum((to_amount(a) for a in amounts), Decimal("0.00"))


def recalculate_customer(customer: Customer) -> Customer:
    """
    从子账本重新汇总客户的财务字段并写回对象（由调用方在同一事务中提交）

    extra_charges_total = 全部附加费用之和
    received_amount     = 全部付款之和 - 全部退款之和
    """
    customer.extra_charges_total = sum_amounts(c.amount for c in customer.extra_charges)
    refunded = sum_amounts(r.amount for r in customer.refunds)
    customer.refund_amount = refunded
    customer.received_amount = sum_amounts(p.amount for p in customer.payments) - refunded

    total, balance = calculate_totals(
        customer.stay_charges,
        customer.cuisine_charges,
        customer.extra_charges_total,
        customer.received_amount,
    )
    customer.total_amount = total
    customer.balance_amount = balance
    return customer
