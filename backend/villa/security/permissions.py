"""
集中定义所有权限码常量与角色默认权限集
"""
import json
from typing import FrozenSet, Set

from villa.models.ontology import Employee, EmployeeRole

# 客户
CUSTOMERS_VIEW = "customers.view"
CUSTOMERS_CREATE = "customers.create"
CUSTOMERS_EDIT = "customers.edit"
CUSTOMERS_DELETE = "customers.delete"

# 预订 / 日历
BOOKINGS_VIEW = "bookings.view"
BOOKINGS_CREATE = "bookings.create"
BOOKINGS_EDIT = "bookings.edit"
BOOKINGS_DELETE = "bookings.delete"

# 付款
PAYMENTS_VIEW = "payments.view"
PAYMENTS_CREATE = "payments.create"

# 销售账本
SALES_VIEW = "sales.view"
SALES_CREATE = "sales.create"
SALES_EDIT = "sales.edit"
SALES_DELETE = "sales.delete"

# 支出账本
EXPENSES_VIEW = "expenses.view"
EXPENSES_CREATE = "expenses.create"
EXPENSES_EDIT = "expenses.edit"
EXPENSES_DELETE = "expenses.delete"

ALL_PERMISSIONS: FrozenSet[str] = frozenset({
    CUSTOMERS_VIEW, CUSTOMERS_CREATE, CUSTOMERS_EDIT, CUSTOMERS_DELETE,
    BOOKINGS_VIEW, BOOKINGS_CREATE, BOOKINGS_EDIT, BOOKINGS_DELETE,
    PAYMENTS_VIEW, PAYMENTS_CREATE,
    SALES_VIEW, SALES_CREATE, SALES_EDIT, SALES_DELETE,
    EXPENSES_VIEW, EXPENSES_CREATE, EXPENSES_EDIT, EXPENSES_DELETE,
})

ROLE_DEFAULT_PERMISSIONS = {
    EmployeeRole.ADMIN: ALL_PERMISSIONS,
    EmployeeRole.MANAGER: frozenset({
        CUSTOMERS_VIEW, CUSTOMERS_CREATE, CUSTOMERS_EDIT,
        BOOKINGS_VIEW, BOOKINGS_CREATE, BOOKINGS_EDIT,
        PAYMENTS_VIEW, PAYMENTS_CREATE,
        SALES_VIEW, SALES_CREATE,
        EXPENSES_VIEW, EXPENSES_CREATE,
    }),
    EmployeeRole.STAFF: frozenset({CUSTOMERS_VIEW, BOOKINGS_VIEW, PAYMENTS_VIEW}),
}


def effective_permissions(employee: Employee) -> Set[str]:
    """账号上显式配置的权限列表优先，否则使用角色默认权限集"""
    if employee.permissions:
        codes = json.loads(employee.permissions)
        return {code for code in codes if code in ALL_PERMISSIONS}
    return set(ROLE_DEFAULT_PERMISSIONS.get(employee.role, frozenset()))
