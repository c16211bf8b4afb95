"""
Great Pearl Coffee Finance - Role / Permission Gate

Roles are free-text strings on the employee record and permissions are a
free-form list of strings. The checks below are pure functions over that
in-memory record; the API applies them server-side through the
dependencies in app.dependencies.

Role Matrix:
============

| Capability               | Super Admin | Administrator | Manager | Finance* | Other |
|--------------------------|-------------|---------------|---------|----------|-------|
| admin approval           | X           | X             | X       |          |       |
| finance approval         | X           |               |         | X        |       |
| reject pending request   | X           | X             | X       | X        |       |
| finance area access (UI) | X           | X             | X       | X        |       |

* any role containing "finance", or a finance permission (see below).

Finance permissions: "Finance", "Finance Management", "Finance Approval",
or anything prefixed "Finance:" (e.g. "Finance:Approve").
"""

from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:
    from app.models.employee import Employee


class Role(str, Enum):
    """Role names with special meaning to the gate."""
    SUPER_ADMIN = "Super Admin"
    ADMINISTRATOR = "Administrator"
    MANAGER = "Manager"
    FINANCE = "Finance"


ADMIN_ROLES = frozenset({Role.SUPER_ADMIN.value, Role.ADMINISTRATOR.value, Role.MANAGER.value})

FINANCE_PERMISSIONS = frozenset({"Finance", "Finance Management", "Finance Approval"})
FINANCE_PERMISSION_PREFIX = "Finance:"

FINANCE_ACCESS_ROLES = frozenset({
    Role.SUPER_ADMIN.value,
    Role.MANAGER.value,
    Role.ADMINISTRATOR.value,
    Role.FINANCE.value,
})


def is_super_admin(employee: Optional["Employee"]) -> bool:
    return employee is not None and employee.role == Role.SUPER_ADMIN.value


def has_capability(
    employee: Optional["Employee"],
    roles: Optional[Iterable[str]] = None,
    permissions: Optional[Iterable[str]] = None,
    require_all: bool = False,
) -> bool:
    """
    Check whether an employee passes a role and/or permission gate.

    Args:
        employee: Employee record (None means nobody is signed in)
        roles: If given, the employee's role must be one of these
        permissions: If given, the employee must hold these permissions
        require_all: With permissions, require every one instead of any one

    Returns:
        True when the gate passes. Super Admin always passes.
    """
    if employee is None:
        return False

    if is_super_admin(employee):
        return True

    if roles is not None and employee.role not in set(roles):
        return False

    if permissions is not None:
        held = set(employee.permissions or [])
        wanted = list(permissions)
        if require_all:
            return all(p in held for p in wanted)
        return any(p in held for p in wanted)

    return True


def is_admin(employee: Optional["Employee"]) -> bool:
    """Admin-stage approver: Super Admin, Administrator or Manager."""
    return employee is not None and employee.role in ADMIN_ROLES


def has_finance_capability(employee: Optional["Employee"]) -> bool:
    """
    Finance-stage approver.

    Matching is deliberately literal to stay compatible with stored role and
    permission strings: role contains "finance" (any case), or one of the
    finance permissions is held.
    """
    if employee is None:
        return False
    if is_super_admin(employee):
        return True
    if "finance" in (employee.role or "").lower():
        return True
    for permission in employee.permissions or []:
        if permission in FINANCE_PERMISSIONS or permission.startswith(FINANCE_PERMISSION_PREFIX):
            return True
    return False


def can_reject(employee: Optional["Employee"]) -> bool:
    """Either approver class may reject a pending request."""
    return is_admin(employee) or has_finance_capability(employee)


def has_finance_access(employee: Optional["Employee"]) -> bool:
    """Whether the finance area should be shown to this employee."""
    if employee is None:
        return False
    return (
        employee.department == "Finance"
        or "Finance" in (employee.permissions or [])
        or employee.role in FINANCE_ACCESS_ROLES
    )


def role_matches(target_role: Optional[str], employee: "Employee") -> bool:
    """Whether a role-targeted broadcast is meant for this employee."""
    if target_role is None or is_super_admin(employee):
        return True
    if target_role == Role.FINANCE.value:
        return has_finance_capability(employee)
    if target_role == Role.ADMINISTRATOR.value:
        return is_admin(employee)
    return employee.role == target_role


def target_roles_for(employee: "Employee") -> List[str]:
    """
    Every target_role value role_matches() accepts for this employee.

    Lets the notification queries filter in SQL. Not meaningful for Super
    Admin, who matches every role.
    """
    roles = [employee.role] if employee.role else []
    if has_finance_capability(employee):
        roles.append(Role.FINANCE.value)
    if is_admin(employee):
        roles.append(Role.ADMINISTRATOR.value)
    return roles


def notification_visible_to(
    target_user_email: Optional[str],
    target_role: Optional[str],
    employee: Optional["Employee"],
) -> bool:
    """Rows addressed to someone else are hidden; role broadcasts need a role match."""
    if employee is None:
        return False
    if target_user_email is not None and target_user_email != employee.email:
        return False
    return role_matches(target_role, employee)


# Realtime tables that carry cash, payment and expense data
FINANCE_CHANNELS = frozenset({
    "finance_cash_transactions",
    "finance_cash_balance",
    "finance_cash_deposits",
    "payment_records",
    "finance_advances",
    "finance_expenses",
    "finance_settings",
})


def channel_allowed(channel: str, employee: Optional["Employee"]) -> bool:
    """Realtime channels follow the REST gates: finance tables need finance access."""
    if employee is None:
        return False
    if channel in FINANCE_CHANNELS:
        return has_finance_access(employee) or has_finance_capability(employee)
    return True
