"""
Great Pearl Coffee Finance - FastAPI Dependencies

Shared dependencies for authentication, database sessions, and role gating.

This module provides dependency injection for:
1. Database sessions
2. Current employee authentication
3. Role/permission checks enforced server-side
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.models.employee import Employee
from app.utils.error_handling import (
    AccountDisabledException,
    AuthenticationException,
    InsufficientPermissionsException,
    TokenInvalidException,
)
from app.utils.permissions import (
    can_reject,
    has_finance_access,
    has_finance_capability,
    is_admin,
)
from app.utils.security import verify_access_token


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)


async def get_current_employee(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_async_session),
) -> Employee:
    """
    Get the current authenticated employee from JWT token.

    Token can be provided via:
    1. Authorization: Bearer <token> header
    2. access_token cookie

    Raises:
        AuthenticationException: If token is missing or invalid
        AccountDisabledException: If the employee is disabled
    """
    token = None

    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get("access_token")
        if token and token.startswith("Bearer "):
            token = token[7:]

    if not token:
        raise AuthenticationException("Not authenticated")

    payload = verify_access_token(token)
    if not payload:
        raise TokenInvalidException()

    email = payload.get("sub")
    if not email:
        raise TokenInvalidException("Invalid token payload")

    result = await db.execute(select(Employee).where(Employee.email == email))
    employee = result.scalar_one_or_none()

    if not employee:
        raise AuthenticationException("Employee not found")

    if not employee.is_active:
        raise AccountDisabledException(employee.email)

    return employee


async def require_admin(
    employee: Employee = Depends(get_current_employee),
) -> Employee:
    """Require an admin-stage approver (Super Admin, Administrator, Manager)."""
    if not is_admin(employee):
        raise InsufficientPermissionsException("Admin approval", user_role=employee.role)
    return employee


async def require_finance(
    employee: Employee = Depends(get_current_employee),
) -> Employee:
    """Require Finance capability."""
    if not has_finance_capability(employee):
        raise InsufficientPermissionsException("Finance approval", user_role=employee.role)
    return employee


async def require_approver(
    employee: Employee = Depends(get_current_employee),
) -> Employee:
    """Require either approver class (used for rejections)."""
    if not can_reject(employee):
        raise InsufficientPermissionsException("Admin or Finance approval", user_role=employee.role)
    return employee


async def require_finance_access(
    employee: Employee = Depends(get_current_employee),
) -> Employee:
    """Require access to the finance area (reports, ledger views)."""
    if not has_finance_access(employee) and not has_finance_capability(employee):
        raise InsufficientPermissionsException("Finance access", user_role=employee.role)
    return employee
