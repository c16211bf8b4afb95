"""
Great Pearl Coffee Finance - Employee Service

Small admin surface over the staff directory used for role gating.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.employee import Employee, EmployeeStatus
from app.utils.error_handling import DuplicateEntryException, NotFoundException, ValidationException

logger = logging.getLogger(__name__)


class EmployeeService:
    """Service for employee records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> Optional[Employee]:
        result = await self.db.execute(select(Employee).where(Employee.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def get_or_404(self, email: str) -> Employee:
        employee = await self.get_by_email(email)
        if employee is None:
            raise NotFoundException("Employee", message=f"Employee '{email}' not found")
        return employee

    async def list_employees(
        self,
        department: Optional[str] = None,
        role: Optional[str] = None,
        status: Optional[EmployeeStatus] = None,
    ) -> List[Employee]:
        query = select(Employee).order_by(Employee.name)
        if department:
            query = query.where(Employee.department == department)
        if role:
            query = query.where(Employee.role == role)
        if status is not None:
            query = query.where(Employee.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create_employee(
        self,
        name: str,
        email: str,
        role: str = "User",
        department: Optional[str] = None,
        position: Optional[str] = None,
        phone: Optional[str] = None,
        permissions: Optional[List[str]] = None,
    ) -> Employee:
        if not name or not name.strip():
            raise ValidationException("Name is required", field="name")
        email = email.strip().lower()
        if await self.get_by_email(email) is not None:
            raise DuplicateEntryException("Employee", "email", email)

        employee = Employee(
            name=name.strip(),
            email=email,
            role=role,
            department=department,
            position=position,
            phone=phone,
            permissions=list(permissions or []),
            status=EmployeeStatus.ACTIVE,
        )
        self.db.add(employee)
        await self.db.commit()

        logger.info(f"Employee {email} created with role {role}")
        return employee

    async def update_employee(
        self,
        email: str,
        role: Optional[str] = None,
        department: Optional[str] = None,
        position: Optional[str] = None,
        phone: Optional[str] = None,
        permissions: Optional[List[str]] = None,
        status: Optional[EmployeeStatus] = None,
    ) -> Employee:
        employee = await self.get_or_404(email)

        if role is not None:
            employee.role = role
        if department is not None:
            employee.department = department
        if position is not None:
            employee.position = position
        if phone is not None:
            employee.phone = phone
        if permissions is not None:
            employee.permissions = list(permissions)
        if status is not None:
            employee.status = status

        await self.db.commit()
        logger.info(f"Employee {employee.email} updated (role={employee.role}, status={employee.status.value})")
        return employee


def get_employee_service(db: AsyncSession) -> EmployeeService:
    """Factory function for dependency injection."""
    return EmployeeService(db)
