"""
Great Pearl Coffee Finance - Employees Router

The staff directory the role gate reads: who am I, list, add, update.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_employee, require_admin
from app.models.employee import Employee, EmployeeStatus
from app.services.employee_service import get_employee_service
from app.utils.permissions import can_reject, has_finance_access, has_finance_capability, is_admin

router = APIRouter(prefix="/employees", tags=["Employees"])


# ===========================================
# REQUEST/RESPONSE SCHEMAS
# ===========================================

class EmployeeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    role: str = Field("User", max_length=100)
    department: Optional[str] = Field(None, max_length=100)
    position: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    permissions: List[str] = []


class EmployeeUpdate(BaseModel):
    """Only the fields provided are changed."""
    role: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=100)
    position: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    permissions: Optional[List[str]] = None
    status: Optional[EmployeeStatus] = None


class EmployeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    role: str
    department: Optional[str] = None
    position: Optional[str] = None
    phone: Optional[str] = None
    permissions: List[str] = []
    status: EmployeeStatus
    created_at: datetime


class Capabilities(BaseModel):
    admin_approval: bool
    finance_approval: bool
    reject: bool
    finance_access: bool


class CurrentEmployeeResponse(EmployeeResponse):
    capabilities: Capabilities


# ===========================================
# ENDPOINTS
# ===========================================

@router.get("/me", response_model=CurrentEmployeeResponse, summary="Who am I")
async def get_me(current_employee: Employee = Depends(get_current_employee)):
    """My record and what the role gate lets me do."""
    response = EmployeeResponse.model_validate(current_employee)
    return CurrentEmployeeResponse(
        **response.model_dump(),
        capabilities=Capabilities(
            admin_approval=is_admin(current_employee),
            finance_approval=has_finance_capability(current_employee),
            reject=can_reject(current_employee),
            finance_access=has_finance_access(current_employee) or has_finance_capability(current_employee),
        ),
    )


@router.get("", response_model=List[EmployeeResponse], summary="List employees")
async def list_employees(
    department: Optional[str] = None,
    role: Optional[str] = None,
    status_filter: Optional[EmployeeStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_employee_service(db)
    employees = await service.list_employees(department=department, role=role, status=status_filter)
    return [EmployeeResponse.model_validate(e) for e in employees]


@router.post(
    "",
    response_model=EmployeeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an employee",
)
async def create_employee(
    request: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_employee_service(db)
    employee = await service.create_employee(
        name=request.name,
        email=request.email,
        role=request.role,
        department=request.department,
        position=request.position,
        phone=request.phone,
        permissions=request.permissions,
    )
    return EmployeeResponse.model_validate(employee)


@router.patch("/{email}", response_model=EmployeeResponse, summary="Update an employee")
async def update_employee(
    email: str,
    request: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_employee_service(db)
    employee = await service.update_employee(
        email,
        role=request.role,
        department=request.department,
        position=request.position,
        phone=request.phone,
        permissions=request.permissions,
        status=request.status,
    )
    return EmployeeResponse.model_validate(employee)
