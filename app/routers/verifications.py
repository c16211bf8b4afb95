"""
Great Pearl Coffee Finance - Verification Portal Router

Public lookup of employee ID cards and company documents by code, and
the admin endpoints that issue and revoke them.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import require_admin
from app.models.employee import Employee
from app.models.verification import VerificationAuditAction, VerificationStatus, VerificationType
from app.services.verification_service import get_verification_service

# Mounted at the site root, no authentication
public_router = APIRouter(prefix="/verify", tags=["Verification Portal"])

router = APIRouter(prefix="/verifications", tags=["Verification Portal"])


# ===========================================
# REQUEST/RESPONSE SCHEMAS
# ===========================================

class VerificationCreate(BaseModel):
    """Schema for issuing a verification code."""
    code: str = Field(..., min_length=1, max_length=50)
    type: VerificationType
    issued_to_name: str = Field(..., min_length=1, max_length=255)
    subtype: Optional[str] = Field(None, max_length=100)
    employee_no: Optional[str] = Field(None, max_length=50)
    position: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=100)
    workstation: Optional[str] = Field(None, max_length=100)
    photo_url: Optional[str] = Field(None, max_length=500)
    issued_at: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    reference_no: Optional[str] = Field(None, max_length=100)
    file_url: Optional[str] = Field(None, max_length=500)
    meta: Optional[Dict[str, Any]] = None


class RevokeVerificationRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class PublicVerificationResponse(BaseModel):
    """What anyone holding the code may see."""
    model_config = ConfigDict(from_attributes=True)

    code: str
    type: VerificationType
    subtype: Optional[str] = None
    status: VerificationStatus
    issued_to_name: str
    employee_no: Optional[str] = None
    position: Optional[str] = None
    department: Optional[str] = None
    workstation: Optional[str] = None
    photo_url: Optional[str] = None
    issued_at: datetime
    valid_until: Optional[datetime] = None
    reference_no: Optional[str] = None
    file_url: Optional[str] = None


class VerificationResponse(PublicVerificationResponse):
    id: uuid.UUID
    meta: Optional[Dict[str, Any]] = None
    revoked_reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class VerificationAuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: VerificationAuditAction
    code: str
    admin_user: Optional[str] = None
    admin_email: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


# ===========================================
# PUBLIC ENDPOINT
# ===========================================

@public_router.get("/{code}", response_model=PublicVerificationResponse, summary="Verify a code")
async def verify_code(
    code: str,
    db: AsyncSession = Depends(get_db),
):
    """
    Look up an employee ID or document. Expired records report status
    "expired" even before anyone updates them.
    """
    service = get_verification_service(db)
    return PublicVerificationResponse.model_validate(await service.lookup(code))


# ===========================================
# ADMIN ENDPOINTS
# ===========================================

@router.post(
    "",
    response_model=VerificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a verification code",
)
async def create_verification(
    request: VerificationCreate,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_verification_service(db)
    verification = await service.create(
        actor=current_employee,
        code=request.code,
        verification_type=request.type,
        issued_to_name=request.issued_to_name,
        issued_at=request.issued_at,
        valid_until=request.valid_until,
        subtype=request.subtype,
        employee_no=request.employee_no,
        position=request.position,
        department=request.department,
        workstation=request.workstation,
        photo_url=request.photo_url,
        reference_no=request.reference_no,
        file_url=request.file_url,
        meta=request.meta,
    )
    return VerificationResponse.model_validate(verification)


@router.get("", response_model=List[VerificationResponse], summary="List verification codes")
async def list_verifications(
    verification_type: Optional[VerificationType] = Query(None, alias="type"),
    status_filter: Optional[VerificationStatus] = Query(None, alias="status"),
    search: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_verification_service(db)
    verifications = await service.list_verifications(
        verification_type=verification_type,
        status=status_filter,
        search=search,
        limit=limit,
    )
    return [VerificationResponse.model_validate(v) for v in verifications]


@router.get("/audit-logs", response_model=List[VerificationAuditLogResponse], summary="Verification audit trail")
async def list_verification_audit_logs(
    code: Optional[str] = None,
    action: Optional[VerificationAuditAction] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_verification_service(db)
    logs = await service.audit_logs(code=code, action=action, limit=limit)
    return [VerificationAuditLogResponse.model_validate(entry) for entry in logs]


@router.post("/{code}/revoke", response_model=VerificationResponse, summary="Revoke a verification code")
async def revoke_verification(
    code: str,
    request: Optional[RevokeVerificationRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
):
    service = get_verification_service(db)
    verification = await service.revoke(code, current_employee, reason=request.reason if request else None)
    return VerificationResponse.model_validate(verification)
