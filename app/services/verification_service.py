"""
Great Pearl Coffee Finance - Verification Portal Service

Public lookup of staff ID cards and company documents by code, plus the
admin operations that issue and revoke them. Every admin change writes an
audit log row.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.employee import Employee
from app.models.verification import (
    Verification,
    VerificationAuditAction,
    VerificationAuditLog,
    VerificationStatus,
    VerificationType,
)
from app.utils.datetime_utils import ensure_aware, utcnow
from app.utils.error_handling import (
    AlreadyProcessedException,
    DuplicateEntryException,
    NotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def effective_status(verification: Verification, now: Optional[datetime] = None) -> VerificationStatus:
    """Status as of now: revoked wins, then expiry, then the stored status."""
    if verification.status == VerificationStatus.REVOKED:
        return VerificationStatus.REVOKED
    valid_until = ensure_aware(verification.valid_until)
    if valid_until is not None and valid_until < (now or utcnow()):
        return VerificationStatus.EXPIRED
    return verification.status


class VerificationService:
    """Service for the document / employee ID verification portal."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, code: str) -> Optional[Verification]:
        result = await self.db.execute(
            select(Verification).where(Verification.code == normalize_code(code))
        )
        return result.scalar_one_or_none()

    def _audit(self, action: VerificationAuditAction, code: str, actor: Employee, details: Dict[str, Any]):
        self.db.add(VerificationAuditLog(
            action=action,
            code=code,
            admin_user=actor.name,
            admin_email=actor.email,
            details=details,
        ))

    async def create(
        self,
        actor: Employee,
        code: str,
        verification_type: VerificationType,
        issued_to_name: str,
        issued_at: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        subtype: Optional[str] = None,
        employee_no: Optional[str] = None,
        position: Optional[str] = None,
        department: Optional[str] = None,
        workstation: Optional[str] = None,
        photo_url: Optional[str] = None,
        reference_no: Optional[str] = None,
        file_url: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Verification:
        """Issue a new verification record."""
        code = normalize_code(code)
        if not code:
            raise ValidationException("Verification code is required", field="code")
        if not issued_to_name or not issued_to_name.strip():
            raise ValidationException("Issued-to name is required", field="issued_to_name")
        if await self._get(code) is not None:
            raise DuplicateEntryException("Verification", "code", code)

        verification = Verification(
            code=code,
            type=verification_type,
            subtype=subtype,
            status=VerificationStatus.VERIFIED,
            issued_to_name=issued_to_name.strip(),
            employee_no=employee_no,
            position=position,
            department=department,
            workstation=workstation,
            photo_url=photo_url,
            issued_at=issued_at or utcnow(),
            valid_until=valid_until,
            reference_no=reference_no,
            file_url=file_url,
            meta=meta,
            created_by=actor.email,
        )
        self.db.add(verification)
        self._audit(VerificationAuditAction.CREATE, code, actor, {
            "type": verification_type.value,
            "issued_to_name": verification.issued_to_name,
        })

        await self.db.commit()
        logger.info(f"Verification {code} ({verification_type.value}) created by {actor.email}")
        return verification

    async def lookup(self, code: str) -> Verification:
        """
        Public lookup. The returned record's status reflects expiry at read
        time; the stored row is not changed.
        """
        verification = await self._get(code)
        if verification is None:
            raise NotFoundException("Verification", message="Verification code not found")

        status = effective_status(verification)
        if status != verification.status:
            # Detach from the session so the computed status is never flushed
            self.db.expunge(verification)
            verification.status = status

        logger.info(f"Verification lookup {verification.code}: {status.value}")
        return verification

    async def revoke(self, code: str, actor: Employee, reason: Optional[str] = None) -> Verification:
        verification = await self._get(code)
        if verification is None:
            raise NotFoundException("Verification", message="Verification code not found")
        if verification.status == VerificationStatus.REVOKED:
            raise AlreadyProcessedException("This verification has already been revoked", "Verification")

        verification.status = VerificationStatus.REVOKED
        verification.revoked_reason = reason
        self._audit(VerificationAuditAction.REVOKE, verification.code, actor, {"reason": reason})

        await self.db.commit()
        logger.info(f"Verification {verification.code} revoked by {actor.email}: {reason}")
        return verification

    async def list_verifications(
        self,
        verification_type: Optional[VerificationType] = None,
        status: Optional[VerificationStatus] = None,
        search: Optional[str] = None,
        limit: int = 200,
    ) -> List[Verification]:
        query = select(Verification).order_by(Verification.created_at.desc()).limit(limit)
        if verification_type is not None:
            query = query.where(Verification.type == verification_type)
        if status is not None:
            query = query.where(Verification.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                Verification.code.ilike(pattern),
                Verification.issued_to_name.ilike(pattern),
                Verification.employee_no.ilike(pattern),
            ))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def audit_logs(
        self,
        code: Optional[str] = None,
        action: Optional[VerificationAuditAction] = None,
        limit: int = 200,
    ) -> List[VerificationAuditLog]:
        query = select(VerificationAuditLog).order_by(VerificationAuditLog.created_at.desc()).limit(limit)
        if code:
            query = query.where(VerificationAuditLog.code == normalize_code(code))
        if action is not None:
            query = query.where(VerificationAuditLog.action == action)
        result = await self.db.execute(query)
        return list(result.scalars().all())


def get_verification_service(db: AsyncSession) -> VerificationService:
    """Factory function for dependency injection."""
    return VerificationService(db)
