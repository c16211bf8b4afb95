"""
Great Pearl Coffee Finance - Verification Models

Employee ID cards and company documents carry a short code that anyone
can look up on the public verification portal.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, enum_values


class VerificationType(str, Enum):
    EMPLOYEE_ID = "employee_id"
    DOCUMENT = "document"


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    EXPIRED = "expired"
    REVOKED = "revoked"


class VerificationAuditAction(str, Enum):
    CREATE = "create"
    REVOKE = "revoke"


class Verification(BaseModel):
    """A verifiable credential (employee ID or document)."""

    __tablename__ = "verifications"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    type: Mapped[VerificationType] = mapped_column(
        SQLEnum(VerificationType, values_callable=enum_values),
        nullable=False,
    )
    subtype: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[VerificationStatus] = mapped_column(
        SQLEnum(VerificationStatus, values_callable=enum_values),
        default=VerificationStatus.VERIFIED,
        nullable=False,
    )

    issued_to_name: Mapped[str] = mapped_column(String(255), nullable=False)
    employee_no: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    position: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    workstation: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    reference_no: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    revoked_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Verification(code={self.code}, status={self.status.value})>"


class VerificationAuditLog(BaseModel):
    """Who created or revoked which verification code."""

    __tablename__ = "verification_audit_logs"

    action: Mapped[VerificationAuditAction] = mapped_column(
        SQLEnum(VerificationAuditAction, values_callable=enum_values),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    admin_user: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    admin_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
