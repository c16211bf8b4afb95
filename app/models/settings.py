"""
Great Pearl Coffee Finance - Finance Settings Model

Key/value rows for the finance desk configuration. Keys that were never
saved fall back to the defaults declared on the category schemas in
``app.services.finance_settings_service``.
"""

from typing import Any, Optional

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class FinanceSetting(BaseModel):
    """One saved finance setting."""

    __tablename__ = "finance_settings"

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<FinanceSetting({self.key}={self.value!r})>"
