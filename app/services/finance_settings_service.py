"""
Great Pearl Coffee Finance - Finance Settings Service

Desk-wide configuration edited by administrators: cash box rules, approval
routing, supplier advance limits, payment rounding, notification recipients
and report periods.

Each category is a Pydantic schema whose field defaults apply until a value
is saved. Saved values live one row per key in ``finance_settings`` and are
validated against the category schema on every write.
"""

import logging
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Literal, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import flush_or_conflict
from app.models.employee import Employee
from app.models.settings import FinanceSetting
from app.services.realtime import ChangeAction, ChangeEvent, publish_changes
from app.utils.error_handling import NotFoundException, ValidationException

logger = logging.getLogger(__name__)


# ========= CATEGORY SCHEMAS =========

class _Category(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CashSettings(_Category):
    """Cash box rules."""
    cash_opening_source: Literal["last_closing", "manual"] = "last_closing"
    allow_negative_balance: bool = Field(default_factory=lambda: settings.cash_allow_overdraft)
    cash_warning_threshold: Decimal = Field(default=Decimal("10000"), ge=0)
    currency: str = Field(default_factory=lambda: settings.currency, pattern="^[A-Z]{3}$")


class ApprovalSettings(_Category):
    """Who signs off each kind of request."""
    approval_flow_mode: Literal["normal", "finance_only", "admin_only"] = "normal"
    require_finance_before_admin: bool = True
    expense_final_approver: str = Field(default="Admin", max_length=50)
    requisition_final_approver: str = Field(default="Admin", max_length=50)
    salary_final_approver: str = Field(default="GM", max_length=50)


class AdvanceSettings(_Category):
    """Supplier advance limits and recovery."""
    max_advance_percentage: int = Field(default=30, ge=0, le=100)
    auto_recover_advances: bool = True
    advance_recovery_percentage: int = Field(default=100, ge=0, le=100)
    allow_advance_with_arrears: bool = False
    minimum_advance_amount: Decimal = Field(default=Decimal("50000"), ge=0)


class PaymentSettings(_Category):
    """Coffee payment and expense handling."""
    payment_rounding: Literal["exact", "nearest_100", "down_100"] = "exact"
    payment_methods: List[str] = Field(default=["Cash", "Mobile Money", "Bank Transfer", "Cheque"], min_length=1)
    default_payment_method: str = Field(default="Mobile Money", max_length=50)
    require_payment_reference: bool = True


class NotificationSettings(_Category):
    """Who hears about what."""
    notify_new_expense: List[str] = ["Finance", "Admin"]
    notify_finance_approval: List[str] = ["Admin"]
    notify_final_approval: List[str] = ["Requester", "Finance"]
    sms_on_cash_imbalance: bool = False
    sms_approval_template: str = Field(
        default="Your {type} request of UGX {amount} has been approved.", max_length=320,
    )
    sms_rejection_template: str = Field(
        default="Your {type} request of UGX {amount} was rejected: {reason}", max_length=320,
    )


class ReportSettings(_Category):
    """Report defaults and month closing."""
    default_report_period: Literal["today", "this_week", "current_month", "last_month", "current_year"] = (
        "current_month"
    )
    finance_month_closing_date: int = Field(default=28, ge=1, le=31)
    allow_edits_after_close: bool = False
    finance_report_email: str = Field(default="", max_length=255, pattern=r"^$|^[^@\s]+@[^@\s]+\.[^@\s]+$")


CATEGORIES: Dict[str, Type[_Category]] = {
    "cash": CashSettings,
    "approval": ApprovalSettings,
    "advance": AdvanceSettings,
    "payment": PaymentSettings,
    "notification": NotificationSettings,
    "report": ReportSettings,
}


def round_payment(amount: Decimal, mode: str) -> Decimal:
    """Apply the configured payment rounding to a UGX amount."""
    if mode == "nearest_100":
        return (amount / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * 100
    if mode == "down_100":
        return (amount / 100).quantize(Decimal("1"), rounding=ROUND_DOWN) * 100
    return amount


def _validation_details(error: ValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in e["loc"]), "message": e["msg"]}
        for e in error.errors()
    ]


class FinanceSettingsService:
    """Read and update the finance desk configuration."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _schema(self, category: str) -> Type[_Category]:
        schema = CATEGORIES.get(category)
        if schema is None:
            raise NotFoundException("Settings category", message=f"Unknown settings category '{category}'")
        return schema

    async def _rows(self, category: str) -> Dict[str, FinanceSetting]:
        result = await self.db.execute(select(FinanceSetting).where(FinanceSetting.category == category))
        return {row.key: row for row in result.scalars().all()}

    async def get_category(self, category: str) -> _Category:
        """Defaults overlaid with saved values."""
        schema = self._schema(category)
        stored = {key: row.value for key, row in (await self._rows(category)).items() if key in schema.model_fields}
        try:
            return schema.model_validate(stored)
        except ValidationError as e:
            # A row edited outside the API; fall back to the defaults
            logger.error(f"Stored {category} settings are invalid, using defaults: {e}")
            return schema()

    async def get_all(self) -> Dict[str, _Category]:
        return {category: await self.get_category(category) for category in CATEGORIES}

    async def cash(self) -> CashSettings:
        return await self.get_category("cash")

    async def advances(self) -> AdvanceSettings:
        return await self.get_category("advance")

    async def payments(self) -> PaymentSettings:
        return await self.get_category("payment")

    async def update_category(self, category: str, changes: Dict[str, Any], actor: Employee) -> _Category:
        """
        Merge ``changes`` into a category and save the keys that were given.

        The merged category is validated as a whole, so unknown keys and
        out-of-range values are refused without saving anything.

        Raises:
            NotFoundException: unknown category
            ValidationException: a key or value does not fit the category
        """
        schema = self._schema(category)
        if not changes:
            raise ValidationException("No settings to update")

        current = await self.get_category(category)
        try:
            updated = schema.model_validate({**current.model_dump(), **changes})
        except ValidationError as e:
            raise ValidationException(
                f"Invalid {category} settings",
                details={"errors": _validation_details(e)},
            )

        values = updated.model_dump(mode="json")
        rows = await self._rows(category)
        saved = []
        for key in changes:
            row = rows.get(key)
            if row is None:
                row = FinanceSetting(key=key, category=category)
                self.db.add(row)
            row.value = values[key]
            row.updated_by = actor.email
            saved.append(row)

        await flush_or_conflict(
            self.db, "Finance settings",
            duplicate_message="These settings were saved by someone else, reload and try again",
        )
        await self.db.commit()

        logger.info(f"{category} settings {sorted(changes)} updated by {actor.email}")
        await publish_changes(*(ChangeEvent.from_instance(ChangeAction.UPDATE, row) for row in saved))
        return updated


def get_finance_settings_service(db: AsyncSession) -> FinanceSettingsService:
    """Factory function for dependency injection."""
    return FinanceSettingsService(db)
