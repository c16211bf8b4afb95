"""
Great Pearl Coffee Finance - Payment Service

Coffee lot payments to suppliers, supplier advances and the expense book.

A lot payment recovers the supplier's open advances first; only the
remainder leaves the cash box, as a single payment ledger posting.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import commit_or_conflict, flush_or_conflict
from app.models.cash import CashTransactionType
from app.models.employee import Employee
from app.models.finance import (
    FinanceAdvance,
    FinanceExpense,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordStatus,
)
from app.models.notification import NotificationPriority, NotificationType
from app.services.cash_ledger_service import CashLedgerService
from app.services.finance_settings_service import FinanceSettingsService, round_payment
from app.services.notification_service import NotificationService
from app.services.realtime import ChangeAction, ChangeEvent, publish_changes
from app.utils.datetime_utils import utcnow
from app.utils.error_handling import (
    AlreadyProcessedException,
    BusinessRuleException,
    InsufficientPermissionsException,
    InvalidDateRangeException,
    NotFoundException,
    ValidationException,
    validate_amount,
)
from app.utils.permissions import has_finance_capability

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class PaymentService:
    """Service for supplier payments, advances and expenses."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = CashLedgerService(db)
        self.notifications = NotificationService(db)
        self.settings = FinanceSettingsService(db)

    def _require_finance(self, actor: Employee):
        if not has_finance_capability(actor):
            raise InsufficientPermissionsException("Finance approval", user_role=actor.role)

    # ===========================================
    # COFFEE PAYMENTS
    # ===========================================

    async def create_payment_record(
        self,
        supplier_name: str,
        amount: Any,
        actor: Employee,
        supplier_code: Optional[str] = None,
        batch_number: Optional[str] = None,
        quality_assessment_ref: Optional[str] = None,
    ) -> PaymentRecord:
        """Record a lot payment owed after quality assessment."""
        if not supplier_name or not supplier_name.strip():
            raise ValidationException("Supplier name is required", field="supplier_name")
        amount = validate_amount(amount)

        record = PaymentRecord(
            supplier_name=supplier_name.strip(),
            supplier_code=supplier_code,
            batch_number=batch_number,
            quality_assessment_ref=quality_assessment_ref,
            amount=amount,
            advance_deducted=ZERO,
            amount_paid=ZERO,
            balance=amount,
            status=PaymentRecordStatus.PENDING.value,
        )
        self.db.add(record)
        await self.db.commit()

        logger.info(f"Payment record {record.id} of {amount} for {record.supplier_name} created by {actor.email}")
        await publish_changes(ChangeEvent.from_instance(ChangeAction.INSERT, record))
        return record

    async def list_pending(self) -> List[PaymentRecord]:
        result = await self.db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.status == PaymentRecordStatus.PENDING.value)
            .order_by(PaymentRecord.created_at)
        )
        return list(result.scalars().all())

    async def _open_advances_for(self, supplier_name: str, supplier_code: Optional[str]) -> List[FinanceAdvance]:
        query = (
            select(FinanceAdvance)
            .where(FinanceAdvance.is_closed.is_(False))
            .order_by(FinanceAdvance.created_at)
        )
        if supplier_code:
            query = query.where(FinanceAdvance.supplier_code == supplier_code)
        else:
            query = query.where(FinanceAdvance.supplier_name == supplier_name)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def process_payment(
        self,
        record_id: uuid.UUID,
        method: PaymentMethod,
        actor: Employee,
    ) -> Tuple[PaymentRecord, List[str]]:
        """
        Pay a pending lot.

        Open advances for the supplier are recovered oldest first, up to the
        configured share of the lot value, and deducted from it. The rest is
        rounded per the payment settings. Record update, advance recovery
        and the ledger posting commit together.

        Raises:
            AlreadyProcessedException: the record is no longer pending
            InsufficientFundsException: the cash box cannot cover the payment
        """
        self._require_finance(actor)

        record = await self.db.get(PaymentRecord, record_id)
        if record is None:
            raise NotFoundException("Payment record", record_id)
        if record.status != PaymentRecordStatus.PENDING.value:
            raise AlreadyProcessedException("This payment has already been processed", "Payment record")

        advance_rules = await self.settings.advances()
        rounding = (await self.settings.payments()).payment_rounding

        now = utcnow()
        try:
            deducted = ZERO
            recovered_advances = []
            if advance_rules.auto_recover_advances:
                to_recover = record.amount * advance_rules.advance_recovery_percentage / 100
                for advance in await self._open_advances_for(record.supplier_name, record.supplier_code):
                    if to_recover <= ZERO:
                        break
                    portion = min(advance.outstanding, to_recover)
                    advance.recovered_amount = (advance.recovered_amount or ZERO) + portion
                    if advance.outstanding <= ZERO:
                        advance.is_closed = True
                        advance.closed_at = now
                    to_recover -= portion
                    deducted += portion
                    recovered_advances.append(advance)

            final_amount = round_payment(record.amount - deducted, rounding)

            transaction = None
            if final_amount > ZERO:
                transaction = await self.ledger.apply_disbursement(
                    amount=final_amount,
                    transaction_type=CashTransactionType.PAYMENT,
                    reference=record.batch_number or str(record.id),
                    actor_email=actor.email,
                    notes=f"Coffee payment - {record.supplier_name}",
                )

            record.advance_deducted = deducted
            record.amount_paid = final_amount
            record.balance = ZERO
            record.status = PaymentRecordStatus.PAID.value
            record.method = method.value
            record.paid_by = actor.email
            record.paid_at = now
            await flush_or_conflict(self.db, "Payment record")
        except Exception:
            await self.db.rollback()
            raise

        result = await self.notifications.notify(
            title="Supplier Payment Ready",
            message=(
                f"Payment of UGX {final_amount:,.0f} for {record.supplier_name} "
                f"({method.value}) has been processed"
                + (f" after deducting UGX {deducted:,.0f} in advances." if deducted else ".")
            ),
            notification_type=NotificationType.PAYMENT_READY,
            priority=NotificationPriority.MEDIUM,
            sender_email=actor.email,
            metadata={
                "payment_record_id": str(record.id),
                "supplier_code": record.supplier_code,
                "amount_paid": str(final_amount),
            },
        )

        await commit_or_conflict(self.db, "Payment record")

        logger.info(
            f"Payment record {record.id} paid by {actor.email}: lot {record.amount}, "
            f"advances {deducted}, paid {final_amount}"
        )
        events = [ChangeEvent.from_instance(ChangeAction.UPDATE, record)]
        events.extend(ChangeEvent.from_instance(ChangeAction.UPDATE, a) for a in recovered_advances)
        if transaction is not None:
            events.append(ChangeEvent.from_instance(ChangeAction.INSERT, transaction))
        await publish_changes(*events)

        return record, [w for w in [result.warning] if w]

    # ===========================================
    # SUPPLIER ADVANCES
    # ===========================================

    async def create_advance(
        self,
        supplier_name: str,
        amount: Any,
        actor: Employee,
        supplier_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> FinanceAdvance:
        """
        Advance cash to a supplier. The cash leaves the box immediately.

        Raises:
            ValidationException: amount is below the configured minimum
            BusinessRuleException: the supplier still owes an earlier advance
                and advances with arrears are not allowed
        """
        self._require_finance(actor)
        if not supplier_name or not supplier_name.strip():
            raise ValidationException("Supplier name is required", field="supplier_name")
        supplier_name = supplier_name.strip()
        amount = validate_amount(amount)

        rules = await self.settings.advances()
        if amount < rules.minimum_advance_amount:
            raise ValidationException(
                f"Advances start at UGX {rules.minimum_advance_amount:,.0f}", field="amount",
            )
        if not rules.allow_advance_with_arrears and await self._open_advances_for(supplier_name, supplier_code):
            raise BusinessRuleException(
                f"{supplier_name} has not repaid an earlier advance",
                rule="advance_with_arrears",
            )

        try:
            advance = FinanceAdvance(
                supplier_name=supplier_name,
                supplier_code=supplier_code,
                amount=amount,
                recovered_amount=ZERO,
                is_closed=False,
                issued_by=actor.email,
                notes=notes,
            )
            self.db.add(advance)
            await self.db.flush()

            transaction = await self.ledger.apply_disbursement(
                amount=amount,
                transaction_type=CashTransactionType.PAYMENT,
                reference=f"ADV-{str(advance.id)[:8].upper()}",
                actor_email=actor.email,
                notes=f"Supplier advance - {advance.supplier_name}",
            )
        except Exception:
            await self.db.rollback()
            raise

        await commit_or_conflict(self.db, "Cash balance")

        logger.info(f"Advance {advance.id} of {amount} to {advance.supplier_name} issued by {actor.email}")
        await publish_changes(
            ChangeEvent.from_instance(ChangeAction.INSERT, advance),
            ChangeEvent.from_instance(ChangeAction.INSERT, transaction),
        )
        return advance

    async def list_open_advances(self, supplier_code: Optional[str] = None) -> List[FinanceAdvance]:
        query = (
            select(FinanceAdvance)
            .where(FinanceAdvance.is_closed.is_(False))
            .order_by(FinanceAdvance.created_at.desc())
        )
        if supplier_code:
            query = query.where(FinanceAdvance.supplier_code == supplier_code)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ===========================================
    # EXPENSES
    # ===========================================

    async def list_expenses(
        self,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
        limit: int = 500,
    ) -> List[FinanceExpense]:
        if date_from and date_to and date_from > date_to:
            raise InvalidDateRangeException(str(date_from), str(date_to))

        query = select(FinanceExpense).order_by(FinanceExpense.created_at.desc()).limit(limit)
        if status:
            query = query.where(FinanceExpense.status == status)
        if date_from:
            query = query.where(FinanceExpense.expense_date >= date_from)
        if date_to:
            query = query.where(FinanceExpense.expense_date <= date_to)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                FinanceExpense.description.ilike(pattern),
                FinanceExpense.category.ilike(pattern),
            ))
        result = await self.db.execute(query)
        return list(result.scalars().all())


def get_payment_service(db: AsyncSession) -> PaymentService:
    """Factory function for dependency injection."""
    return PaymentService(db)
