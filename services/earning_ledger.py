"""
Earning ledger.

Credits commission for upstream purchase events exactly once per
transaction id, and exposes read and reversal operations on earnings.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from core.exceptions import InvalidTransition, LedgerIntegrityError, NotFoundError, ValidationError
from core.money import calculate_commission, to_decimal
from database.base import utcnow
from database.models import (
    Earning,
    EarningStatus,
    EarningType,
    PaymentModel,
    TransactionType,
)
from database.repositories import (
    CommissionSettingsRepository,
    EarningRepository,
    ReferralLinkRepository,
)

logger = logging.getLogger(__name__)


class CreditOutcome(str, Enum):
    """What ``credit_earning`` did with a purchase event."""
    CREATED = "created"
    DUPLICATE = "duplicate"  # Transaction already credited, earning unchanged
    NO_REFERRER = "no_referrer"  # Buyer not referred, or referrer inactive
    SKIPPED = "skipped"  # Recurring transaction under the one-time payment model


@dataclass
class CreditResult:
    """Result of crediting one upstream transaction."""
    outcome: CreditOutcome
    earning: Optional[Earning] = None
    reason: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.outcome == CreditOutcome.CREATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "earning": self.earning.to_dict() if self.earning else None,
        }


def paginated(items: list, page: int, limit: int, total: int) -> Dict[str, Any]:
    """Standard paginated response body."""
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if limit else 0,
        },
    }


class EarningLedgerService:
    """Service for recording and querying referral earnings."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session = session
        self.clock = clock
        self.earning_repo = EarningRepository(session)
        self.settings_repo = CommissionSettingsRepository(session)
        self.link_repo = ReferralLinkRepository(session)

    async def credit_earning(
        self,
        referred_user_id: str,
        transaction_id: str,
        transaction_type: TransactionType,
        gross_amount: Decimal,
        currency: Optional[str] = None,
        referrer_id: Optional[str] = None,
    ) -> CreditResult:
        """
        Record the commission owed for one upstream transaction.

        Safe under at-least-once delivery: a repeated ``transaction_id``
        returns the original earning unchanged.

        Args:
            referred_user_id: Buyer
            transaction_id: Upstream idempotency key
            transaction_type: subscription/course_purchase/upgrade
            gross_amount: Purchase amount (>= 0)
            currency: ISO code, defaults to settings.default_currency
            referrer_id: Explicit referrer; otherwise the buyer's attribution

        Returns:
            CreditResult with the outcome and the earning (if any)

        Raises:
            ValidationError: Negative amount or malformed currency
        """
        gross_amount = to_decimal(gross_amount)
        if gross_amount < 0:
            raise ValidationError("grossAmount", "must not be negative")
        currency = (currency or settings.default_currency).strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError("currency", "must be a 3-letter ISO code")
        transaction_type = TransactionType(transaction_type)

        existing = await self.earning_repo.get_by_transaction_id(transaction_id)
        if existing:
            logger.info(
                f"Duplicate transaction {transaction_id}, earning {existing.id} unchanged",
                extra={"transaction_id": transaction_id, "earning_id": existing.id}
            )
            return CreditResult(CreditOutcome.DUPLICATE, earning=existing)

        if referrer_id is None:
            attribution = await self.link_repo.get_attribution(referred_user_id)
            referrer_id = attribution.referrer_id if attribution else None
        if referrer_id is None or referrer_id == referred_user_id:
            logger.debug(f"No referrer for {referred_user_id}, transaction {transaction_id} not credited")
            return CreditResult(CreditOutcome.NO_REFERRER, reason="not referred")

        commission = await self.settings_repo.get_active_by_referrer(referrer_id)
        if not commission:
            logger.info(
                f"Referrer {referrer_id} has no active commission settings, "
                f"transaction {transaction_id} not credited",
                extra={"referrer_id": referrer_id, "transaction_id": transaction_id}
            )
            return CreditResult(CreditOutcome.NO_REFERRER, reason="referrer inactive")

        # Settings are expired by a rollback; keep what the retry needs
        one_time = commission.payment_model == PaymentModel.ONE_TIME.value
        rates = {
            EarningType.INITIAL: to_decimal(commission.initial_rate),
            EarningType.RECURRING: to_decimal(commission.recurring_rate),
        }

        is_first = not await self.earning_repo.exists_for_pair(referrer_id, referred_user_id)
        earning_type = EarningType.INITIAL if is_first else EarningType.RECURRING

        while True:
            if earning_type == EarningType.RECURRING and one_time:
                logger.info(
                    f"Recurring transaction {transaction_id} skipped (one-time model)",
                    extra={"referrer_id": referrer_id, "transaction_id": transaction_id}
                )
                return CreditResult(CreditOutcome.SKIPPED, reason="one-time payment model")

            rate = rates[earning_type]
            now = self.clock()
            earning = await self.earning_repo.insert_once({
                "referrer_id": referrer_id,
                "referred_user_id": referred_user_id,
                "transaction_id": transaction_id,
                "transaction_type": transaction_type.value,
                "earning_type": earning_type.value,
                "gross_amount": gross_amount,
                "commission_rate": rate,
                "earning_amount": calculate_commission(gross_amount, rate, currency),
                "currency": currency,
                "status": EarningStatus.PENDING.value,
                "eligible_at": now + timedelta(days=settings.eligibility_days),
                "created_at": now,
                "updated_at": now,
            })
            if earning is not None:
                break

            await self.session.rollback()
            winner = await self.earning_repo.get_by_transaction_id(transaction_id)
            if winner is not None:
                # Concurrent delivery of the same transaction won the insert
                logger.info(
                    f"Lost insert race for transaction {transaction_id}",
                    extra={"transaction_id": transaction_id}
                )
                return CreditResult(CreditOutcome.DUPLICATE, earning=winner)
            if earning_type == EarningType.RECURRING:
                raise LedgerIntegrityError(
                    f"Recurring earning for transaction {transaction_id} conflicted "
                    f"without a recorded transaction",
                    transactionId=transaction_id,
                )

            # Another transaction of the same pair was credited as initial first
            logger.info(
                f"Initial earning for {referrer_id}/{referred_user_id} recorded concurrently, "
                f"crediting transaction {transaction_id} as recurring",
                extra={"referrer_id": referrer_id, "transaction_id": transaction_id}
            )
            earning_type = EarningType.RECURRING

        await self.session.commit()
        logger.info(
            f"Earning {earning.id} credited: {earning.earning_amount} {currency} "
            f"({earning_type.value}, {rate}% of {gross_amount}) for {referrer_id}",
            extra={
                "referrer_id": referrer_id,
                "referred_user_id": referred_user_id,
                "earning_id": earning.id,
                "transaction_id": transaction_id,
            }
        )
        return CreditResult(CreditOutcome.CREATED, earning=earning)

    async def get_earning(self, earning_id: int) -> Earning:
        """
        Raises:
            NotFoundError: Unknown earning
        """
        earning = await self.earning_repo.get_by_id(earning_id)
        if not earning:
            raise NotFoundError("Earning", earning_id)
        return earning

    async def list_earnings(
        self,
        referrer_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[EarningStatus] = None,
        earning_type: Optional[EarningType] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Newest-first, filtered page of a referrer's earnings."""
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        earnings, total = await self.earning_repo.list_for_referrer(
            referrer_id,
            page=page,
            limit=limit,
            status=EarningStatus(status).value if status else None,
            earning_type=EarningType(earning_type).value if earning_type else None,
            date_from=date_from,
            date_to=date_to,
        )
        return paginated([e.to_dict() for e in earnings], page, limit, total)

    async def cancel_earning(
        self,
        earning_id: int,
        admin_id: str,
        reason: Optional[str] = None
    ) -> Earning:
        """
        Reverse an unreserved pending earning (refund or chargeback).

        Raises:
            NotFoundError: Unknown earning
            InvalidTransition: Earning is reserved, paid or already cancelled
        """
        earning = await self.get_earning(earning_id)
        if earning.status != EarningStatus.PENDING.value:
            raise InvalidTransition(earning.status, EarningStatus.CANCELLED.value, resource="earning")

        cancelled = await self.earning_repo.compare_and_set_status(
            earning_id, EarningStatus.PENDING, EarningStatus.CANCELLED
        )
        if not cancelled:
            await self.session.rollback()
            await self.earning_repo.refresh(earning)
            raise InvalidTransition(earning.status, EarningStatus.CANCELLED.value, resource="earning")

        await self.session.commit()
        logger.info(
            f"Earning {earning_id} cancelled by {admin_id}: {reason or 'no reason given'}",
            extra={"earning_id": earning_id, "admin_id": admin_id, "referrer_id": earning.referrer_id}
        )
        return earning
