"""
Payout reservation engine.

A payout request reserves matured earnings oldest-first. Each earning is
claimed with a conditional write (pending -> approved) so two concurrent
requests can never reserve the same earning: the loser's claim affects no
row and it moves on to the next candidate.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from core.exceptions import InsufficientEligibleFunds, ValidationError
from core.money import ZERO, quantize_money, to_decimal
from database.base import utcnow
from database.models import EarningStatus, PaymentMethod, PayoutRequest, PayoutStatus
from database.repositories import EarningRepository, PayoutRequestRepository
from services.earning_ledger import paginated
from services.notifications import ReferralNotifier, get_notifier

logger = logging.getLogger(__name__)


class PayoutReservationService:
    """Service for creating payout requests and reading payout balances."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        notifier: Optional[ReferralNotifier] = None,
    ):
        self.session = session
        self.clock = clock
        self.notifier = notifier or get_notifier()
        self.earning_repo = EarningRepository(session)
        self.payout_repo = PayoutRequestRepository(session)

    @staticmethod
    def _validate(
        requested_amount: Any,
        currency: Optional[str],
        payment_method: Any,
        payment_details: Any,
    ) -> tuple[Decimal, str, PaymentMethod]:
        amount = to_decimal(requested_amount)
        if amount <= 0:
            raise ValidationError("requestedAmount", "must be greater than zero")

        currency = (currency or settings.default_currency).strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError("currency", "must be a 3-letter ISO code")
        if quantize_money(amount, currency) != amount:
            raise ValidationError("requestedAmount", f"too many decimal places for {currency}")

        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            allowed = ", ".join(m.value for m in PaymentMethod)
            raise ValidationError("paymentMethod", f"must be one of: {allowed}")

        if not payment_details:
            raise ValidationError("paymentDetails", "payment details are required")
        return amount, currency, method

    async def request_payout(
        self,
        referrer_id: str,
        requested_amount: Decimal,
        currency: Optional[str],
        payment_method: PaymentMethod,
        payment_details: Any,
    ) -> PayoutRequest:
        """
        Reserve matured earnings (FIFO) and create a pending payout request.

        The reserved total may exceed the requested amount; earnings are
        never split.

        Raises:
            ValidationError: Bad amount, currency, method or details
            InsufficientEligibleFunds: Not enough matured, unreserved earnings
        """
        amount, currency, method = self._validate(
            requested_amount, currency, payment_method, payment_details
        )
        now = self.clock()

        candidates = await self.earning_repo.get_eligible(referrer_id, currency, now)
        eligible_total = sum((e.earning_amount for e in candidates), ZERO)
        if eligible_total < amount:
            logger.info(
                f"Payout of {amount} {currency} refused for {referrer_id}: "
                f"eligible {eligible_total}",
                extra={"referrer_id": referrer_id}
            )
            raise InsufficientEligibleFunds(eligible_total, amount, currency)

        reserved_ids: List[int] = []
        reserved_total = ZERO
        try:
            for earning in candidates:
                if reserved_total >= amount:
                    break
                claimed = await self.earning_repo.compare_and_set_status(
                    earning.id, EarningStatus.PENDING, EarningStatus.APPROVED
                )
                if not claimed:
                    logger.info(
                        f"Earning {earning.id} claimed by a concurrent request, skipping",
                        extra={"referrer_id": referrer_id, "earning_id": earning.id}
                    )
                    continue
                reserved_ids.append(earning.id)
                reserved_total += earning.earning_amount

            if reserved_total < amount:
                # Release everything claimed in this walk
                await self.session.rollback()
                current = await self.earning_repo.get_eligible_total(referrer_id, currency, now)
                logger.info(
                    f"Payout of {amount} {currency} for {referrer_id} lost reservation race: "
                    f"reserved {reserved_total}, eligible now {current}",
                    extra={"referrer_id": referrer_id}
                )
                raise InsufficientEligibleFunds(current, amount, currency)

            payout = await self.payout_repo.create(
                referrer_id=referrer_id,
                requested_amount=amount,
                reserved_amount=reserved_total,
                currency=currency,
                earning_ids=reserved_ids,
                payment_method=method.value,
                payment_details=payment_details,
                created_at=now,
            )
            await self.session.commit()
        except InsufficientEligibleFunds:
            raise
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Payout request {payout.id} created: {amount} {currency} for {referrer_id}, "
            f"reserved {len(reserved_ids)} earnings ({reserved_total})",
            extra={"referrer_id": referrer_id, "payout_id": payout.id}
        )
        await self.notifier.payout_requested(payout)
        return payout

    async def get_eligible_balance(
        self,
        referrer_id: str,
        currency: Optional[str] = None
    ) -> Decimal:
        """Matured, unreserved total available for a new payout request."""
        currency = (currency or settings.default_currency).upper()
        return await self.earning_repo.get_eligible_total(referrer_id, currency, self.clock())

    async def list_payout_requests(
        self,
        referrer_id: str,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """Newest-first page of a referrer's payout requests."""
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        payouts, total = await self.payout_repo.list_for_referrer(referrer_id, page, limit)
        return paginated([p.to_dict() for p in payouts], page, limit, total)

    async def list_all_payout_requests(
        self,
        status: Optional[PayoutStatus] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """Newest-first page of all payout requests (administrator view)."""
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        payouts, total = await self.payout_repo.list_by_status(
            PayoutStatus(status).value if status else None, page, limit
        )
        return paginated([p.to_dict() for p in payouts], page, limit, total)
