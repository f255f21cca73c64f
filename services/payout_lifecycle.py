"""Payout lifecycle: administrator decisions on payout requests."""
import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import InvalidTransition, LedgerIntegrityError, NotFoundError
from database.base import utcnow
from database.models import EarningStatus, PayoutRequest, PayoutStatus
from database.repositories import EarningRepository, PayoutRequestRepository
from services.notifications import ReferralNotifier, get_notifier

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[PayoutStatus, FrozenSet[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.APPROVED, PayoutStatus.REJECTED}),
    PayoutStatus.APPROVED: frozenset({PayoutStatus.PAID, PayoutStatus.CANCELLED}),
    PayoutStatus.REJECTED: frozenset(),
    PayoutStatus.PAID: frozenset(),
    PayoutStatus.CANCELLED: frozenset(),
}

# Where the reserved earnings go for each payout outcome (None: unchanged)
_EARNING_TARGET = {
    PayoutStatus.APPROVED: None,
    PayoutStatus.PAID: EarningStatus.PAID,
    PayoutStatus.REJECTED: EarningStatus.PENDING,
    PayoutStatus.CANCELLED: EarningStatus.PENDING,
}


def can_transition(current: PayoutStatus, target: PayoutStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[PayoutStatus(current)]


class PayoutLifecycleService:
    """Service for approving, rejecting, paying out and cancelling payout requests."""

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

    async def process_payout_request(
        self,
        payout_id: int,
        status: PayoutStatus,
        admin_id: str,
        admin_note: Optional[str] = None,
    ) -> PayoutRequest:
        """
        Move a payout request to ``status`` and settle its reserved earnings.

        paid: reserved earnings become paid. rejected/cancelled: reserved
        earnings return to pending and can be requested again. approved:
        earnings stay reserved. The payout and earning writes commit together.

        Raises:
            NotFoundError: Unknown payout request
            InvalidTransition: Transition not allowed from the current status
            LedgerIntegrityError: Reserved earnings were not in the expected state
        """
        target = PayoutStatus(status)
        payout = await self.payout_repo.get_by_id(payout_id)
        if not payout:
            raise NotFoundError("Payout request", payout_id)

        current = PayoutStatus(payout.status)
        if not can_transition(current, target):
            raise InvalidTransition(current.value, target.value)

        now = self.clock()
        try:
            changed = await self.payout_repo.compare_and_set_status(
                payout_id,
                expected=current,
                new=target,
                processed_by=admin_id,
                processed_at=now,
                admin_note=admin_note,
            )
            if not changed:
                # Another administrator resolved the request first
                await self.session.rollback()
                await self.payout_repo.refresh(payout)
                raise InvalidTransition(payout.status, target.value)

            earning_target = _EARNING_TARGET[target]
            earning_ids = list(payout.earning_ids or [])
            if earning_target is not None and earning_ids:
                moved = await self.earning_repo.transition_many(
                    earning_ids, EarningStatus.APPROVED, earning_target
                )
                if moved != len(earning_ids):
                    await self.session.rollback()
                    logger.error(
                        f"Payout {payout_id} -> {target.value}: expected {len(earning_ids)} "
                        f"reserved earnings, moved {moved}; rolled back",
                        extra={"payout_id": payout_id, "admin_id": admin_id}
                    )
                    raise LedgerIntegrityError(
                        f"Payout request {payout_id} reserved {len(earning_ids)} earnings "
                        f"but only {moved} were in the approved state",
                        payoutId=payout_id,
                    )

            await self.session.commit()
        except (InvalidTransition, LedgerIntegrityError):
            raise
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Payout {payout_id} {current.value} -> {target.value} by {admin_id}",
            extra={"payout_id": payout_id, "admin_id": admin_id, "referrer_id": payout.referrer_id}
        )
        await self.notifier.payout_processed(payout)
        return payout

    async def get_payout_request(self, payout_id: int) -> PayoutRequest:
        payout = await self.payout_repo.get_by_id(payout_id)
        if not payout:
            raise NotFoundError("Payout request", payout_id)
        return payout
