"""Payout request repository."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Any

from sqlalchemy import select, update, func, and_

from core.money import to_decimal
from database.base import utcnow
from database.models import PayoutRequest, PayoutStatus
from database.repositories.base import BaseRepository


class PayoutRequestRepository(BaseRepository[PayoutRequest]):
    """Repository for PayoutRequest model operations."""

    model_class = PayoutRequest

    async def create(
        self,
        referrer_id: str,
        requested_amount: Decimal,
        reserved_amount: Decimal,
        currency: str,
        earning_ids: List[int],
        payment_method: str,
        payment_details: Any,
        created_at: Optional[datetime] = None,
    ) -> PayoutRequest:
        """Create a pending payout request referencing the reserved earnings."""
        payout = PayoutRequest(
            referrer_id=referrer_id,
            requested_amount=requested_amount,
            reserved_amount=reserved_amount,
            currency=currency,
            earning_ids=list(earning_ids),
            status=PayoutStatus.PENDING.value,
            payment_method=payment_method,
            payment_details=payment_details,
        )
        payout.created_at = created_at or utcnow()
        payout.updated_at = payout.created_at
        self.session.add(payout)
        await self.session.flush()
        return payout

    async def compare_and_set_status(
        self,
        payout_id: int,
        expected: PayoutStatus,
        new: PayoutStatus,
        processed_by: str,
        processed_at: datetime,
        admin_note: Optional[str] = None,
    ) -> bool:
        """
        Conditional status write guarded on the status the caller observed.

        Returns:
            True if this caller performed the transition
        """
        values = {
            "status": new.value,
            "processed_by": processed_by,
            "processed_at": processed_at,
            "updated_at": processed_at,
        }
        if admin_note is not None:
            values["admin_note"] = admin_note

        result = await self.session.execute(
            update(PayoutRequest)
            .where(
                and_(
                    PayoutRequest.id == payout_id,
                    PayoutRequest.status == expected.value
                )
            )
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1

    async def list_for_referrer(
        self,
        referrer_id: str,
        page: int,
        limit: int
    ) -> tuple[List[PayoutRequest], int]:
        """Newest-first page of a referrer's payout requests."""
        query = (
            select(PayoutRequest)
            .where(PayoutRequest.referrer_id == referrer_id)
            .order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
        )
        return await self.paginate(query, page, limit)

    async def list_by_status(
        self,
        status: Optional[str],
        page: int,
        limit: int
    ) -> tuple[List[PayoutRequest], int]:
        """Newest-first page of payout requests, optionally filtered by status."""
        query = select(PayoutRequest)
        if status:
            query = query.where(PayoutRequest.status == status)
        query = query.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
        return await self.paginate(query, page, limit)

    async def sum_requested(self, status: PayoutStatus) -> Decimal:
        """Platform-wide requested amount in a status."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(PayoutRequest.requested_amount), 0)).where(
                PayoutRequest.status == status.value
            )
        )
        return to_decimal(result.scalar())
