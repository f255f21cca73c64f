"""Earning repository for ledger reads and status-guarded writes."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Sequence, Any

from sqlalchemy import select, update, func, and_, distinct

from core.money import to_decimal, ZERO
from database.base import utcnow
from database.models import Earning, EarningStatus
from database.repositories.base import BaseRepository


class EarningRepository(BaseRepository[Earning]):
    """Repository for Earning model operations."""

    model_class = Earning

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Earning]:
        """Get earning by its upstream transaction id."""
        result = await self.session.execute(
            select(Earning).where(Earning.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def insert_once(self, values: Dict[str, Any]) -> Optional[Earning]:
        """
        Insert an earning unless it violates a unique constraint.

        Conflicts come from a recorded transaction_id or from a second
        initial earning for the same referrer/referred user pair.

        Returns:
            The new earning, or None on a conflict
        """
        earning_id = await self.insert_ignoring_conflict(values, [])
        if earning_id is None:
            return None
        return await self.get_by_id(earning_id)

    async def exists_for_pair(self, referrer_id: str, referred_user_id: str) -> bool:
        """Whether any earning was ever recorded for this referrer/referred user pair."""
        result = await self.session.execute(
            select(Earning.id).where(
                and_(
                    Earning.referrer_id == referrer_id,
                    Earning.referred_user_id == referred_user_id
                )
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_eligible(
        self,
        referrer_id: str,
        currency: str,
        now: datetime
    ) -> List[Earning]:
        """
        Matured, unreserved earnings, oldest first (FIFO).

        Args:
            referrer_id: Owner of the earnings
            currency: Only earnings in this currency are returned
            now: Eligibility cut-off
        """
        result = await self.session.execute(
            select(Earning)
            .where(
                and_(
                    Earning.referrer_id == referrer_id,
                    Earning.status == EarningStatus.PENDING.value,
                    Earning.currency == currency,
                    Earning.eligible_at <= now
                )
            )
            .order_by(Earning.created_at.asc(), Earning.id.asc())
        )
        return list(result.scalars().all())

    async def get_eligible_total(self, referrer_id: str, currency: str, now: datetime) -> Decimal:
        """Sum of matured, unreserved earnings."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(Earning.earning_amount), 0)).where(
                and_(
                    Earning.referrer_id == referrer_id,
                    Earning.status == EarningStatus.PENDING.value,
                    Earning.currency == currency,
                    Earning.eligible_at <= now
                )
            )
        )
        return to_decimal(result.scalar())

    async def compare_and_set_status(
        self,
        earning_id: int,
        expected: EarningStatus,
        new: EarningStatus
    ) -> bool:
        """
        Conditional write: set ``new`` only if the row still has ``expected``.

        Returns:
            True if this caller performed the transition
        """
        result = await self.session.execute(
            update(Earning)
            .where(
                and_(
                    Earning.id == earning_id,
                    Earning.status == expected.value
                )
            )
            .values(status=new.value, updated_at=utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1

    async def transition_many(
        self,
        earning_ids: Sequence[int],
        expected: EarningStatus,
        new: EarningStatus
    ) -> int:
        """
        Move every listed earning from ``expected`` to ``new``.

        Returns:
            Number of rows actually transitioned
        """
        if not earning_ids:
            return 0
        result = await self.session.execute(
            update(Earning)
            .where(
                and_(
                    Earning.id.in_(list(earning_ids)),
                    Earning.status == expected.value
                )
            )
            .values(status=new.value, updated_at=utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount

    def _filtered(
        self,
        referrer_id: str,
        status: Optional[str] = None,
        earning_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ):
        query = select(Earning).where(Earning.referrer_id == referrer_id)
        if status:
            query = query.where(Earning.status == status)
        if earning_type:
            query = query.where(Earning.earning_type == earning_type)
        if date_from:
            query = query.where(Earning.created_at >= date_from)
        if date_to:
            query = query.where(Earning.created_at <= date_to)
        return query

    async def list_for_referrer(
        self,
        referrer_id: str,
        page: int,
        limit: int,
        status: Optional[str] = None,
        earning_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> tuple[List[Earning], int]:
        """Newest-first page of a referrer's earnings and the total count."""
        query = self._filtered(
            referrer_id,
            status=status,
            earning_type=earning_type,
            date_from=date_from,
            date_to=date_to,
        ).order_by(Earning.created_at.desc(), Earning.id.desc())
        return await self.paginate(query, page, limit)

    async def get_all_by_referrer(self, referrer_id: str) -> List[Earning]:
        """All earnings of a referrer, oldest first."""
        result = await self.session.execute(
            select(Earning)
            .where(Earning.referrer_id == referrer_id)
            .order_by(Earning.created_at.asc(), Earning.id.asc())
        )
        return list(result.scalars().all())

    async def sum_by_status(self, referrer_id: Optional[str] = None) -> Dict[str, Decimal]:
        """Earning totals per status, for one referrer or platform-wide."""
        query = select(
            Earning.status,
            func.coalesce(func.sum(Earning.earning_amount), 0).label("total")
        )
        if referrer_id is not None:
            query = query.where(Earning.referrer_id == referrer_id)
        result = await self.session.execute(query.group_by(Earning.status))

        totals = {status.value: ZERO for status in EarningStatus}
        for status, total in result:
            totals[status] = to_decimal(total)
        return totals

    async def count_referred_with_earnings(self, referrer_id: str) -> int:
        """Distinct referred users that produced at least one earning."""
        result = await self.session.execute(
            select(func.count(distinct(Earning.referred_user_id))).where(
                Earning.referrer_id == referrer_id
            )
        )
        return result.scalar() or 0

    async def count_referrers_with_earnings(self) -> int:
        """Distinct referrers that have at least one earning."""
        result = await self.session.execute(
            select(func.count(distinct(Earning.referrer_id)))
        )
        return result.scalar() or 0

    async def sum_created_since(
        self,
        since: datetime,
        referrer_id: Optional[str] = None
    ) -> Decimal:
        """Non-cancelled earning total created at or after ``since``."""
        query = select(func.coalesce(func.sum(Earning.earning_amount), 0)).where(
            and_(
                Earning.created_at >= since,
                Earning.status != EarningStatus.CANCELLED.value
            )
        )
        if referrer_id is not None:
            query = query.where(Earning.referrer_id == referrer_id)
        result = await self.session.execute(query)
        return to_decimal(result.scalar())

    async def count_created_since(self, since: datetime) -> int:
        """Earnings (conversions) created at or after ``since``."""
        result = await self.session.execute(
            select(func.count(Earning.id)).where(Earning.created_at >= since)
        )
        return result.scalar() or 0

    async def get_matured_between(self, since: datetime, until: datetime) -> List[Earning]:
        """Pending earnings whose eligibility moment falls in (since, until]."""
        result = await self.session.execute(
            select(Earning)
            .where(
                and_(
                    Earning.status == EarningStatus.PENDING.value,
                    Earning.eligible_at > since,
                    Earning.eligible_at <= until
                )
            )
            .order_by(Earning.referrer_id, Earning.eligible_at)
        )
        return list(result.scalars().all())
