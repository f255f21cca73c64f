"""Commission settings repository."""
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func, and_

from database.models import CommissionSettings, ReferrerClass, PaymentModel, DEFAULT_RATES
from database.repositories.base import BaseRepository


class CommissionSettingsRepository(BaseRepository[CommissionSettings]):
    """Repository for CommissionSettings model operations."""

    model_class = CommissionSettings

    async def get_by_referrer(self, referrer_id: str) -> Optional[CommissionSettings]:
        """Get settings by referrer id."""
        result = await self.session.execute(
            select(CommissionSettings).where(CommissionSettings.referrer_id == referrer_id)
        )
        return result.scalar_one_or_none()

    async def get_active_by_referrer(self, referrer_id: str) -> Optional[CommissionSettings]:
        """Get settings only if the referral relationship is active."""
        result = await self.session.execute(
            select(CommissionSettings).where(
                and_(
                    CommissionSettings.referrer_id == referrer_id,
                    CommissionSettings.active == True  # noqa: E712
                )
            )
        )
        return result.scalar_one_or_none()

    async def create_with_defaults(
        self,
        referrer_id: str,
        referrer_class: ReferrerClass,
        created_at: Optional[datetime] = None,
    ) -> CommissionSettings:
        """
        Create settings from the class default rates, once per referrer.

        A concurrent initializer for the same referrer loses on the unique
        constraint and gets the winner's row back.
        """
        initial_rate, recurring_rate = DEFAULT_RATES[referrer_class]
        values = {
            "referrer_id": referrer_id,
            "referrer_class": referrer_class.value,
            "initial_rate": initial_rate,
            "recurring_rate": recurring_rate,
            "payment_model": PaymentModel.RECURRING.value,
            "active": True,
            "custom_rates": False,
        }
        if created_at is not None:
            values["created_at"] = created_at
            values["updated_at"] = created_at

        await self.insert_ignoring_conflict(values, ["referrer_id"])
        return await self.get_by_referrer(referrer_id)

    async def count_active(self) -> int:
        """Referrers with an active commission relationship."""
        result = await self.session.execute(
            select(func.count(CommissionSettings.id)).where(CommissionSettings.active == True)  # noqa: E712
        )
        return result.scalar() or 0

    async def count_created_since(self, since: datetime) -> int:
        """Referrers initialized at or after ``since``."""
        result = await self.session.execute(
            select(func.count(CommissionSettings.id)).where(CommissionSettings.created_at >= since)
        )
        return result.scalar() or 0
