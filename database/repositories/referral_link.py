"""Referral link and attribution repository."""
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, func

from database.models import ReferralLink, ReferralAttribution
from database.repositories.base import BaseRepository


class ReferralLinkRepository(BaseRepository[ReferralLink]):
    """Repository for ReferralLink and ReferralAttribution operations."""

    model_class = ReferralLink

    async def get_by_referrer(self, referrer_id: str) -> Optional[ReferralLink]:
        """Get the referrer's link."""
        result = await self.session.execute(
            select(ReferralLink).where(ReferralLink.referrer_id == referrer_id)
        )
        return result.scalar_one_or_none()

    async def get_by_code(self, code: str) -> Optional[ReferralLink]:
        """Get link by its public code."""
        result = await self.session.execute(
            select(ReferralLink).where(ReferralLink.code == code.lower())
        )
        return result.scalar_one_or_none()

    async def code_exists(self, code: str) -> bool:
        """Check if a code is already taken."""
        result = await self.session.execute(
            select(func.count(ReferralLink.id)).where(ReferralLink.code == code)
        )
        return (result.scalar() or 0) > 0

    async def create_once(
        self,
        referrer_id: str,
        code: str,
        created_at: datetime
    ) -> Optional[ReferralLink]:
        """
        Create the referrer's link unless another request already did.

        Returns:
            The referrer's link (this request's or the concurrent winner's),
            or None if ``code`` was taken by another referrer
        """
        await self.insert_ignoring_conflict(
            {
                "referrer_id": referrer_id,
                "code": code,
                "clicks": 0,
                "conversions": 0,
                "created_at": created_at,
                "updated_at": created_at,
            },
            [],
        )
        return await self.get_by_referrer(referrer_id)

    async def increment_clicks(self, code: str, used_at: datetime) -> bool:
        """Atomically count a click. Returns False for an unknown code."""
        result = await self.session.execute(
            update(ReferralLink)
            .where(ReferralLink.code == code.lower())
            .values(clicks=ReferralLink.clicks + 1, last_used_at=used_at, updated_at=used_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment_conversions(self, link_id: int, used_at: datetime) -> None:
        """Atomically count a signup."""
        await self.session.execute(
            update(ReferralLink)
            .where(ReferralLink.id == link_id)
            .values(conversions=ReferralLink.conversions + 1, last_used_at=used_at, updated_at=used_at)
            .execution_options(synchronize_session=False)
        )

    # ========== Attributions ==========

    async def get_attribution(self, referred_user_id: str) -> Optional[ReferralAttribution]:
        """Who referred this user, if anyone."""
        result = await self.session.execute(
            select(ReferralAttribution).where(
                ReferralAttribution.referred_user_id == referred_user_id
            )
        )
        return result.scalar_one_or_none()

    async def create_attribution(
        self,
        referred_user_id: str,
        referrer_id: str,
        referral_code: str,
        referred_at: datetime
    ) -> bool:
        """
        Stamp ``referred_user_id`` as referred by ``referrer_id``.

        Returns:
            False if the user was already attributed (first signup wins)
        """
        inserted = await self.insert_ignoring_conflict(
            {
                "referred_user_id": referred_user_id,
                "referrer_id": referrer_id,
                "referral_code": referral_code,
                "referred_at": referred_at,
            },
            ["referred_user_id"],
            model=ReferralAttribution,
        )
        return inserted is not None

    async def count_attributions(
        self,
        referrer_id: str,
        since: Optional[datetime] = None
    ) -> int:
        """Users referred by ``referrer_id`` (optionally since a moment)."""
        query = select(func.count(ReferralAttribution.id)).where(
            ReferralAttribution.referrer_id == referrer_id
        )
        if since is not None:
            query = query.where(ReferralAttribution.referred_at >= since)
        result = await self.session.execute(query)
        return result.scalar() or 0
