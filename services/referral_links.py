"""Referral link registry: code generation, click and signup tracking."""
import logging
import re
import secrets
import string
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from core.exceptions import NotFoundError, ValidationError
from database.base import utcnow
from database.models import ReferralLink
from database.repositories import ReferralLinkRepository

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def to_base36(number: int) -> str:
    """Render a non-negative integer in base 36."""
    if number < 0:
        raise ValueError("number must be non-negative")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def random_base36(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_referral_code(referrer_id: str, now: datetime) -> str:
    """
    Build a referral code: ``<slug>-<base36 ms timestamp>-<6 random chars>``.

    Example:
        generate_referral_code("Jane.Doe_42", ...) -> "janedoe4-lq2x8c1a-k3p9zt"
    """
    slug = _SLUG_STRIP.sub("", referrer_id.lower())[:8] or "ref"
    millis = int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    return f"{slug}-{to_base36(millis)}-{random_base36(6)}"


def generate_fallback_code() -> str:
    """Fully random code used after repeated collisions."""
    return f"ref-{random_base36(16)}"


class ReferralLinkService:
    """Service for referral links and "referred by" attributions."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session = session
        self.clock = clock
        self.link_repo = ReferralLinkRepository(session)

    async def get_or_create(self, referrer_id: str) -> ReferralLink:
        """
        Return the referrer's link, creating it on first use.

        Concurrent calls for the same referrer converge on a single row.
        """
        link = await self.ensure_link(referrer_id)
        await self.session.commit()
        return link

    async def ensure_link(self, referrer_id: str) -> ReferralLink:
        """Same as get_or_create but leaves the commit to the caller."""
        link = await self.link_repo.get_by_referrer(referrer_id)
        if link:
            return link

        now = self.clock()
        code = await self._pick_code(referrer_id, now)
        link = await self.link_repo.create_once(referrer_id, code, created_at=now)
        if link is None:
            # Code taken between the availability check and the insert
            link = await self.link_repo.create_once(
                referrer_id, generate_fallback_code(), created_at=now
            )
        if link is None:
            raise RuntimeError(f"Could not allocate a referral code for {referrer_id}")

        if link.code == code:
            logger.info(
                f"Referral link created for {referrer_id}: {link.code}",
                extra={"referrer_id": referrer_id}
            )
        return link

    async def _pick_code(self, referrer_id: str, now: datetime) -> str:
        for attempt in range(settings.referral_code_attempts):
            code = generate_referral_code(referrer_id, now)
            if not await self.link_repo.code_exists(code):
                return code
            logger.debug(f"Referral code collision on attempt {attempt + 1}: {code}")

        logger.warning(
            f"Referral code collisions exhausted for {referrer_id}, using random code",
            extra={"referrer_id": referrer_id}
        )
        return generate_fallback_code()

    async def get_link(self, referrer_id: str) -> ReferralLink:
        """
        Get an existing link.

        Raises:
            NotFoundError: If the referrer has no link yet
        """
        link = await self.link_repo.get_by_referrer(referrer_id)
        if not link:
            raise NotFoundError("Referral link", referrer_id)
        return link

    async def track_click(self, code: str) -> ReferralLink:
        """
        Count a visit through a referral link.

        Raises:
            NotFoundError: Unknown referral code
        """
        if not await self.link_repo.increment_clicks(code, self.clock()):
            await self.session.rollback()
            raise NotFoundError("Referral code", code)
        await self.session.commit()

        link = await self.link_repo.get_by_code(code)
        return await self.link_repo.refresh(link)

    async def record_signup(
        self,
        referred_user_id: str,
        code: str
    ) -> str:
        """
        Attribute a newly registered user to the owner of ``code``.

        A user is attributed at most once; a repeated signup returns the
        original referrer without counting another conversion.

        Returns:
            ID of the referrer the user is attributed to

        Raises:
            NotFoundError: Unknown referral code
            ValidationError: User tried to refer themselves
        """
        link = await self.link_repo.get_by_code(code)
        if not link:
            raise NotFoundError("Referral code", code)
        if link.referrer_id == referred_user_id:
            raise ValidationError("referralCode", "self-referral is not allowed")

        existing = await self.link_repo.get_attribution(referred_user_id)
        if existing:
            logger.info(
                f"User {referred_user_id} already referred by {existing.referrer_id}",
                extra={"referred_user_id": referred_user_id, "referrer_id": existing.referrer_id}
            )
            return existing.referrer_id

        now = self.clock()
        inserted = await self.link_repo.create_attribution(
            referred_user_id=referred_user_id,
            referrer_id=link.referrer_id,
            referral_code=link.code,
            referred_at=now,
        )
        if inserted:
            await self.link_repo.increment_conversions(link.id, now)
        await self.session.commit()

        if not inserted:
            # A concurrent signup for the same user won
            attribution = await self.link_repo.get_attribution(referred_user_id)
            return attribution.referrer_id

        # Counter was bumped in SQL; reload the cached row
        await self.link_repo.refresh(link)

        logger.info(
            f"Signup attributed: {referred_user_id} -> {link.referrer_id}",
            extra={"referred_user_id": referred_user_id, "referrer_id": link.referrer_id}
        )
        return link.referrer_id

    async def get_referrer_of(self, referred_user_id: str) -> Optional[str]:
        """Who referred this user, if anyone."""
        attribution = await self.link_repo.get_attribution(referred_user_id)
        return attribution.referrer_id if attribution else None
