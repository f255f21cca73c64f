"""Commission settings store: per-referrer rates and payment model."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError, ValidationError
from core.money import to_decimal
from database.base import utcnow
from database.models import CommissionSettings, PaymentModel, ReferrerClass
from database.repositories import CommissionSettingsRepository
from services.referral_links import ReferralLinkService

logger = logging.getLogger(__name__)


def _validate_rate(field: str, value) -> Decimal:
    rate = to_decimal(value)
    if rate < 0 or rate > 100:
        raise ValidationError(field, "rate must be between 0 and 100")
    if rate != rate.quantize(Decimal("0.01")):
        raise ValidationError(field, "rate allows at most 2 decimal places")
    return rate


class CommissionSettingsService:
    """Service for reading and administering commission settings."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session = session
        self.clock = clock
        self.settings_repo = CommissionSettingsRepository(session)
        self.link_service = ReferralLinkService(session, clock=clock)

    async def initialize_for_referrer(
        self,
        referrer_id: str,
        referrer_class: ReferrerClass = ReferrerClass.NORMAL
    ) -> CommissionSettings:
        """
        Set up a referrer: default commission settings plus a referral link.

        Idempotent; an existing referrer keeps its current settings.
        """
        referrer_class = ReferrerClass(referrer_class)
        existing = await self.settings_repo.get_by_referrer(referrer_id)

        settings = existing or await self.settings_repo.create_with_defaults(
            referrer_id, referrer_class, created_at=self.clock()
        )
        await self.link_service.ensure_link(referrer_id)
        await self.session.commit()

        if not existing:
            logger.info(
                f"Referral system initialized for {referrer_id} ({referrer_class.value})",
                extra={"referrer_id": referrer_id}
            )
        return settings

    async def get_settings(self, referrer_id: str) -> CommissionSettings:
        """
        Raises:
            NotFoundError: Referrer was never initialized
        """
        settings = await self.settings_repo.get_by_referrer(referrer_id)
        if not settings:
            raise NotFoundError("Commission settings", referrer_id)
        return settings

    async def update_rates(
        self,
        referrer_id: str,
        admin_id: Optional[str] = None,
        initial_rate: Optional[Decimal] = None,
        recurring_rate: Optional[Decimal] = None,
        payment_model: Optional[PaymentModel] = None,
        active: Optional[bool] = None,
        referrer_class: Optional[ReferrerClass] = None,
    ) -> CommissionSettings:
        """
        Administrative override of a referrer's commission settings.

        Unknown referrers get class-default settings first. Recorded earnings
        keep the rate they were created with.

        Raises:
            ValidationError: Rate outside 0-100
        """
        if initial_rate is not None:
            initial_rate = _validate_rate("initialCommissionRate", initial_rate)
        if recurring_rate is not None:
            recurring_rate = _validate_rate("recurringCommissionRate", recurring_rate)

        now = self.clock()
        settings = await self.settings_repo.get_by_referrer(referrer_id)
        if not settings:
            settings = await self.settings_repo.create_with_defaults(
                referrer_id,
                ReferrerClass(referrer_class or ReferrerClass.NORMAL),
                created_at=now,
            )

        if initial_rate is not None:
            settings.initial_rate = initial_rate
            settings.custom_rates = True
        if recurring_rate is not None:
            settings.recurring_rate = recurring_rate
            settings.custom_rates = True
        if payment_model is not None:
            settings.payment_model = PaymentModel(payment_model).value
        if active is not None:
            settings.active = active
        if referrer_class is not None:
            settings.referrer_class = ReferrerClass(referrer_class).value
        settings.updated_at = now

        await self.session.commit()

        logger.info(
            f"Commission settings updated for {referrer_id} by {admin_id}: "
            f"rates={settings.initial_rate}/{settings.recurring_rate}, "
            f"model={settings.payment_model}, active={settings.active}",
            extra={"referrer_id": referrer_id, "admin_id": admin_id}
        )
        return settings
