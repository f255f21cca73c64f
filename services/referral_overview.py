"""Read-only referral statistics for referrers and administrators."""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, func, case, distinct, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from core.money import ZERO, money_to_json, to_decimal
from database.base import utcnow
from database.models import (
    CommissionSettings,
    Earning,
    EarningStatus,
    PayoutStatus,
    ReferralAttribution,
    ReferrerClass,
)
from database.repositories import (
    CommissionSettingsRepository,
    EarningRepository,
    PayoutRequestRepository,
    ReferralLinkRepository,
)
from services.earning_ledger import paginated
from services.payout_reservation import PayoutReservationService
from services.referral_links import ReferralLinkService

logger = logging.getLogger(__name__)

SORT_FIELDS = ("earnings", "referrals", "conversion_rate", "recent_activity")


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def conversion_rate(active: int, total: int) -> float:
    """Share of referred users that produced an earning, in percent."""
    if not total:
        return 0.0
    return round(active / total * 100, 2)


class ReferralOverviewService:
    """Aggregates ledger state into dashboard figures."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session = session
        self.clock = clock
        self.earning_repo = EarningRepository(session)
        self.payout_repo = PayoutRequestRepository(session)
        self.settings_repo = CommissionSettingsRepository(session)
        self.link_repo = ReferralLinkRepository(session)

    async def get_stats(self, referrer_id: str) -> Dict[str, Any]:
        """
        Referral statistics for one referrer.

        totalEarnings excludes cancelled earnings; pendingEarnings counts
        both unreserved and reserved (pending + approved) earnings.
        """
        month_start = start_of_month(self.clock())

        total_referrals = await self.link_repo.count_attributions(referrer_id)
        active_referrals = await self.earning_repo.count_referred_with_earnings(referrer_id)
        totals = await self.earning_repo.sum_by_status(referrer_id)
        month_referrals = await self.link_repo.count_attributions(referrer_id, since=month_start)
        month_earnings = await self.earning_repo.sum_created_since(month_start, referrer_id=referrer_id)

        pending = totals[EarningStatus.PENDING.value] + totals[EarningStatus.APPROVED.value]
        paid = totals[EarningStatus.PAID.value]

        return {
            "totalReferrals": total_referrals,
            "activeReferrals": active_referrals,
            "totalEarnings": money_to_json(pending + paid),
            "pendingEarnings": money_to_json(pending),
            "paidEarnings": money_to_json(paid),
            "conversionRate": conversion_rate(active_referrals, total_referrals),
            "thisMonthReferrals": month_referrals,
            "thisMonthEarnings": money_to_json(month_earnings),
        }

    async def get_dashboard(self, referrer_id: str) -> Dict[str, Any]:
        """Stats, referral link (created on first visit) and payout balance."""
        link = await ReferralLinkService(self.session, clock=self.clock).get_or_create(referrer_id)
        stats = await self.get_stats(referrer_id)
        balance = await PayoutReservationService(
            self.session, clock=self.clock
        ).get_eligible_balance(referrer_id)

        return {
            "stats": stats,
            "referralLink": link.to_dict(),
            "eligibleForPayout": money_to_json(balance, settings.default_currency),
            "currency": settings.default_currency,
        }

    async def get_overview(self) -> Dict[str, Any]:
        """Platform-wide referral figures for administrators."""
        month_start = start_of_month(self.clock())

        totals = await self.earning_repo.sum_by_status()
        total_earnings = sum(
            (amount for status, amount in totals.items() if status != EarningStatus.CANCELLED.value),
            ZERO,
        )

        return {
            "totalReferrers": await self.settings_repo.count_active(),
            "activeReferrers": await self.earning_repo.count_referrers_with_earnings(),
            "totalEarnings": money_to_json(total_earnings),
            "pendingPayouts": money_to_json(await self.payout_repo.sum_requested(PayoutStatus.PENDING)),
            "approvedPayouts": money_to_json(await self.payout_repo.sum_requested(PayoutStatus.APPROVED)),
            "thisMonthStats": {
                "newReferrers": await self.settings_repo.count_created_since(month_start),
                "totalEarnings": money_to_json(await self.earning_repo.sum_created_since(month_start)),
                "conversions": await self.earning_repo.count_created_since(month_start),
            },
        }

    async def list_referrers(
        self,
        referrer_class: Optional[ReferrerClass] = None,
        status: Optional[str] = None,
        sort_by: str = "earnings",
        sort_order: str = "desc",
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Per-referrer performance, aggregated in the database.

        Args:
            referrer_class: Only referrers of this class
            status: "active" or "inactive"
            sort_by: earnings/referrals/conversion_rate/recent_activity
            sort_order: asc/desc
        """
        if sort_by not in SORT_FIELDS:
            sort_by = "earnings"
        limit = min(limit or settings.default_page_size, settings.max_page_size)

        earned = case(
            (Earning.status != EarningStatus.CANCELLED.value, Earning.earning_amount),
            else_=0,
        )
        outstanding = case(
            (
                Earning.status.in_([EarningStatus.PENDING.value, EarningStatus.APPROVED.value]),
                Earning.earning_amount,
            ),
            else_=0,
        )
        earnings_sq = (
            select(
                Earning.referrer_id.label("referrer_id"),
                func.sum(earned).label("total_earnings"),
                func.sum(outstanding).label("pending_earnings"),
                func.count(distinct(Earning.referred_user_id)).label("active_referrals"),
                func.max(Earning.created_at).label("last_earning_at"),
            )
            .group_by(Earning.referrer_id)
            .subquery()
        )
        referrals_sq = (
            select(
                ReferralAttribution.referrer_id.label("referrer_id"),
                func.count(ReferralAttribution.id).label("total_referrals"),
            )
            .group_by(ReferralAttribution.referrer_id)
            .subquery()
        )

        total_earnings = func.coalesce(earnings_sq.c.total_earnings, 0)
        pending_earnings = func.coalesce(earnings_sq.c.pending_earnings, 0)
        active_referrals = func.coalesce(earnings_sq.c.active_referrals, 0)
        total_referrals = func.coalesce(referrals_sq.c.total_referrals, 0)
        rate = case(
            (total_referrals > 0, active_referrals * 100.0 / total_referrals),
            else_=0,
        )
        last_activity = func.coalesce(earnings_sq.c.last_earning_at, CommissionSettings.updated_at)

        conditions = []
        if referrer_class:
            conditions.append(CommissionSettings.referrer_class == ReferrerClass(referrer_class).value)
        if status == "active":
            conditions.append(CommissionSettings.active == True)  # noqa: E712
        elif status == "inactive":
            conditions.append(CommissionSettings.active == False)  # noqa: E712

        sort_column = {
            "earnings": total_earnings,
            "referrals": total_referrals,
            "conversion_rate": rate,
            "recent_activity": last_activity,
        }[sort_by]
        ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()

        query = (
            select(
                CommissionSettings,
                total_earnings.label("total_earnings"),
                pending_earnings.label("pending_earnings"),
                active_referrals.label("active_referrals"),
                total_referrals.label("total_referrals"),
                last_activity.label("last_activity"),
            )
            .outerjoin(earnings_sq, earnings_sq.c.referrer_id == CommissionSettings.referrer_id)
            .outerjoin(referrals_sq, referrals_sq.c.referrer_id == CommissionSettings.referrer_id)
            .order_by(ordering, CommissionSettings.id.asc())
        )
        count_query = select(func.count(CommissionSettings.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await self.session.execute(count_query)).scalar() or 0
        result = await self.session.execute(
            query.offset((page - 1) * limit).limit(limit)
        )

        items = []
        for row in result:
            commission = row[0]
            items.append({
                "userId": commission.referrer_id,
                "userType": commission.referrer_class,
                "isActive": commission.active,
                "totalReferrals": int(row.total_referrals or 0),
                "activeReferrals": int(row.active_referrals or 0),
                "totalEarnings": money_to_json(to_decimal(row.total_earnings)),
                "pendingEarnings": money_to_json(to_decimal(row.pending_earnings)),
                "conversionRate": conversion_rate(
                    int(row.active_referrals or 0), int(row.total_referrals or 0)
                ),
                "lastActivity": row.last_activity.isoformat() if row.last_activity else None,
                "joinedAt": commission.created_at.isoformat() if commission.created_at else None,
            })

        return paginated(items, page, limit, total)
