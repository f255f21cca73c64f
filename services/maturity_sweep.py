"""
Background sweep that surfaces earnings which became eligible for payout.

Eligibility is evaluated at read time by the reservation engine; this job
only reports newly matured earnings and never writes to the ledger.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from core.money import ZERO
from database.base import async_session_maker, utcnow
from database.repositories import EarningRepository
from services.notifications import ReferralNotifier, get_notifier

logger = logging.getLogger(__name__)

# Global scheduler instance
sweep_scheduler = AsyncIOScheduler(timezone="UTC")

_last_sweep_at: Optional[datetime] = None


@dataclass
class MaturedSummary:
    """Earnings of one referrer that matured in the sweep window."""
    count: int = 0
    amount: Decimal = ZERO


async def surface_matured_earnings(
    session: AsyncSession,
    since: datetime,
    now: datetime,
    notifier: Optional[ReferralNotifier] = None,
) -> Dict[Tuple[str, str], MaturedSummary]:
    """
    Report pending earnings whose eligibility moment fell in (since, now].

    Args:
        session: Database session (read only)
        since: End of the previous sweep window
        now: End of this window
        notifier: Referrer notifications (process-wide notifier by default)

    Returns:
        Summary per (referrer_id, currency)
    """
    notifier = notifier or get_notifier()
    earnings = await EarningRepository(session).get_matured_between(since, now)

    summaries: Dict[Tuple[str, str], MaturedSummary] = {}
    for earning in earnings:
        summary = summaries.setdefault((earning.referrer_id, earning.currency), MaturedSummary())
        summary.count += 1
        summary.amount += earning.earning_amount

    for (referrer_id, currency), summary in summaries.items():
        logger.info(
            f"{summary.count} earnings ({summary.amount} {currency}) matured for {referrer_id}",
            extra={"referrer_id": referrer_id}
        )
        await notifier.earnings_matured(referrer_id, summary.count, summary.amount, currency)

    return summaries


async def run_maturity_sweep():
    """Background task: sweep the window since the previous run."""
    global _last_sweep_at
    now = utcnow()
    since = _last_sweep_at or now - timedelta(minutes=settings.sweep_interval_minutes)
    try:
        async with async_session_maker() as session:
            summaries = await surface_matured_earnings(session, since, now)
        _last_sweep_at = now
        if summaries:
            logger.info(f"Maturity sweep: {len(summaries)} referrers with newly eligible earnings")
    except Exception as e:
        logger.error(f"Error in maturity sweep: {e}", exc_info=True)


def start_sweep_scheduler():
    """Start the maturity sweep (every ``sweep_interval_minutes``)."""
    sweep_scheduler.add_job(
        run_maturity_sweep,
        'interval',
        minutes=settings.sweep_interval_minutes,
        id='maturity_sweep',
        replace_existing=True
    )
    sweep_scheduler.start()
    logger.info(f"Maturity sweep scheduled every {settings.sweep_interval_minutes} min")


def stop_sweep_scheduler():
    """Stop the maturity sweep."""
    if sweep_scheduler.running:
        sweep_scheduler.shutdown()
        logger.info("Maturity sweep stopped")
