"""Tests for the matured-earnings sweep."""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from app.config import settings
from database.models import PaymentMethod
from services import maturity_sweep
from services.maturity_sweep import surface_matured_earnings
from services.payout_reservation import PayoutReservationService


@pytest.mark.asyncio
async def test_surface_matured_earnings(db_session, clock, referrer, credit, notifier):
    """Earnings maturing inside the window are grouped per referrer and currency."""
    window_start = clock.now + timedelta(days=settings.eligibility_days, seconds=-1)
    await credit(referrer, 150)
    await credit(referrer, 50)
    await credit(referrer, 1000, currency="JPY")
    window_end = clock.now + timedelta(days=settings.eligibility_days)

    summaries = await surface_matured_earnings(db_session, window_start, window_end, notifier=notifier)

    assert set(summaries) == {(referrer, "USD"), (referrer, "JPY")}
    assert summaries[(referrer, "USD")].count == 2
    assert summaries[(referrer, "USD")].amount == Decimal("40")
    assert summaries[(referrer, "JPY")].amount == Decimal("200")
    assert notifier.earnings_matured.await_count == 2
    notifier.earnings_matured.assert_any_await(referrer, 2, summaries[(referrer, "USD")].amount, "USD")


@pytest.mark.asyncio
async def test_window_is_half_open(db_session, clock, referrer, credit, notifier):
    """An earning maturing exactly at the window start belongs to the previous sweep."""
    earning = await credit(referrer, 150)

    previous = await surface_matured_earnings(
        db_session, earning.eligible_at - timedelta(minutes=1), earning.eligible_at, notifier=notifier
    )
    following = await surface_matured_earnings(
        db_session, earning.eligible_at, earning.eligible_at + timedelta(hours=1), notifier=notifier
    )

    assert len(previous) == 1
    assert following == {}


@pytest.mark.asyncio
async def test_reserved_earnings_are_not_reported(db_session, clock, referrer, credit, notifier):
    earning = await credit(referrer, 150)
    clock.advance(days=settings.eligibility_days)
    await PayoutReservationService(db_session, clock=clock, notifier=notifier).request_payout(
        referrer, Decimal("30"), "USD", PaymentMethod.PAYPAL, {"email": "r@example.com"}
    )

    summaries = await surface_matured_earnings(
        db_session, earning.eligible_at - timedelta(minutes=1), clock.now, notifier=notifier
    )

    assert summaries == {}
    notifier.earnings_matured.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_maturity_sweep_logs_errors(caplog):
    """A failing sweep is logged and does not raise."""
    with patch.object(maturity_sweep, "async_session_maker", side_effect=RuntimeError("db down")):
        await maturity_sweep.run_maturity_sweep()

    assert "Error in maturity sweep" in caplog.text


@pytest.mark.asyncio
async def test_run_maturity_sweep_advances_window(session_maker, monkeypatch):
    monkeypatch.setattr(maturity_sweep, "async_session_maker", session_maker)
    monkeypatch.setattr(maturity_sweep, "_last_sweep_at", None)
    surface = AsyncMock(return_value={})
    monkeypatch.setattr(maturity_sweep, "surface_matured_earnings", surface)

    await maturity_sweep.run_maturity_sweep()
    first_now = surface.await_args.args[2]
    await maturity_sweep.run_maturity_sweep()

    assert surface.await_args.args[1] == first_now
    assert maturity_sweep._last_sweep_at is not None


def test_scheduler_registers_interval_job():
    with patch.object(maturity_sweep.sweep_scheduler, "start") as start:
        maturity_sweep.start_sweep_scheduler()
        job = maturity_sweep.sweep_scheduler.get_job("maturity_sweep")
        maturity_sweep.sweep_scheduler.remove_job("maturity_sweep")

    start.assert_called_once()
    assert job is not None
    assert job.func is maturity_sweep.run_maturity_sweep
