"""Tests for administrator decisions on payout requests."""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select, update

from app.config import settings
from core.exceptions import InvalidTransition, LedgerIntegrityError, NotFoundError
from database.models import Earning, EarningStatus, PaymentMethod, PayoutStatus
from services.payout_lifecycle import ALLOWED_TRANSITIONS, PayoutLifecycleService, can_transition
from services.payout_reservation import PayoutReservationService

PAYPAL = {"email": "referrer@example.com"}


async def _statuses(session, earning_ids) -> list:
    result = await session.execute(
        select(Earning.status).where(Earning.id.in_(earning_ids)).order_by(Earning.id)
    )
    return list(result.scalars().all())


@pytest.fixture
def reserve(db_session, clock, referrer, credit, notifier):
    """Three matured 30.00 USD earnings and a payout request over the first two."""

    async def _reserve(amount: str = "50"):
        for _ in range(3):
            await credit(referrer, 150)
        clock.advance(days=settings.eligibility_days)
        return await PayoutReservationService(db_session, clock=clock, notifier=notifier).request_payout(
            referrer, Decimal(amount), "USD", PaymentMethod.PAYPAL, PAYPAL
        )

    return _reserve


def test_transition_table():
    assert can_transition(PayoutStatus.PENDING, PayoutStatus.APPROVED)
    assert can_transition(PayoutStatus.PENDING, PayoutStatus.REJECTED)
    assert can_transition(PayoutStatus.APPROVED, PayoutStatus.PAID)
    assert can_transition(PayoutStatus.APPROVED, PayoutStatus.CANCELLED)
    assert not can_transition(PayoutStatus.PENDING, PayoutStatus.PAID)
    assert not can_transition(PayoutStatus.APPROVED, PayoutStatus.APPROVED)

    for terminal in (PayoutStatus.REJECTED, PayoutStatus.PAID, PayoutStatus.CANCELLED):
        assert not ALLOWED_TRANSITIONS[terminal]


@pytest.mark.asyncio
async def test_approve_then_pay(db_session, clock, notifier, reserve):
    """Test the happy path: pending -> approved -> paid."""
    payout = await reserve()
    service = PayoutLifecycleService(db_session, clock=clock, notifier=notifier)

    clock.advance(hours=1)
    approved = await service.process_payout_request(payout.id, PayoutStatus.APPROVED, admin_id="admin-1")
    assert approved.status == PayoutStatus.APPROVED.value
    assert approved.processed_by == "admin-1"
    assert approved.processed_at == clock.now
    assert await _statuses(db_session, approved.earning_ids) == [EarningStatus.APPROVED.value] * 2

    clock.advance(hours=1)
    paid = await service.process_payout_request(
        payout.id, PayoutStatus.PAID, admin_id="admin-2", admin_note="sent"
    )
    assert paid.status == PayoutStatus.PAID.value
    assert paid.processed_by == "admin-2"
    assert paid.admin_note == "sent"
    assert await _statuses(db_session, paid.earning_ids) == [EarningStatus.PAID.value] * 2
    assert notifier.payout_processed.await_count == 2


@pytest.mark.asyncio
async def test_reject_releases_earnings(db_session, clock, referrer, notifier, reserve):
    """Rejected earnings return to pending and can be requested again."""
    payout = await reserve()
    service = PayoutLifecycleService(db_session, clock=clock, notifier=notifier)

    rejected = await service.process_payout_request(
        payout.id, PayoutStatus.REJECTED, admin_id="admin", admin_note="wrong email"
    )

    assert rejected.status == PayoutStatus.REJECTED.value
    assert rejected.admin_note == "wrong email"
    assert await _statuses(db_session, payout.earning_ids) == [EarningStatus.PENDING.value] * 2

    again = await PayoutReservationService(db_session, clock=clock, notifier=notifier).request_payout(
        referrer, Decimal("90"), "USD", PaymentMethod.PAYPAL, PAYPAL
    )
    assert len(again.earning_ids) == 3


@pytest.mark.asyncio
async def test_cancel_approved_releases_earnings(db_session, clock, notifier, reserve):
    payout = await reserve()
    service = PayoutLifecycleService(db_session, clock=clock, notifier=notifier)

    await service.process_payout_request(payout.id, PayoutStatus.APPROVED, admin_id="admin")
    cancelled = await service.process_payout_request(payout.id, PayoutStatus.CANCELLED, admin_id="admin")

    assert cancelled.status == PayoutStatus.CANCELLED.value
    assert await _statuses(db_session, payout.earning_ids) == [EarningStatus.PENDING.value] * 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path, target",
    [
        ([], PayoutStatus.PAID),
        ([], PayoutStatus.CANCELLED),
        ([PayoutStatus.APPROVED], PayoutStatus.APPROVED),
        ([PayoutStatus.APPROVED], PayoutStatus.REJECTED),
        ([PayoutStatus.REJECTED], PayoutStatus.APPROVED),
        ([PayoutStatus.APPROVED, PayoutStatus.PAID], PayoutStatus.CANCELLED),
    ],
)
async def test_invalid_transitions(db_session, clock, notifier, reserve, path, target):
    payout = await reserve()
    service = PayoutLifecycleService(db_session, clock=clock, notifier=notifier)
    for status in path:
        await service.process_payout_request(payout.id, status, admin_id="admin")
    before = await _statuses(db_session, payout.earning_ids)

    with pytest.raises(InvalidTransition) as exc_info:
        await service.process_payout_request(payout.id, target, admin_id="admin")

    assert exc_info.value.target_status == target.value
    assert await _statuses(db_session, payout.earning_ids) == before


@pytest.mark.asyncio
async def test_second_administrator_loses(session_maker, db_session, clock, notifier, reserve):
    """Only one of two concurrent decisions on the same request applies."""
    payout = await reserve()

    async with session_maker() as session_a, session_maker() as session_b:
        service_a = PayoutLifecycleService(session_a, clock=clock, notifier=notifier)
        service_b = PayoutLifecycleService(session_b, clock=clock, notifier=notifier)

        # Both administrators observed the request while it was pending
        await service_a.get_payout_request(payout.id)
        seen_by_b = await service_b.get_payout_request(payout.id)
        await session_b.commit()

        await service_a.process_payout_request(payout.id, PayoutStatus.REJECTED, admin_id="admin-a")

        service_b.payout_repo.get_by_id = AsyncMock(return_value=seen_by_b)
        with pytest.raises(InvalidTransition) as exc_info:
            await service_b.process_payout_request(payout.id, PayoutStatus.APPROVED, admin_id="admin-b")

    assert exc_info.value.current_status == PayoutStatus.REJECTED.value
    assert await _statuses(db_session, payout.earning_ids) == [EarningStatus.PENDING.value] * 2


@pytest.mark.asyncio
async def test_integrity_failure_rolls_back(db_session, clock, notifier, reserve):
    """A reserved earning in an unexpected state aborts the whole decision."""
    payout = await reserve()
    payout_id = payout.id
    earning_ids = list(payout.earning_ids)
    # Simulate an out-of-band write to one of the reserved earnings
    await db_session.execute(
        update(Earning).where(Earning.id == earning_ids[0]).values(status=EarningStatus.CANCELLED.value)
    )
    await db_session.commit()
    service = PayoutLifecycleService(db_session, clock=clock, notifier=notifier)

    with pytest.raises(LedgerIntegrityError):
        await service.process_payout_request(payout_id, PayoutStatus.REJECTED, admin_id="admin")

    reloaded = await service.get_payout_request(payout_id)
    await db_session.refresh(reloaded)
    assert reloaded.status == PayoutStatus.PENDING.value
    assert reloaded.processed_by is None
    assert await _statuses(db_session, earning_ids) == [
        EarningStatus.CANCELLED.value,
        EarningStatus.APPROVED.value,
    ]
    notifier.payout_processed.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_payout(db_session, clock, notifier):
    service = PayoutLifecycleService(db_session, clock=clock, notifier=notifier)

    with pytest.raises(NotFoundError):
        await service.process_payout_request(999, PayoutStatus.APPROVED, admin_id="admin")
