"""Tests for referral links, clicks and signup attribution."""
import re
from datetime import datetime

import pytest

from core.exceptions import NotFoundError, ValidationError
from database.repositories import ReferralLinkRepository
from services.referral_links import (
    ReferralLinkService,
    generate_fallback_code,
    generate_referral_code,
    to_base36,
)


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"

    with pytest.raises(ValueError):
        to_base36(-1)


def test_generate_referral_code_format():
    """Code is slug, base36 timestamp and a random suffix."""
    now = datetime(2026, 1, 5, 12, 0, 0)
    code = generate_referral_code("Jane.Doe_42", now)

    slug, stamp, suffix = code.split("-")
    assert slug == "janedoe4"
    assert int(stamp, 36) == int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    assert re.fullmatch(r"[0-9a-z]{6}", suffix)


def test_generate_referral_code_empty_slug():
    code = generate_referral_code("@@@", datetime(2026, 1, 5))
    assert code.startswith("ref-")


def test_generate_fallback_code():
    code = generate_fallback_code()
    assert re.fullmatch(r"ref-[0-9a-z]{16}", code)
    assert generate_fallback_code() != code


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(db_session, clock):
    """Test that a referrer gets exactly one link."""
    service = ReferralLinkService(db_session, clock=clock)

    first = await service.get_or_create("alice")
    second = await service.get_or_create("alice")

    assert first.id == second.id
    assert first.code == second.code
    assert first.clicks == 0
    assert first.conversions == 0
    assert first.code.startswith("alice-")


@pytest.mark.asyncio
async def test_get_link_not_found(db_session, clock):
    service = ReferralLinkService(db_session, clock=clock)

    with pytest.raises(NotFoundError):
        await service.get_link("nobody")


@pytest.mark.asyncio
async def test_code_taken_by_another_referrer_falls_back(db_session, clock, monkeypatch):
    """A colliding code is replaced by a random one."""
    service = ReferralLinkService(db_session, clock=clock)
    taken = await service.get_or_create("alice")

    monkeypatch.setattr(
        "services.referral_links.generate_referral_code",
        lambda referrer_id, now: taken.code
    )
    link = await service.get_or_create("bob")

    assert link.referrer_id == "bob"
    assert link.code != taken.code
    assert link.code.startswith("ref-")


@pytest.mark.asyncio
async def test_track_click(db_session, clock):
    """Test click counting."""
    service = ReferralLinkService(db_session, clock=clock)
    link = await service.get_or_create("alice")

    await service.track_click(link.code)
    clock.advance(minutes=5)
    tracked = await service.track_click(link.code.upper())

    assert tracked.clicks == 2
    assert tracked.last_used_at == clock.now


@pytest.mark.asyncio
async def test_track_click_unknown_code(db_session, clock):
    service = ReferralLinkService(db_session, clock=clock)

    with pytest.raises(NotFoundError):
        await service.track_click("does-not-exist")


@pytest.mark.asyncio
async def test_record_signup(db_session, clock):
    """Test attributing a new user to a referrer."""
    service = ReferralLinkService(db_session, clock=clock)
    link = await service.get_or_create("alice")

    referrer_id = await service.record_signup("carol", link.code)

    assert referrer_id == "alice"
    assert await service.get_referrer_of("carol") == "alice"

    refreshed = await ReferralLinkRepository(db_session).refresh(link)
    assert refreshed.conversions == 1


@pytest.mark.asyncio
async def test_first_signup_wins(db_session, clock):
    """A second attribution attempt keeps the original referrer."""
    service = ReferralLinkService(db_session, clock=clock)
    alice = await service.get_or_create("alice")
    bob = await service.get_or_create("bob")

    await service.record_signup("carol", alice.code)
    referrer_id = await service.record_signup("carol", bob.code)

    assert referrer_id == "alice"
    assert await service.get_referrer_of("carol") == "alice"

    repo = ReferralLinkRepository(db_session)
    assert (await repo.refresh(alice)).conversions == 1
    assert (await repo.refresh(bob)).conversions == 0


@pytest.mark.asyncio
async def test_self_referral_rejected(db_session, clock):
    service = ReferralLinkService(db_session, clock=clock)
    link = await service.get_or_create("alice")

    with pytest.raises(ValidationError) as exc_info:
        await service.record_signup("alice", link.code)

    assert exc_info.value.field == "referralCode"
    assert await service.get_referrer_of("alice") is None


@pytest.mark.asyncio
async def test_signup_unknown_code(db_session, clock):
    service = ReferralLinkService(db_session, clock=clock)

    with pytest.raises(NotFoundError):
        await service.record_signup("carol", "nope")


@pytest.mark.asyncio
async def test_get_referrer_of_unreferred_user(db_session, clock):
    service = ReferralLinkService(db_session, clock=clock)
    assert await service.get_referrer_of("dave") is None
