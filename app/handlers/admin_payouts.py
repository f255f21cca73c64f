"""Telegram admin commands for the payout queue."""
import logging
from typing import Optional

from aiogram import Router
from aiogram.filters import Command
from aiogram.filters.command import CommandObject
from aiogram.types import Message

from app.middlewares.admin import AdminOnlyMiddleware
from core.exceptions import ReferralLedgerError
from core.money import quantize_money
from database.base import async_session_maker
from database.models import PayoutStatus
from services.payout_lifecycle import PayoutLifecycleService
from services.payout_reservation import PayoutReservationService
from services.referral_overview import ReferralOverviewService

logger = logging.getLogger(__name__)

router = Router(name="admin_payouts")
router.message.middleware(AdminOnlyMiddleware())

QUEUE_PAGE_SIZE = 10


def parse_payout_args(command: CommandObject) -> tuple[Optional[int], Optional[str]]:
    """``/payout_reject 12 reason text`` -> (12, "reason text")."""
    if not command.args:
        return None, None
    parts = command.args.split(maxsplit=1)
    try:
        payout_id = int(parts[0])
    except ValueError:
        return None, None
    note = parts[1].strip() if len(parts) > 1 else None
    return payout_id, note or None


def format_payout_line(payout: dict) -> str:
    amount = quantize_money(payout["requestedAmount"], payout["currency"])
    return (
        f"#{payout['id']} <code>{payout['referrerId']}</code>: "
        f"<b>{amount} {payout['currency']}</b> via {payout['paymentMethod']} "
        f"[{payout['status']}]"
    )


@router.message(Command("payouts"))
async def cmd_payouts(message: Message, command: CommandObject):
    """List payout requests, pending by default."""
    status_arg = (command.args or PayoutStatus.PENDING.value).strip().lower()
    try:
        status = PayoutStatus(status_arg)
    except ValueError:
        allowed = ", ".join(s.value for s in PayoutStatus)
        await message.answer(f"❌ Unknown status. Use one of: {allowed}")
        return

    async with async_session_maker() as session:
        result = await PayoutReservationService(session).list_all_payout_requests(
            status=status, page=1, limit=QUEUE_PAGE_SIZE
        )

    items = result["items"]
    if not items:
        await message.answer(f"✅ No {status.value} payout requests.")
        return

    lines = [format_payout_line(p) for p in items]
    total = result["pagination"]["total"]
    text = f"💰 <b>Payout requests: {status.value}</b> ({total})\n\n" + "\n".join(lines)
    if status == PayoutStatus.PENDING:
        text += "\n\n/payout_approve &lt;id&gt;  /payout_reject &lt;id&gt; [note]"
    elif status == PayoutStatus.APPROVED:
        text += "\n\n/payout_paid &lt;id&gt;  /payout_cancel &lt;id&gt; [note]"
    await message.answer(text, parse_mode="HTML")


async def _process(message: Message, command: CommandObject, target: PayoutStatus):
    payout_id, note = parse_payout_args(command)
    if payout_id is None:
        await message.answer(
            f"❌ Usage: <code>/{command.command} &lt;payout_id&gt; [note]</code>",
            parse_mode="HTML"
        )
        return

    admin_id = f"tg:{message.from_user.id}"
    try:
        async with async_session_maker() as session:
            payout = await PayoutLifecycleService(session).process_payout_request(
                payout_id, target, admin_id=admin_id, admin_note=note
            )
    except ReferralLedgerError as e:
        logger.info(f"Telegram payout command failed for {payout_id}: {e.message}")
        await message.answer(f"❌ {e.message}")
        return

    await message.answer(
        f"✅ Payout request #{payout.id} is now <b>{payout.status}</b>.",
        parse_mode="HTML"
    )


@router.message(Command("payout_approve"))
async def cmd_payout_approve(message: Message, command: CommandObject):
    await _process(message, command, PayoutStatus.APPROVED)


@router.message(Command("payout_reject"))
async def cmd_payout_reject(message: Message, command: CommandObject):
    await _process(message, command, PayoutStatus.REJECTED)


@router.message(Command("payout_paid"))
async def cmd_payout_paid(message: Message, command: CommandObject):
    await _process(message, command, PayoutStatus.PAID)


@router.message(Command("payout_cancel"))
async def cmd_payout_cancel(message: Message, command: CommandObject):
    await _process(message, command, PayoutStatus.CANCELLED)


@router.message(Command("referral_overview"))
async def cmd_referral_overview(message: Message):
    """Platform-wide referral figures."""
    async with async_session_maker() as session:
        overview = await ReferralOverviewService(session).get_overview()

    month = overview["thisMonthStats"]
    await message.answer(
        "📊 <b>Referral overview</b>\n\n"
        f"Referrers: {overview['totalReferrers']} (earning: {overview['activeReferrers']})\n"
        f"Total earnings: {overview['totalEarnings']:.2f}\n"
        f"Pending payouts: {overview['pendingPayouts']:.2f}\n"
        f"Approved payouts: {overview['approvedPayouts']:.2f}\n\n"
        f"<b>This month</b>\n"
        f"New referrers: {month['newReferrers']}\n"
        f"Conversions: {month['conversions']}\n"
        f"Earnings: {month['totalEarnings']:.2f}",
        parse_mode="HTML"
    )
