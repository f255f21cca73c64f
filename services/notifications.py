"""Telegram notifications for payout events (best effort)."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from aiogram import Bot

from core.money import quantize_money
from database.models import PayoutRequest, PayoutStatus

logger = logging.getLogger(__name__)


_STATUS_TEXT = {
    PayoutStatus.APPROVED.value: "✅ approved",
    PayoutStatus.REJECTED.value: "❌ rejected",
    PayoutStatus.PAID.value: "💸 paid",
    PayoutStatus.CANCELLED.value: "🚫 cancelled",
}


class ReferralNotifier:
    """
    Sends ledger events to administrators and referrers over Telegram.

    Delivery failures are logged and never propagate: by the time a
    notification is sent the ledger change is already committed.
    Referrers only receive messages when they have a chat mapping.
    """

    def __init__(
        self,
        bot: Optional[Bot] = None,
        admin_chat_ids: Iterable[int] = (),
        referrer_chats: Optional[Mapping[str, int]] = None,
    ):
        self.bot = bot
        self.admin_chat_ids = list(admin_chat_ids)
        self.referrer_chats = dict(referrer_chats or {})

    async def _send(self, chat_id: int, text: str) -> bool:
        if self.bot is None:
            return False
        try:
            await self.bot.send_message(chat_id=chat_id, text=text, parse_mode="HTML")
            return True
        except Exception as e:
            logger.warning(f"Failed to send notification to {chat_id}: {e}")
            return False

    async def _send_to_admins(self, text: str) -> int:
        sent = 0
        for chat_id in self.admin_chat_ids:
            if await self._send(chat_id, text):
                sent += 1
        return sent

    async def _send_to_referrer(self, referrer_id: str, text: str) -> bool:
        chat_id = self.referrer_chats.get(referrer_id)
        if chat_id is None:
            logger.debug(f"No chat mapping for referrer {referrer_id}, notification skipped")
            return False
        return await self._send(chat_id, text)

    async def payout_requested(self, payout: PayoutRequest) -> int:
        """Tell administrators a new payout request is waiting."""
        text = (
            f"💰 <b>New payout request #{payout.id}</b>\n\n"
            f"Referrer: <code>{payout.referrer_id}</code>\n"
            f"Amount: <b>{quantize_money(payout.requested_amount, payout.currency)} "
            f"{payout.currency}</b>\n"
            f"Method: {payout.payment_method}\n\n"
            f"/payout_approve {payout.id}  /payout_reject {payout.id}"
        )
        return await self._send_to_admins(text)

    async def payout_processed(self, payout: PayoutRequest) -> bool:
        """Tell the referrer their payout request changed status."""
        status_text = _STATUS_TEXT.get(payout.status, payout.status)
        text = (
            f"Your payout request #{payout.id} for "
            f"<b>{quantize_money(payout.requested_amount, payout.currency)} {payout.currency}</b> "
            f"was {status_text}."
        )
        if payout.admin_note:
            text += f"\n\n📝 {payout.admin_note}"
        return await self._send_to_referrer(payout.referrer_id, text)

    async def earnings_matured(
        self,
        referrer_id: str,
        count: int,
        amount: Decimal,
        currency: str
    ) -> bool:
        """Tell the referrer that earnings became eligible for payout."""
        text = (
            f"🎉 {count} referral earning(s) totalling "
            f"<b>{quantize_money(amount, currency)} {currency}</b> "
            f"are now available for payout."
        )
        return await self._send_to_referrer(referrer_id, text)


_default_notifier = ReferralNotifier()


def get_notifier() -> ReferralNotifier:
    """Process-wide notifier (a no-op until ``configure_notifier`` is called)."""
    return _default_notifier


def configure_notifier(notifier: ReferralNotifier) -> None:
    global _default_notifier
    _default_notifier = notifier
