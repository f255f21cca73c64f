"""Admin-only middleware for Telegram commands."""
from typing import Callable, Dict, Any, Awaitable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message

from app.config import settings


class AdminOnlyMiddleware(BaseMiddleware):
    """Middleware to restrict payout commands to configured administrators."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        if not isinstance(event, Message):
            return await handler(event, data)

        user_id = event.from_user.id if event.from_user else None
        if user_id not in settings.admin_telegram_ids:
            await event.answer("❌ Payout commands are available to administrators only.")
            return

        return await handler(event, data)
