"""Service entrypoint: HTTP API (aiohttp) + maturity sweep + optional Telegram admin bot."""
import asyncio
import logging
from typing import Callable, Optional

from aiohttp import web
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.handlers.api import CLOCK, NOTIFIER, SESSION_MAKER, setup_routes
from app.logging_config import setup_logging
from app.middlewares import auth_middleware, error_middleware
from database import async_session_maker, close_db, init_db
from database.base import utcnow
from services.maturity_sweep import start_sweep_scheduler, stop_sweep_scheduler
from services.notifications import ReferralNotifier, configure_notifier, get_notifier

logger = logging.getLogger(__name__)


def build_app(
    session_maker: Optional[async_sessionmaker] = None,
    clock: Optional[Callable] = None,
    notifier: Optional[ReferralNotifier] = None,
) -> web.Application:
    """
    Create the aiohttp application.

    Args:
        session_maker: Session factory (defaults to the configured database)
        clock: Source of "now" for ledger operations (naive UTC)
        notifier: Telegram notifier (defaults to the process-wide one)
    """
    app = web.Application(middlewares=[error_middleware, auth_middleware])
    app[SESSION_MAKER] = session_maker or async_session_maker
    app[CLOCK] = clock or utcnow
    app[NOTIFIER] = notifier or get_notifier()
    setup_routes(app)
    return app


def build_bot() -> tuple[Bot, Dispatcher]:
    """Telegram bot with the admin payout commands."""
    from app.handlers.admin_payouts import router as admin_payouts_router

    bot = Bot(
        token=settings.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )
    dp = Dispatcher()
    dp.include_router(admin_payouts_router)
    return bot, dp


async def main():
    setup_logging()
    logger.info(f"Starting referral ledger ({settings.environment})")
    await init_db()

    bot = None
    dp = None
    if settings.bot_token:
        bot, dp = build_bot()
        configure_notifier(ReferralNotifier(bot, admin_chat_ids=settings.admin_telegram_ids))
    else:
        logger.info("BOT_TOKEN not set, Telegram admin commands and notifications disabled")

    app = build_app()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.api_host, settings.api_port)
    await site.start()
    logger.info(f"Referral ledger API listening on {settings.api_host}:{settings.api_port}")

    if settings.sweep_enabled:
        start_sweep_scheduler()

    try:
        if dp is not None:
            await dp.start_polling(bot)
        else:
            await asyncio.Event().wait()
    finally:
        stop_sweep_scheduler()
        await runner.cleanup()
        if bot is not None:
            await bot.session.close()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
