import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from shopbot.bot import create_bot, run_polling
from shopbot.config import get_settings
from shopbot.database import SessionLocal, dispose_db, init_db
from shopbot.logging_setup import configure_logging
from shopbot.notifications import LoggingTransport
from shopbot.routes import router
from shopbot.services import Services, build_services

logger = logging.getLogger(__name__)


def log_polling_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Bot polling stopped with an error", exc_info=error)
    else:
        logger.warning("Bot polling stopped")


async def stop_polling(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        # Already reported by log_polling_exit
        logger.debug("Polling task had failed before shutdown", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is not None:
        # Wired by the caller (tests)
        yield
        return

    settings = get_settings()
    configure_logging("shopbot", settings.log_level)
    settings.require_webhook_secret()
    await init_db()

    bot = create_bot(settings) if settings.bot_token else None
    if bot is None:
        logger.warning("BOT_TOKEN is not set, notifications will only be logged")
    services = build_services(settings, SessionLocal, bot or LoggingTransport())
    app.state.services = services

    polling = None
    if bot:
        polling = asyncio.create_task(run_polling(bot, services.checkout))
        polling.add_done_callback(log_polling_exit)
    try:
        yield
    finally:
        if polling:
            await stop_polling(polling)
        if bot:
            await bot.session.close()
        await dispose_db()


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(title="Shop Bot Payments", lifespan=lifespan)
    app.state.services = services
    app.include_router(router)
    return app


app = create_app()
