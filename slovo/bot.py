import asyncio
import hmac
import logging
from typing import Optional

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application
from aiohttp import web

from .cache import close_redis
from .config import Config
from .core.dictionary import Dictionary, load_word_list
from .core.rate_limit import build_rate_limiter
from .core.rotation import RotationScheduler
from .database import init_db
from .handlers import register_handlers
from .middleware import register_middleware
from .services.gameplay import GameplayService
from .services.purchases import PurchaseService
from .services.saved_words import SavedWordService


# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CRON_SECRET_HEADER = "X-Cron-Secret"


async def on_startup(app: web.Application):
    """Application startup handler."""
    await init_db()
    logger.info("Database initialized")


async def on_shutdown(app: web.Application):
    """Application shutdown handler."""
    logger.info("Application shutdown")
    await close_redis()


async def nightly_rollover(request: web.Request) -> web.Response:
    """Run the nightly rollover; callers must present the shared cron secret."""
    expected = Config.CRON_SECRET
    provided = request.headers.get(CRON_SECRET_HEADER, "")
    if not expected or not hmac.compare_digest(provided, expected):
        logger.warning(f"Rejected rollover trigger from {request.remote}")
        return web.json_response({"ok": False, "error": "unauthorized"}, status=401)

    scheduler: RotationScheduler = request.app["scheduler"]
    report = await scheduler.run()
    return web.json_response(report.as_dict(), status=200 if report.ok else 500)


def build_web_app(scheduler: RotationScheduler) -> web.Application:
    app = web.Application()
    app["scheduler"] = scheduler
    app.router.add_get("/cron/nightly", nightly_rollover)
    return app


async def create_app(dictionary: Optional[Dictionary] = None) -> web.Application:
    """Create and configure aiohttp application."""
    Config.validate()

    dictionary = dictionary or load_word_list(Config.DICTIONARY_PATH, treat_yo_as_ye=Config.TREAT_YO_AS_YE)
    rate_limiter = build_rate_limiter()

    # Initialize bot and dispatcher
    bot = Bot(
        token=Config.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )

    dp = Dispatcher()
    dp["gameplay"] = GameplayService(dictionary, rate_limiter=rate_limiter)
    dp["purchases"] = PurchaseService()
    dp["saved_words"] = SavedWordService()

    # Register middleware and handlers
    register_middleware(dp, rate_limiter=rate_limiter)
    register_handlers(dp)

    app = build_web_app(RotationScheduler(dictionary))
    app["bot"] = bot
    app["dispatcher"] = dp

    # Add startup and shutdown handlers
    app.on_startup.append(on_startup)
    app.on_shutdown.append(on_shutdown)

    # Setup webhook handler
    webhook_path = f"/webhook/{Config.BOT_TOKEN}"
    webhook_handler = SimpleRequestHandler(
        dispatcher=dp,
        bot=bot,
        secret_token=Config.WEBHOOK_SECRET
    )
    webhook_handler.register(app, path=webhook_path)

    # Setup application
    setup_application(app, dp, bot=bot)

    return app


async def main():
    """Main function to run the bot."""
    try:
        app = await create_app()

        runner = web.AppRunner(app)
        await runner.setup()

        site = web.TCPSite(
            runner,
            host=Config.WEBHOOK_HOST,
            port=Config.WEBHOOK_PORT
        )

        await site.start()

        webhook_url = f"https://{Config.WEBHOOK_DOMAIN}/webhook/{Config.BOT_TOKEN}"
        await app["bot"].set_webhook(
            url=webhook_url,
            secret_token=Config.WEBHOOK_SECRET,
            drop_pending_updates=True
        )

        logger.info(f"Bot started on {Config.WEBHOOK_HOST}:{Config.WEBHOOK_PORT}")
        logger.info(f"Webhook URL: https://{Config.WEBHOOK_DOMAIN}/webhook/<token>")

        try:
            await asyncio.Future()  # Run forever
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            await app["bot"].delete_webhook()
            await runner.cleanup()

    except Exception as e:
        logger.error(f"Failed to start bot: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
