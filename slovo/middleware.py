import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from aiogram import BaseMiddleware
from aiogram.types import Message, TelegramObject
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.rate_limit import RateLimiter, build_rate_limiter
from .database import AsyncSessionLocal, get_or_create_profile

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseMiddleware):
    """Middleware for logging incoming updates."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        start_time = time.time()

        if isinstance(event, Message) and event.from_user:
            user = event.from_user
            text = event.text or ""
            logger.info(
                f"Received message from user {user.id} (@{user.username}): "
                f"'{text[:50]}{'...' if len(text) > 50 else ''}'"
            )

        try:
            result = await handler(event, data)
            processing_time = time.time() - start_time
            logger.debug(f"Update processed successfully in {processing_time:.3f}s")
            return result
        except Exception as e:
            processing_time = time.time() - start_time
            logger.error(f"Error processing update: {e} (took {processing_time:.3f}s)")
            raise


class ProfileMiddleware(BaseMiddleware):
    """Resolve (or register) the player profile and expose ``profile_id`` to handlers."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        if isinstance(event, Message) and event.from_user and not event.from_user.is_bot:
            user = event.from_user
            async with self.session_factory() as session:
                profile = await get_or_create_profile(
                    session,
                    telegram_id=user.id,
                    username=user.username,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    language_code=user.language_code,
                )
                data["profile"] = profile
                data["profile_id"] = profile.id

            logger.debug(f"Processing update for profile {profile.id} (telegram {user.id})")

        return await handler(event, data)


class RateLimitMiddleware(BaseMiddleware):
    """Message-level admission through the shared RateLimiter interface."""

    operation = "message"

    def __init__(self, limiter: Optional[RateLimiter] = None):
        self.limiter = limiter or build_rate_limiter()

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        if not isinstance(event, Message) or not event.from_user:
            return await handler(event, data)

        # payment confirmations must never be dropped
        if event.successful_payment is not None:
            return await handler(event, data)

        if not await self.limiter.allow(self.operation, str(event.from_user.id)):
            await event.answer("⚠️ Слишком много запросов. Подождите немного и попробуйте снова.")
            return None

        return await handler(event, data)


def register_middleware(dp, rate_limiter: Optional[RateLimiter] = None,
                        session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
    """Register all middleware with the dispatcher."""
    # first added wraps the rest
    dp.message.middleware(LoggingMiddleware())
    dp.message.middleware(RateLimitMiddleware(rate_limiter))
    dp.message.middleware(ProfileMiddleware(session_factory))

    logger.info("All middleware registered successfully")
