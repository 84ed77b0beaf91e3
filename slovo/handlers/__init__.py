"""Aiogram handler registration."""
from aiogram import Dispatcher

from .arcade import arcade_router
from .common import router as common_router
from .daily import daily_router
from .purchases import purchases_router
from .words import words_router


def register_handlers(dp: Dispatcher) -> None:
    """Attach all routers to the dispatcher; the plain-text guess router goes last."""
    dp.include_router(daily_router)
    dp.include_router(arcade_router)
    dp.include_router(purchases_router)
    dp.include_router(words_router)
    dp.include_router(common_router)
