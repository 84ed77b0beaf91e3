"""Consumable entitlement accounting per (profile, product)."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slovo.database import (
    AsyncSessionLocal,
    decrement_entitlement,
    get_entitlement_quantity,
    increment_entitlement,
)

from .errors import ExhaustedError, RaceLostError

logger = logging.getLogger(__name__)


class Product(str, Enum):
    """Purchasable consumables."""

    ARCADE_HINT = "arcade_hint"
    ARCADE_EXTRA_TRY = "arcade_extra_try"
    ARCADE_NEW_GAME = "arcade_new_game"


PRODUCT_IDS = frozenset(product.value for product in Product)

_EXHAUSTED_MESSAGES = {
    Product.ARCADE_HINT.value: "Подсказки закончились. Купите ещё в магазине.",
    Product.ARCADE_EXTRA_TRY.value: "Нет дополнительных попыток. Купите их в магазине.",
    Product.ARCADE_NEW_GAME.value: "Нет доступных новых игр. Купите их в магазине.",
}


def _product_id(product: str | Product) -> str:
    product_id = product.value if isinstance(product, Product) else str(product)
    if product_id not in PRODUCT_IDS:
        raise ValueError(f"Unknown product: {product_id}")
    return product_id


class EntitlementLedger:
    """Counts, grants and consumes units of purchasable products.

    Consumption is a single conditional UPDATE (``quantity > 0``), so two
    concurrent callers racing for the last unit get exactly one success.
    A ledger bound to an open session (see :meth:`bind`) takes part in the
    caller's transaction instead of committing on its own.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        db: Optional[AsyncSession] = None,
    ) -> None:
        self._session_factory = session_factory or AsyncSessionLocal
        self._db = db

    def bind(self, db: AsyncSession) -> "EntitlementLedger":
        return EntitlementLedger(self._session_factory, db=db)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        if self._db is not None:
            yield self._db
            return

        async with self._session_factory() as db:
            async with db.begin():
                yield db

    async def available(self, profile_id: int, product: str | Product) -> int:
        product_id = _product_id(product)
        async with self._transaction() as db:
            return await get_entitlement_quantity(db, profile_id, product_id)

    async def balances(self, profile_id: int) -> Dict[str, int]:
        async with self._transaction() as db:
            return {
                product.value: await get_entitlement_quantity(db, profile_id, product.value)
                for product in Product
            }

    async def consume(self, profile_id: int, product: str | Product) -> int:
        """Take one unit; returns the remaining count or raises ExhaustedError."""
        product_id = _product_id(product)
        async with self._transaction() as db:
            if not await decrement_entitlement(db, profile_id, product_id):
                logger.info(f"Profile {profile_id} has no {product_id} left")
                raise ExhaustedError(product_id, _EXHAUSTED_MESSAGES.get(product_id))
            remaining = await get_entitlement_quantity(db, profile_id, product_id)

        logger.info(f"Profile {profile_id} consumed {product_id}, {remaining} left")
        return remaining

    async def grant(self, profile_id: int, product: str | Product, quantity: int = 1) -> int:
        """Add ``quantity`` units; returns the new count."""
        product_id = _product_id(product)
        if quantity <= 0:
            raise ValueError("Grant quantity must be positive")

        if self._db is not None:
            await increment_entitlement(self._db, profile_id, product_id, quantity)
            return await get_entitlement_quantity(self._db, profile_id, product_id)

        for attempt in range(2):
            try:
                async with self._transaction() as db:
                    await increment_entitlement(db, profile_id, product_id, quantity)
                    total = await get_entitlement_quantity(db, profile_id, product_id)
                break
            except RaceLostError:
                # first grant raced another first grant; the row exists now
                if attempt:
                    raise

        logger.info(f"Granted {quantity} x {product_id} to profile {profile_id}, total {total}")
        return total


__all__ = ["EntitlementLedger", "Product", "PRODUCT_IDS"]
