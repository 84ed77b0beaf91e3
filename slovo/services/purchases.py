"""Turn payment confirmations into entitlement grants, exactly once per charge."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slovo.core.errors import NotFoundError, RaceLostError, ValidationError
from slovo.core.ledger import PRODUCT_IDS, EntitlementLedger
from slovo.database import (
    AsyncSessionLocal,
    Purchase,
    create_purchase,
    get_profile_by_id,
    get_purchase_by_charge_id,
    list_profile_purchases,
)

logger = logging.getLogger(__name__)

MAX_PURCHASE_QUANTITY = 100


@dataclass
class PurchaseReceipt:
    charge_id: str
    product_id: str
    quantity: int
    granted: bool
    total: int


@dataclass
class PurchaseRecord:
    charge_id: str
    product_id: str
    quantity: int
    created_at: str

    @classmethod
    def from_row(cls, row: Purchase) -> "PurchaseRecord":
        return cls(
            charge_id=row.charge_id,
            product_id=row.product_id,
            quantity=row.quantity,
            created_at=row.created_at,
        )


def parse_invoice_payload(payload: str) -> Tuple[str, int]:
    """``"<product_id>[:<qty>]"`` -> (product_id, quantity)."""
    product_id, sep, raw_quantity = (payload or "").strip().partition(":")
    if product_id not in PRODUCT_IDS:
        raise ValidationError(f"Неизвестный товар: {product_id or '-'}")

    if not sep:
        return product_id, 1
    try:
        quantity = int(raw_quantity)
    except ValueError:
        raise ValidationError("Неверное количество товара.")
    if not 0 < quantity <= MAX_PURCHASE_QUANTITY:
        raise ValidationError("Неверное количество товара.")
    return product_id, quantity


class PurchaseService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        ledger: Optional[EntitlementLedger] = None,
    ) -> None:
        self._session_factory = session_factory or AsyncSessionLocal
        self._ledger = ledger or EntitlementLedger(self._session_factory)

    async def complete_purchase(
        self,
        charge_id: str,
        profile_id: int,
        product_id: str,
        quantity: int = 1,
    ) -> PurchaseReceipt:
        """Record the charge and grant the units in one transaction.

        A charge id that was already recorded is acknowledged without granting
        again, so redelivered payment events are harmless.
        """
        if not charge_id:
            raise ValidationError("Пустой идентификатор платежа.")
        if product_id not in PRODUCT_IDS:
            raise ValidationError(f"Неизвестный товар: {product_id}")
        if quantity <= 0:
            raise ValidationError("Неверное количество товара.")

        for attempt in range(2):
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        ledger = self._ledger.bind(db)
                        existing = await get_purchase_by_charge_id(db, charge_id)
                        if existing is not None:
                            logger.info(f"Charge {charge_id} already processed, skipping grant")
                            return PurchaseReceipt(
                                charge_id=charge_id,
                                product_id=existing.product_id,
                                quantity=existing.quantity,
                                granted=False,
                                total=await ledger.available(existing.profile_id, existing.product_id),
                            )

                        if await get_profile_by_id(db, profile_id) is None:
                            raise NotFoundError("Профиль не найден.")

                        await create_purchase(db, charge_id, profile_id, product_id, quantity)
                        total = await ledger.grant(profile_id, product_id, quantity)
            except RaceLostError:
                if attempt:
                    raise
                logger.info(f"Charge {charge_id} raced another delivery, retrying")
                continue

            logger.info(f"Charge {charge_id}: granted {quantity} x {product_id} to profile {profile_id}")
            return PurchaseReceipt(
                charge_id=charge_id,
                product_id=product_id,
                quantity=quantity,
                granted=True,
                total=total,
            )

        raise RaceLostError()

    async def list_purchases(self, profile_id: int, limit: Optional[int] = None) -> List[PurchaseRecord]:
        """Purchases of the profile, newest first."""
        async with self._session_factory() as db:
            rows = await list_profile_purchases(db, profile_id, limit=limit)
        return [PurchaseRecord.from_row(row) for row in rows]


__all__ = ["MAX_PURCHASE_QUANTITY", "PurchaseReceipt", "PurchaseRecord", "PurchaseService", "parse_invoice_payload"]
