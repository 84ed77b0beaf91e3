"""Payment confirmations. Invoices are created elsewhere."""

import logging

from aiogram import F, Router
from aiogram.types import Message, PreCheckoutQuery

from slovo.core.errors import GameError, ValidationError
from slovo.services.purchases import PurchaseService, parse_invoice_payload

from .render import PRODUCT_TITLES

logger = logging.getLogger(__name__)

purchases_router = Router()


@purchases_router.pre_checkout_query()
async def on_pre_checkout(query: PreCheckoutQuery):
    try:
        parse_invoice_payload(query.invoice_payload)
    except ValidationError as e:
        logger.warning(f"Rejected checkout {query.id}: {e.message}")
        await query.answer(ok=False, error_message=e.message)
        return
    await query.answer(ok=True)


@purchases_router.message(F.successful_payment)
async def on_successful_payment(message: Message, purchases: PurchaseService, profile_id: int):
    payment = message.successful_payment
    try:
        product_id, quantity = parse_invoice_payload(payment.invoice_payload)
        receipt = await purchases.complete_purchase(
            payment.telegram_payment_charge_id,
            profile_id,
            product_id,
            quantity,
        )
    except GameError as e:
        logger.error(f"Payment {payment.telegram_payment_charge_id} not applied: {e.message}")
        await message.answer(e.message)
        return

    if receipt.granted:
        title = PRODUCT_TITLES.get(receipt.product_id, receipt.product_id)
        await message.answer(f"✅ Покупка зачислена: {title} +{receipt.quantity} (всего {receipt.total})")
