"""orders/create and orders/paid: record registry purchases.

A line item belongs to a registry when the storefront attached the
``_registry_id`` and ``_registry_item_id`` properties to it. Purchases are
keyed by (shop, order id, line item id) and that key is checked before any
counter moves, so a replayed order never double-counts.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from wishcraft.effects.context import EffectContext
from wishcraft.errors import EffectError
from wishcraft.models import Purchase, RegistryActivity
from wishcraft.security.crypto import sanitize_gift_message
from wishcraft.security.pii import mask_identifier
from wishcraft.webhooks.payloads import LineItem, OrderPayload

logger = logging.getLogger(__name__)

REGISTRY_ID_PROPERTY = "_registry_id"
REGISTRY_ITEM_ID_PROPERTY = "_registry_item_id"
GIFT_MESSAGE_PROPERTY = "_gift_message"
GIFT_PURCHASE_PROPERTY = "_gift_purchase"

# ISO 4217 minor units for currencies that do not use two decimals.
_CURRENCY_EXPONENTS: dict[str, int] = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "VND": 0, "VUV": 0, "XAF": 0,
    "XOF": 0, "XPF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}


def quantize_amount(amount: Decimal, currency: str) -> Decimal:
    """Round ``amount`` to the currency's minor unit (half up)."""
    exponent = _CURRENCY_EXPONENTS.get(currency.upper(), 2)
    return amount.quantize(Decimal(1).scaleb(-exponent), rounding=ROUND_HALF_UP)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _gift_message(order: OrderPayload, line_item: LineItem) -> tuple[bool, str]:
    explicit = line_item.prop(GIFT_MESSAGE_PROPERTY)
    is_gift = _truthy(line_item.prop(GIFT_PURCHASE_PROPERTY))
    if explicit:
        return True, sanitize_gift_message(str(explicit))
    if is_gift and order.note:
        return True, sanitize_gift_message(order.note)
    return is_gift, ""


def apply_order_created(ctx: EffectContext, order: OrderPayload) -> dict[str, Any]:
    uow = ctx.uow
    customer = order.customer
    purchaser_id = customer.id if customer else None
    purchaser_email = order.email or (customer.email if customer else None)
    purchaser_name = customer.full_name if customer else None
    currency = order.currency.upper()

    metadata: dict[str, Any] = {
        "order_id": order.id,
        "currency": currency,
        "purchaser": mask_identifier(purchaser_id),
        "line_items": len(order.line_items),
        "purchases_created": 0,
        "duplicates": 0,
        "skipped": 0,
        "currency_mismatches": 0,
    }

    for line_item in order.line_items:
        registry_id = line_item.prop(REGISTRY_ID_PROPERTY)
        item_id = line_item.prop(REGISTRY_ITEM_ID_PROPERTY)
        if not registry_id or not item_id:
            continue
        registry_id, item_id = str(registry_id), str(item_id)

        if uow.find_purchase(ctx.shop_id, order.id, line_item.id) is not None:
            metadata["duplicates"] += 1
            logger.info(
                "Purchase for order %s line %s already recorded; skipping",
                order.id, line_item.id,
            )
            continue

        # registry row first, then item, so concurrent orders lock in the same order
        registry = uow.get_registry(ctx.shop_id, registry_id, for_update=True)
        item = uow.get_item(ctx.shop_id, item_id, for_update=True)
        if registry is None or item is None or item.registry_id != registry.id:
            metadata["skipped"] += 1
            logger.warning(
                "Order %s references unknown registry item %s/%s for this shop",
                order.id, mask_identifier(registry_id), mask_identifier(item_id),
            )
            continue
        if line_item.quantity <= 0:
            metadata["skipped"] += 1
            continue

        total = quantize_amount(line_item.price * line_item.quantity, currency)
        is_gift, message = _gift_message(order, line_item)
        ciphertext = None
        if message:
            if ctx.cipher is None:
                raise EffectError(
                    "gift message present but no cipher configured",
                    topic=ctx.event.topic, shop_id=ctx.shop_id,
                )
            ciphertext = ctx.cipher.encrypt(message, purchaser_id, registry.id) or None

        purchase = Purchase(
            shop_id=ctx.shop_id,
            registry_id=registry.id,
            registry_item_id=item.id,
            order_id=order.id,
            line_item_id=line_item.id,
            quantity=line_item.quantity,
            unit_price=line_item.price,
            total_amount=total,
            currency=currency,
            purchaser_id=purchaser_id,
            purchaser_email=purchaser_email,
            purchaser_name=purchaser_name,
            is_gift=is_gift,
            gift_message=ciphertext,
            payment_status="paid" if order.financial_status == "paid" else "pending",
            created_at=ctx.now,
        )
        uow.save_purchase(purchase)

        if currency == registry.currency.upper():
            registry.purchased_value = quantize_amount(
                registry.purchased_value + total, registry.currency
            )
            registry.updated_at = ctx.now
            uow.save_registry(registry)
        else:
            metadata["currency_mismatches"] += 1
            logger.warning(
                "Order %s currency %s differs from registry currency %s; value not added",
                order.id, currency, registry.currency,
            )

        item.quantity_purchased += line_item.quantity
        uow.save_item(item)

        uow.save_activity(
            RegistryActivity(
                shop_id=ctx.shop_id,
                registry_id=registry.id,
                type="item_purchased",
                description=(
                    f"{purchaser_name or 'A guest'} purchased "
                    f"{line_item.quantity} x {item.product_title or line_item.title}"
                ),
                actor_id=purchaser_id,
                actor_email=purchaser_email,
                actor_name=purchaser_name,
                metadata={
                    "order_id": order.id,
                    "line_item_id": line_item.id,
                    "purchase_id": purchase.id,
                    "amount": str(total),
                    "currency": currency,
                    "is_gift": is_gift,
                },
                created_at=ctx.now,
            )
        )
        metadata["purchases_created"] += 1

    return metadata


def apply_order_paid(ctx: EffectContext, order: OrderPayload) -> dict[str, Any]:
    """Mark the order's registry purchases paid."""
    paid = 0
    for purchase in ctx.uow.list_purchases(ctx.shop_id, order_id=order.id):
        if purchase.payment_status == "paid":
            continue
        purchase.payment_status = "paid"
        ctx.uow.save_purchase(purchase)
        paid += 1
    return {"order_id": order.id, "purchases_paid": paid}
