"""products/update: refresh cached product fields on registry items."""

from __future__ import annotations

from typing import Any

from wishcraft.effects.context import EffectContext
from wishcraft.models import ItemStatus
from wishcraft.webhooks.payloads import ProductPayload, ProductVariant


def apply_product_update(ctx: EffectContext, product: ProductPayload) -> dict[str, Any]:
    product_active = product.status.lower() == "active"
    variants: dict[str, ProductVariant] = {v.id: v for v in product.variants}
    updated = unavailable = 0

    for item in ctx.uow.list_items(ctx.shop_id, product_id=product.id):
        if product.title:
            item.product_title = product.title

        variant = variants.get(item.variant_id) if item.variant_id else None
        if variant is not None:
            if variant.price is not None:
                item.price = variant.price
            if variant.inventory_item_id:
                item.inventory_item_id = variant.inventory_item_id
            item.inventory_tracked = variant.inventory_management is not None
            if variant.inventory_quantity is not None:
                item.inventory_quantity = variant.inventory_quantity

        in_stock = not item.inventory_tracked or (item.inventory_quantity or 0) > 0
        if not product_active or (variant is not None and not in_stock):
            item.status = ItemStatus.UNAVAILABLE
        elif variant is not None or item.variant_id is None:
            item.status = ItemStatus.ACTIVE
        ctx.uow.save_item(item)

        updated += 1
        if item.status == ItemStatus.UNAVAILABLE:
            unavailable += 1

    return {
        "product_id": product.id,
        "product_status": product.status,
        "items_updated": updated,
        "items_unavailable": unavailable,
    }
