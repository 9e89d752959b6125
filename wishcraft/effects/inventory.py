"""inventory_levels/update: sync tracked registry items with stock levels."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from wishcraft.effects.context import EffectContext
from wishcraft.models import ItemStatus
from wishcraft.webhooks.payloads import InventoryLevelPayload

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def apply_inventory_update(ctx: EffectContext, payload: InventoryLevelPayload) -> dict[str, Any]:
    """Set quantity and availability on every tracked item for the inventory item.

    Last write wins by the event's own timestamp: an update older than the
    one already applied to an item leaves that item alone.
    """
    observed_at = as_utc(payload.updated_at or ctx.event.occurred_at)
    metadata: dict[str, Any] = {
        "inventory_item_id": payload.inventory_item_id,
        "available": payload.available,
        "items_updated": 0,
        "items_unavailable": 0,
        "items_stale": 0,
    }
    if payload.available is None:
        logger.info(
            "Inventory level for %s carries no quantity; nothing to sync",
            payload.inventory_item_id,
        )
        return metadata

    items = ctx.uow.list_items(ctx.shop_id, inventory_item_id=payload.inventory_item_id)
    for item in items:
        if not item.inventory_tracked:
            continue
        if item.inventory_updated_at and as_utc(item.inventory_updated_at) > observed_at:
            metadata["items_stale"] += 1
            continue

        item.inventory_quantity = payload.available
        item.status = ItemStatus.UNAVAILABLE if payload.available <= 0 else ItemStatus.ACTIVE
        item.inventory_updated_at = observed_at
        ctx.uow.save_item(item)

        metadata["items_updated"] += 1
        if item.status == ItemStatus.UNAVAILABLE:
            metadata["items_unavailable"] += 1

    if metadata["items_stale"]:
        logger.info(
            "Ignored out-of-order inventory update for %s on %d items",
            payload.inventory_item_id, metadata["items_stale"],
        )
    return metadata
