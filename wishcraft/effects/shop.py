"""app/uninstalled: wind the shop down without deleting anything.

Data is kept until Shopify sends shop/redact (48 hours after uninstall).
"""

from __future__ import annotations

from typing import Any

from wishcraft.effects.context import EffectContext
from wishcraft.jobs.queue import cancel_shop_jobs
from wishcraft.models import RegistryStatus
from wishcraft.webhooks.payloads import AppUninstalledPayload


def apply_app_uninstalled(ctx: EffectContext, payload: AppUninstalledPayload) -> dict[str, Any]:
    uow = ctx.uow
    archived = 0
    for registry in uow.list_registries(
        ctx.shop_id, statuses=(RegistryStatus.ACTIVE, RegistryStatus.PAUSED)
    ):
        registry.status = RegistryStatus.ARCHIVED
        registry.updated_at = ctx.now
        uow.save_registry(registry)
        archived += 1

    cancelled = cancel_shop_jobs(
        uow, ctx.shop_id, now=ctx.now, keep_key=ctx.event.idempotency_key
    )

    settings = uow.ensure_shop(ctx.shop_id)
    settings.app_active = False
    settings.app_uninstalled_at = ctx.now
    uow.save_shop_settings(settings)

    return {"registries_archived": archived, "jobs_cancelled": cancelled}
