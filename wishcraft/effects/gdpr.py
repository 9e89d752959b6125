"""GDPR compliance effects: data export, customer redaction, shop redaction.

Security contract:
- Every effect here is compliance-critical: failures are retried on the
  tight schedule and logged at ERROR
- A payload naming a different shop than the signed delivery is rejected
- Customer redaction rewrites PII in place and keeps the rows, so
  registry totals stay correct
- Customer redaction also scrubs the customer from queued jobs: export
  jobs lose the e-mail, webhook retries carrying the customer are emptied
  and cancelled so a replay cannot write the data back
- Shop redaction deletes every shop-scoped row, children first, in the
  caller's single transaction; any failure rolls all of it back
"""

from __future__ import annotations

import logging
from datetime import timedelta
from collections.abc import Callable
from typing import Any

from wishcraft.effects.context import EffectContext
from wishcraft.errors import ComplianceCriticalError, ValidationError
from wishcraft.models import JobRecord, JobStatus, JobType, RegistryStatus, RetryClass
from wishcraft.security.crypto import GiftMessageCipher
from wishcraft.security.pii import mask_email, mask_identifier
from wishcraft.store.base import SHOP_SCOPED_TABLES, UnitOfWork
from wishcraft.webhooks.payloads import (
    CustomerDataRequestPayload,
    CustomerRedactPayload,
    ShopRedactPayload,
)

logger = logging.getLogger(__name__)

REDACTED = "REDACTED"
EXPORT_DEADLINE = timedelta(days=30)


def _check_shop(ctx: EffectContext, shop_domain: str | None) -> None:
    if shop_domain and shop_domain.lower() != ctx.shop_id.lower():
        raise ValidationError("GDPR payload shop_domain does not match the delivering shop")


# ── customers/data_request ────────────────────────────────────────────────


def apply_customer_data_request(
    ctx: EffectContext, payload: CustomerDataRequestPayload
) -> dict[str, Any]:
    """Defer the export; Shopify allows 30 days to deliver it."""
    _check_shop(ctx, payload.shop_domain)
    deadline = ctx.now + EXPORT_DEADLINE
    job = ctx.defer(
        JobType.CUSTOMER_DATA_EXPORT,
        {
            "customer_id": payload.customer.id,
            "customer_email": payload.customer.email,
            "orders_requested": list(payload.orders_requested),
            "data_request_id": payload.data_request.id if payload.data_request else None,
            "requested_at": ctx.now.isoformat(),
            "deadline": deadline.isoformat(),
        },
        retry_class=RetryClass.COMPLIANCE_CRITICAL,
    )
    logger.info(
        "GDPR data request queued: customer=%s job=%s deadline=%s",
        mask_identifier(payload.customer.id), job.id, deadline.date().isoformat(),
    )
    return {
        "customer": mask_identifier(payload.customer.id),
        "email": mask_email(payload.customer.email),
        "job_id": job.id,
        "deadline": deadline.isoformat(),
    }


def build_customer_export(
    uow: UnitOfWork,
    shop_id: str,
    *,
    customer_id: str | None,
    customer_email: str | None,
    orders_requested: list[str] | None = None,
    cipher: GiftMessageCipher | None = None,
    exported_at: str = "",
) -> dict[str, Any]:
    """Assemble everything stored about one customer in one shop."""
    email = (customer_email or "").lower()

    def owns(cid: str | None, mail: str | None) -> bool:
        return bool(
            (customer_id and cid == customer_id) or (email and (mail or "").lower() == email)
        )

    registries = [
        r for r in uow.list_registries(shop_id) if owns(r.customer_id, r.customer_email)
    ]
    wanted_orders = set(orders_requested or ())
    purchases = [
        p for p in uow.list_purchases(shop_id)
        if owns(p.purchaser_id, p.purchaser_email) or p.order_id in wanted_orders
    ]
    activities = [
        a for a in uow.list_activities(shop_id) if owns(a.actor_id, a.actor_email)
    ]

    def gift_message(p) -> str | None:
        if not p.gift_message or cipher is None:
            return None
        return cipher.decrypt(p.gift_message, p.purchaser_id, p.registry_id)

    return {
        "exported_at": exported_at,
        "customer": {"id": customer_id, "email": customer_email},
        "registries": [
            {
                "id": r.id,
                "title": r.title,
                "status": r.status.value,
                "currency": r.currency,
                "purchased_value": str(r.purchased_value),
                "items": len(uow.list_items(shop_id, registry_id=r.id)),
            }
            for r in registries
        ],
        "purchases": [
            {
                "id": p.id,
                "registry_id": p.registry_id,
                "order_id": p.order_id,
                "quantity": p.quantity,
                "total_amount": str(p.total_amount),
                "currency": p.currency,
                "gift_message": gift_message(p),
                "created_at": p.created_at.isoformat(),
            }
            for p in purchases
        ],
        "activities": [
            {
                "id": a.id,
                "registry_id": a.registry_id,
                "type": a.type,
                "description": a.description,
                "created_at": a.created_at.isoformat(),
            }
            for a in activities
        ],
        "compliance": {"gdpr_article": 15, "purpose": "Customer data access request"},
    }


# ── customers/redact ──────────────────────────────────────────────────────


def apply_customer_redact(ctx: EffectContext, payload: CustomerRedactPayload) -> dict[str, Any]:
    _check_shop(ctx, payload.shop_domain)
    uow = ctx.uow
    customer_id = payload.customer.id
    email = (payload.customer.email or "").lower()
    orders = set(payload.orders_to_redact)

    def matches(cid: str | None, mail: str | None) -> bool:
        return cid == customer_id or bool(email and (mail or "").lower() == email)

    registries = 0
    for registry in uow.list_registries(ctx.shop_id):
        if not matches(registry.customer_id, registry.customer_email):
            continue
        registry.status = RegistryStatus.ARCHIVED
        registry.customer_id = None
        registry.customer_email = REDACTED
        registry.customer_first_name = REDACTED
        registry.customer_last_name = REDACTED
        registry.updated_at = ctx.now
        uow.save_registry(registry)
        registries += 1

    purchases = 0
    for purchase in uow.list_purchases(ctx.shop_id):
        if not (matches(purchase.purchaser_id, purchase.purchaser_email) or purchase.order_id in orders):
            continue
        purchase.purchaser_id = None
        purchase.purchaser_email = REDACTED
        purchase.purchaser_name = REDACTED
        purchase.gift_message = None
        uow.save_purchase(purchase)
        purchases += 1

    activities = 0
    for activity in uow.list_activities(ctx.shop_id):
        if not matches(activity.actor_id, activity.actor_email):
            continue
        activity.actor_id = None
        activity.actor_email = REDACTED
        activity.actor_name = REDACTED
        activity.description = "Activity redacted"
        activity.metadata = {}
        uow.save_activity(activity)
        activities += 1

    jobs = 0
    for job in uow.list_jobs(shop_id=ctx.shop_id, limit=10_000):
        if job.idempotency_key == ctx.event.idempotency_key:
            continue
        if _scrub_job(job, matches, orders, ctx):
            uow.save_job(job)
            jobs += 1

    logger.info(
        "GDPR customer redaction: customer=%s registries=%d purchases=%d activities=%d jobs=%d",
        mask_identifier(customer_id), registries, purchases, activities, jobs,
    )
    return {
        "customer": mask_identifier(customer_id),
        "registries_redacted": registries,
        "purchases_redacted": purchases,
        "activities_redacted": activities,
        "jobs_scrubbed": jobs,
    }


def _retry_mentions(
    data: dict[str, Any], matches: Callable[[str | None, str | None], bool], orders: set[str]
) -> bool:
    topic = data.get("topic") or ""
    event_payload = data.get("payload") or {}
    customer = event_payload.get("customer") or {}
    if topic == "customers/create":
        customer = event_payload
    cid = customer.get("id")
    if matches(None if cid is None else str(cid), customer.get("email")):
        return True
    if matches(None, event_payload.get("email")):
        return True
    return topic.startswith("orders/") and str(event_payload.get("id")) in orders


def _scrub_job(
    job: JobRecord,
    matches: Callable[[str | None, str | None], bool],
    orders: set[str],
    ctx: EffectContext,
) -> bool:
    """Strip the customer from one job in place. Returns whether it changed."""
    if job.type == JobType.CUSTOMER_DATA_EXPORT:
        if not matches(job.payload.get("customer_id"), job.payload.get("customer_email")):
            return False
        job.payload = {**job.payload, "customer_email": None}
        return True
    if job.type != JobType.WEBHOOK_RETRY or not _retry_mentions(job.payload, matches, orders):
        return False
    job.payload = {**job.payload, "payload": {}}
    if not job.status.is_terminal:
        job.status = JobStatus.CANCELLED
        job.completed_at = ctx.now
        job.error_message = "cancelled: customer redacted"
    return True


# ── shop/redact ───────────────────────────────────────────────────────────


def apply_shop_redact(ctx: EffectContext, payload: ShopRedactPayload) -> dict[str, Any]:
    """Delete every row the shop owns. All-or-nothing with the caller's transaction."""
    _check_shop(ctx, payload.shop_domain)
    uow = ctx.uow
    deleted: dict[str, int] = {}
    for table in SHOP_SCOPED_TABLES:
        deleted[table] = uow.delete_shop_rows(table, ctx.shop_id)

    leftovers = {t: n for t in SHOP_SCOPED_TABLES if (n := uow.count_shop_rows(t, ctx.shop_id))}
    if leftovers:
        raise ComplianceCriticalError(
            f"shop redaction left rows behind in {sorted(leftovers)}",
            topic=ctx.event.topic,
            shop_id=ctx.shop_id,
        )

    total = sum(deleted.values())
    logger.info(
        "GDPR shop redaction deleted %d rows for shop %s",
        total, mask_identifier(ctx.shop_id, keep=8),
    )
    return {"rows_deleted": deleted, "total_deleted": total}
