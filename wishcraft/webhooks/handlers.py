"""HTTP route handlers: webhook intake, cron entry points, operator views.

Webhook handlers:
1. Read raw body (needed for HMAC verification)
2. Hand body + headers to the WebhookPipeline
3. Return its status code and small JSON body

Security contract:
- Never return error details to webhook caller (info disclosure)
- Return 401 only for signature failures
- /jobs/* and /admin/* sit behind the bearer-token middleware
- Admin listings mask customer e-mail addresses
- Pipeline, store and job work runs in a worker thread, off the event loop
"""

import asyncio
import dataclasses
import logging
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter

from wishcraft.jobs.processor import JobProcessor
from wishcraft.jobs.queue import cleanup_retained_data, job_statistics
from wishcraft.models import AuditOutcome, AuditRecord, JobRecord, JobStatus
from wishcraft.security.middleware import ADMIN_RATE_LIMIT
from wishcraft.security.pii import mask_text
from wishcraft.store.base import Store
from wishcraft.webhooks.pipeline import WebhookPipeline

logger = logging.getLogger(__name__)


async def _handle_webhook(
    request: Request, pipeline: WebhookPipeline, topic: str | None = None
) -> JSONResponse:
    body = await request.body()
    result = await asyncio.to_thread(
        pipeline.process, body, dict(request.headers), topic_hint=topic
    )
    return JSONResponse(result.body, status_code=result.status_code, headers=result.headers)


def _audit_view(record: AuditRecord) -> dict[str, Any]:
    data = dataclasses.asdict(record)
    data["outcome"] = record.outcome.value
    data["timestamp"] = record.timestamp.isoformat()
    if record.error:
        data["error"] = mask_text(record.error)
    return data


def _job_view(job: JobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "type": job.type.value,
        "shop_id": job.shop_id,
        "status": job.status.value,
        "priority": job.priority,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "retry_class": job.retry_class.value,
        "run_at": job.run_at.isoformat(),
        "error_message": mask_text(job.error_message) if job.error_message else None,
        "created_at": job.created_at.isoformat(),
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


def register_webhook_routes(app: FastAPI, pipeline: WebhookPipeline) -> None:
    """Register webhook endpoint routes on the FastAPI app.

    Call this BEFORE install_security_middleware() so routes are available
    for middleware to inspect.
    """

    @app.post("/webhooks")
    async def shopify_webhook(request: Request):
        """Receive Shopify webhooks; topic from X-Shopify-Topic."""
        return await _handle_webhook(request, pipeline)

    @app.post("/webhooks/{topic:path}")
    async def shopify_webhook_with_topic(request: Request, topic: str):
        """Receive Shopify webhooks with topic subpath."""
        return await _handle_webhook(request, pipeline, topic)

    logger.info("Webhook routes registered: /webhooks, /webhooks/{topic}")


def register_job_routes(
    app: FastAPI, store: Store, processor: JobProcessor, *, batch_size: int = 10
) -> None:
    """Cron entry points."""

    def _cleanup(days: int) -> dict[str, int]:
        with store.transaction() as uow:
            return cleanup_retained_data(uow, retention={"system_jobs": days})

    @app.post("/jobs/process")
    async def process_jobs(limit: int = Query(default=batch_size, ge=1, le=100)):
        summary = await asyncio.to_thread(processor.process_due_jobs, limit=limit)
        return {"status": "ok", **summary}

    @app.post("/jobs/cleanup")
    async def cleanup_jobs(days: int = Query(default=30, ge=1, le=365)):
        deleted = await asyncio.to_thread(_cleanup, days)
        return {"status": "ok", "deleted": deleted["system_jobs"], "retention": deleted}


def register_admin_routes(
    app: FastAPI, store: Store, processor: JobProcessor, limiter: Limiter
) -> None:
    """Operator visibility into audit records, job failures and data exports."""

    def _audit(shop: str, outcome: AuditOutcome | None, limit: int) -> list[AuditRecord]:
        with store.transaction() as uow:
            return uow.list_audit(shop, outcome=outcome, limit=limit)

    def _jobs(
        shop: str | None, status: JobStatus | None, limit: int
    ) -> tuple[list[JobRecord], dict[str, int]]:
        with store.transaction() as uow:
            jobs = uow.list_jobs(shop_id=shop, statuses=[status] if status else None, limit=limit)
            return jobs, job_statistics(uow, shop)

    @app.get("/admin/audit")
    @limiter.limit(ADMIN_RATE_LIMIT)
    async def list_audit(
        request: Request,
        shop: str,
        outcome: AuditOutcome | None = None,
        limit: int = Query(default=50, ge=1, le=500),
    ):
        records = await asyncio.to_thread(_audit, shop, outcome, limit)
        return {"shop": shop, "records": [_audit_view(r) for r in records]}

    @app.get("/admin/jobs")
    @limiter.limit(ADMIN_RATE_LIMIT)
    async def list_jobs(
        request: Request,
        shop: str | None = None,
        status: JobStatus | None = None,
        limit: int = Query(default=50, ge=1, le=500),
    ):
        jobs, stats = await asyncio.to_thread(_jobs, shop, status, limit)
        return {"statistics": stats, "jobs": [_job_view(j) for j in jobs]}

    @app.get("/admin/exports/{job_id}")
    @limiter.limit(ADMIN_RATE_LIMIT)
    async def customer_export(request: Request, job_id: str):
        """Customer data export for a completed data request, built on demand."""
        document = await asyncio.to_thread(processor.export_document, job_id)
        if document is None:
            return JSONResponse({"error": "Export not found"}, status_code=404)
        return {"job_id": job_id, "export": document}
