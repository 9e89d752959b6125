"""Durable job queue: retry policies, enqueueing and the job state machine.

Jobs move pending -> running -> completed | failed | cancelled. The only
code that changes a job's status is this module and the processor that
drives it; effects only *create* jobs (through ``EffectContext.defer``).

Retry policies, by class:

- retry_safe:          5 attempts, backoff 60s doubling, capped at 1h
- compliance_critical: 10 attempts, backoff 30s doubling, capped at 15min
"""

from __future__ import annotations

import dataclasses
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from wishcraft.models import (
    Event,
    JobRecord,
    JobStatus,
    JobType,
    RetryClass,
    utcnow,
)
from wishcraft.store.base import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay: timedelta
    max_delay: timedelta
    log_level: int
    priority: int


RETRY_POLICIES: dict[RetryClass, RetryPolicy] = {
    RetryClass.RETRY_SAFE: RetryPolicy(
        max_attempts=5,
        base_delay=timedelta(seconds=60),
        max_delay=timedelta(hours=1),
        log_level=logging.WARNING,
        priority=2,
    ),
    RetryClass.COMPLIANCE_CRITICAL: RetryPolicy(
        max_attempts=10,
        base_delay=timedelta(seconds=30),
        max_delay=timedelta(minutes=15),
        log_level=logging.ERROR,
        priority=1,
    ),
}

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


def backoff(retry_class: RetryClass, attempts: int) -> timedelta:
    """Delay before the next attempt after ``attempts`` failed ones."""
    policy = RETRY_POLICIES[retry_class]
    exponent = max(attempts - 1, 0)
    # cap the exponent so huge attempt counts cannot overflow timedelta
    delay = policy.base_delay * (2 ** min(exponent, 20))
    return min(delay, policy.max_delay)


# ── Enqueueing ────────────────────────────────────────────────────────────


def enqueue_job(
    uow: UnitOfWork,
    *,
    job_type: JobType,
    shop_id: str,
    payload: dict[str, Any],
    retry_class: RetryClass,
    idempotency_key: str = "",
    run_at: datetime | None = None,
    priority: int | None = None,
    error_message: str | None = None,
) -> JobRecord:
    """Create a pending job, or return the existing one for the same key and type."""
    if idempotency_key:
        existing = uow.find_job(idempotency_key, job_type)
        if existing is not None:
            logger.info(
                "Job already queued for key %s (%s): %s",
                idempotency_key[:12], job_type.value, existing.id,
            )
            return existing

    policy = RETRY_POLICIES[retry_class]
    job = JobRecord(
        type=job_type,
        shop_id=shop_id,
        payload=payload,
        priority=policy.priority if priority is None else priority,
        run_at=run_at or utcnow(),
        max_attempts=policy.max_attempts,
        retry_class=retry_class,
        idempotency_key=idempotency_key,
        error_message=error_message,
    )
    uow.save_job(job)
    logger.info(
        "Job queued: id=%s type=%s priority=%d run_at=%s",
        job.id, job_type.value, job.priority, job.run_at.isoformat(),
    )
    return job


def event_to_job_payload(event: Event) -> dict[str, Any]:
    """Everything needed to rebuild ``event`` when the retry runs."""
    return {
        "topic": event.topic,
        "shop_id": event.shop_id,
        "payload": event.payload,
        "event_id": event.event_id,
        "received_at": event.received_at.isoformat(),
        "triggered_at": event.triggered_at.isoformat() if event.triggered_at else None,
        "idempotency_key": event.idempotency_key,
    }


def event_from_job_payload(data: dict[str, Any]) -> Event:
    triggered = data.get("triggered_at")
    return Event(
        topic=data["topic"],
        shop_id=data["shop_id"],
        payload=data["payload"],
        received_at=datetime.fromisoformat(data["received_at"]),
        signature_valid=True,
        idempotency_key=data.get("idempotency_key", ""),
        event_id=data.get("event_id"),
        triggered_at=datetime.fromisoformat(triggered) if triggered else None,
    )


def enqueue_retry(
    uow: UnitOfWork,
    event: Event,
    *,
    retry_class: RetryClass,
    error: str,
    now: datetime | None = None,
) -> JobRecord:
    """Schedule a ``webhook_retry`` job for an effect that failed."""
    now = now or utcnow()
    return enqueue_job(
        uow,
        job_type=JobType.WEBHOOK_RETRY,
        shop_id=event.shop_id,
        payload=event_to_job_payload(event),
        retry_class=retry_class,
        idempotency_key=event.idempotency_key,
        run_at=now + backoff(retry_class, 1),
        error_message=error,
    )


# ── State machine ─────────────────────────────────────────────────────────


def next_job_state(
    job: JobRecord,
    *,
    now: datetime,
    error: str | None = None,
    result: dict[str, Any] | None = None,
    retryable: bool = True,
) -> JobRecord:
    """Return the job as it should be after one run. Pure: ``job`` is untouched.

    Success -> completed. An error with attempts left -> pending again with
    ``run_at`` pushed out by the backoff. Otherwise -> failed (terminal).
    A job that is already terminal is returned unchanged.
    """
    if job.status.is_terminal:
        return dataclasses.replace(job)

    if error is None:
        return dataclasses.replace(
            job,
            status=JobStatus.COMPLETED,
            result=result,
            error_message=None,
            completed_at=now,
        )

    if retryable and job.attempts < job.max_attempts:
        return dataclasses.replace(
            job,
            status=JobStatus.PENDING,
            run_at=now + backoff(job.retry_class, job.attempts),
            error_message=error,
        )

    return dataclasses.replace(
        job,
        status=JobStatus.FAILED,
        error_message=error,
        completed_at=now,
    )


# ── Housekeeping ──────────────────────────────────────────────────────────


def cancel_shop_jobs(
    uow: UnitOfWork,
    shop_id: str,
    *,
    now: datetime | None = None,
    keep_key: str = "",
) -> int:
    """Mark a shop's pending and running jobs cancelled.

    Advisory: a job already running finishes, but the processor will not
    overwrite the cancelled status afterwards. Compliance jobs always
    survive. Jobs carrying ``keep_key`` (the event doing the cancelling)
    are left alone.
    """
    now = now or utcnow()
    cancelled = 0
    for job in uow.list_jobs(shop_id=shop_id, statuses=ACTIVE_STATUSES, limit=10_000):
        if job.retry_class == RetryClass.COMPLIANCE_CRITICAL:
            continue
        if keep_key and job.idempotency_key == keep_key:
            continue
        job.status = JobStatus.CANCELLED
        job.completed_at = now
        job.error_message = "cancelled: app uninstalled"
        uow.save_job(job)
        cancelled += 1
    if cancelled:
        logger.info("Cancelled %d jobs for shop %s", cancelled, shop_id)
    return cancelled


def cleanup_old_jobs(uow: UnitOfWork, *, days: int = 30, now: datetime | None = None) -> int:
    """Delete terminal jobs that finished more than ``days`` ago."""
    now = now or utcnow()
    deleted = uow.delete_jobs(
        statuses=TERMINAL_STATUSES, completed_before=now - timedelta(days=days)
    )
    logger.info("Cleaned up %d jobs older than %d days", deleted, days)
    return deleted


# Days each kind of record is kept before housekeeping deletes it.
RETENTION_DAYS: dict[str, int] = {
    "audit_logs": 365,
    "registry_activities": 180,
    "system_jobs": 30,
}


def cleanup_retained_data(
    uow: UnitOfWork,
    *,
    now: datetime | None = None,
    retention: dict[str, int] | None = None,
) -> dict[str, int]:
    """Apply the retention periods to audit logs, registry activities and jobs."""
    now = now or utcnow()
    days = {**RETENTION_DAYS, **(retention or {})}
    deleted = {
        "audit_logs": uow.delete_audit_before(now - timedelta(days=days["audit_logs"])),
        "registry_activities": uow.delete_activities_before(
            now - timedelta(days=days["registry_activities"])
        ),
        "system_jobs": cleanup_old_jobs(uow, days=days["system_jobs"], now=now),
    }
    logger.info("Retention cleanup deleted %s", deleted)
    return deleted


def job_statistics(uow: UnitOfWork, shop_id: str | None = None) -> dict[str, int]:
    """Job counts by status, optionally for one shop."""
    counts = Counter(
        job.status.value for job in uow.list_jobs(shop_id=shop_id, limit=100_000)
    )
    stats = {status.value: counts.get(status.value, 0) for status in JobStatus}
    stats["total"] = sum(counts.values())
    return stats
