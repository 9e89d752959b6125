"""Job processor: runs due jobs and applies the state machine.

Invoked periodically by an external scheduler (``POST /jobs/process``).
Jobs are claimed (marked running, attempts + 1) in one transaction, run
outside it, and their next state is written in another. A job that was
cancelled while it ran stays cancelled; a job whose row vanished (its
shop was redacted) is dropped.

A job left running past ``JOB_LEASE`` (its worker died) is reclaimed at the
start of the next batch and treated as a failed attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from wishcraft.effects.gdpr import build_customer_export
from wishcraft.errors import ValidationError
from wishcraft.jobs.queue import RETRY_POLICIES, event_from_job_payload, next_job_state
from wishcraft.models import JobRecord, JobStatus, JobType, utcnow
from wishcraft.security.crypto import GiftMessageCipher
from wishcraft.store.base import Store, UnitOfWork
from wishcraft.webhooks.dispatcher import resolve
from wishcraft.webhooks.executor import HandlerExecutor

logger = logging.getLogger(__name__)

# A job still running this long after it was claimed belongs to a dead worker.
JOB_LEASE = timedelta(minutes=15)


class JobProcessor:
    def __init__(
        self,
        store: Store,
        executor: HandlerExecutor,
        *,
        cipher: GiftMessageCipher | None = None,
        clock: Callable[[], datetime] = utcnow,
        lease: timedelta = JOB_LEASE,
    ) -> None:
        self._store = store
        self._executor = executor
        self._cipher = cipher
        self._clock = clock
        self._lease = lease
        self._runners: dict[JobType, Callable[[JobRecord], dict[str, Any]]] = {
            JobType.WEBHOOK_RETRY: self._run_webhook_retry,
            JobType.CUSTOMER_DATA_EXPORT: self._run_customer_export,
        }

    def process_due_jobs(self, now: datetime | None = None, limit: int = 10) -> dict[str, int]:
        """Run up to ``limit`` due jobs. Returns counts by resulting status."""
        now = now or self._clock()
        with self._store.transaction() as uow:
            reclaimed = self._reclaim_stale(uow, now, limit)
            claimed = uow.due_jobs(now, limit)
            for job in claimed:
                job.status = JobStatus.RUNNING
                job.attempts += 1
                job.started_at = now
                uow.save_job(job)

        summary = {
            "processed": 0, "completed": 0, "retrying": 0, "failed": 0, "skipped": 0,
            "reclaimed": reclaimed,
        }
        for job in claimed:
            summary["processed"] += 1
            final = self._run_one(job, now)
            if final is None:
                summary["skipped"] += 1
            elif final.status == JobStatus.COMPLETED:
                summary["completed"] += 1
            elif final.status == JobStatus.PENDING:
                summary["retrying"] += 1
            elif final.status == JobStatus.FAILED:
                summary["failed"] += 1
            else:
                summary["skipped"] += 1

        if claimed or reclaimed:
            logger.info("Job batch done: %s", summary)
        return summary

    def _reclaim_stale(self, uow: UnitOfWork, now: datetime, limit: int) -> int:
        """Count a lapsed lease as a failed attempt and reschedule or fail the job."""
        stale = uow.stale_jobs(now - self._lease, limit)
        for job in stale:
            updated = next_job_state(
                job, now=now, error=f"lease expired: still running after {self._lease}"
            )
            uow.save_job(updated)
            level = (
                RETRY_POLICIES[job.retry_class].log_level
                if updated.status == JobStatus.FAILED
                else logging.WARNING
            )
            logger.log(
                level,
                "Reclaimed job %s (%s) claimed at %s; now %s after %d attempts",
                job.id, job.type.value, job.started_at, updated.status.value, updated.attempts,
            )
        return len(stale)

    def _run_one(self, job: JobRecord, now: datetime) -> JobRecord | None:
        error: str | None = None
        result: dict[str, Any] | None = None
        retryable = True
        try:
            result = self._runners[job.type](job)
        except ValidationError as exc:
            error, retryable = f"ValidationError: {exc}", False
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"

        with self._store.transaction() as uow:
            current = uow.get_job(job.id)
            if current is None:
                logger.info("Job %s no longer exists; dropping result", job.id)
                return None
            if current.status == JobStatus.CANCELLED:
                logger.info("Job %s was cancelled while running; keeping cancelled", job.id)
                return current
            updated = next_job_state(current, now=now, error=error, result=result, retryable=retryable)
            uow.save_job(updated)

        if updated.status == JobStatus.FAILED:
            logger.log(
                RETRY_POLICIES[job.retry_class].log_level,
                "Job %s (%s) failed permanently after %d attempts: %s",
                job.id, job.type.value, updated.attempts, error,
            )
        elif updated.status == JobStatus.PENDING:
            logger.warning(
                "Job %s (%s) attempt %d/%d failed, next run at %s: %s",
                job.id, job.type.value, updated.attempts, updated.max_attempts,
                updated.run_at.isoformat(), error,
            )
        return updated

    def _run_webhook_retry(self, job: JobRecord) -> dict[str, Any]:
        event = event_from_job_payload(job.payload)
        spec = resolve(event.topic)
        metadata = self._executor.replay(event, spec)
        return {"topic": event.topic, "metadata": metadata}

    def export_document(self, job_id: str) -> dict[str, Any] | None:
        """Rebuild the export for a completed ``customer_data_export`` job.

        The document is assembled from live data on every call and never
        stored, so a later redaction is reflected in it.
        """
        with self._store.transaction() as uow:
            job = uow.get_job(job_id)
            if (
                job is None
                or job.type != JobType.CUSTOMER_DATA_EXPORT
                or job.status != JobStatus.COMPLETED
            ):
                return None
            return self._build_export(uow, job)

    def _build_export(self, uow: UnitOfWork, job: JobRecord) -> dict[str, Any]:
        payload = job.payload
        return build_customer_export(
            uow,
            job.shop_id,
            customer_id=payload.get("customer_id"),
            customer_email=payload.get("customer_email"),
            orders_requested=payload.get("orders_requested") or [],
            cipher=self._cipher,
            exported_at=self._clock().isoformat(),
        )

    def _run_customer_export(self, job: JobRecord) -> dict[str, Any]:
        with self._store.transaction() as uow:
            export = self._build_export(uow, job)
        counts = {
            section: len(export[section]) for section in ("registries", "purchases", "activities")
        }
        records = sum(counts.values())
        logger.info("Customer data export built for job %s: %d records", job.id, records)
        # only counts are persisted; the document itself is served by export_document
        return {"record_count": records, **counts, "deadline": job.payload.get("deadline")}
