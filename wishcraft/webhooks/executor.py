"""Handler executor: runs one topic effect inside one store transaction.

Security contract:
- Effect and success audit record commit together or not at all
- A delivery whose key already has an audit record is not executed again
  (durable second line behind the Redis fast path)
- ValidationError from an effect -> failed audit, never retried
- Any other exception -> rollback, failed audit in a fresh transaction,
  and an internal retry job; the provider still gets its 200
- Compliance-critical failures log at ERROR, the rest at WARNING
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

import psycopg
import pydantic
import redis

from wishcraft.audit import AuditLogger, redacted_tenant, summarize_error
from wishcraft.effects.context import EffectContext
from wishcraft.errors import TransientEffectError, ValidationError
from wishcraft.jobs.queue import RETRY_POLICIES, enqueue_retry
from wishcraft.models import AuditOutcome, Event, utcnow
from wishcraft.security.crypto import GiftMessageCipher
from wishcraft.security.pii import mask_identifier
from wishcraft.store.base import Store, UnitOfWork
from wishcraft.webhooks.dispatcher import TopicSpec

logger = logging.getLogger(__name__)

# Database and network failures.
_TRANSIENT_ERRORS = (psycopg.OperationalError, redis.RedisError, ConnectionError, TimeoutError)


class ExecutionOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    RETRY_SCHEDULED = "retry_scheduled"


class HandlerExecutor:
    """Executes topic effects transactionally and owns their failure handling."""

    def __init__(
        self,
        store: Store,
        *,
        cipher: GiftMessageCipher | None = None,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._audit = audit or AuditLogger()
        self._clock = clock

    def execute(self, event: Event, spec: TopicSpec, payload: pydantic.BaseModel) -> ExecutionOutcome:
        """Run ``spec.effect`` for a freshly accepted event. Never raises."""
        try:
            with self._store.transaction() as uow:
                if uow.find_audit(event.idempotency_key) is not None:
                    logger.info(
                        "Event %s already audited; skipping %s",
                        event.idempotency_key[:12], event.topic,
                    )
                    return ExecutionOutcome.DUPLICATE
                metadata = self._apply(uow, event, spec, payload)
                self._audit.record(
                    uow,
                    event,
                    AuditOutcome.SUCCESS,
                    metadata,
                    resource=spec.resource,
                    resource_id=_resource_id(spec, payload),
                    tenant=self._tenant(event, spec),
                )
            return ExecutionOutcome.APPLIED
        except ValidationError as exc:
            self._record_failure(event, spec, payload, exc, schedule_retry=False)
            return ExecutionOutcome.REJECTED
        except Exception as exc:
            self._record_failure(
                event, spec, payload, classify_failure(exc, event), schedule_retry=True
            )
            return ExecutionOutcome.RETRY_SCHEDULED

    def replay(self, event: Event, spec: TopicSpec) -> dict[str, Any]:
        """Re-run the effect for a retry job. Raises on failure.

        The event already has its audit record from the first attempt, so
        no second one is written.
        """
        payload = spec.parse(event.payload)
        with self._store.transaction() as uow:
            return self._apply(uow, event, spec, payload)

    def _apply(
        self, uow: UnitOfWork, event: Event, spec: TopicSpec, payload: pydantic.BaseModel
    ) -> dict[str, Any]:
        uow.ensure_shop(event.shop_id)
        ctx = EffectContext(uow=uow, event=event, now=self._clock(), cipher=self._cipher)
        metadata = spec.effect(ctx, payload) or {}
        if ctx.deferred:
            metadata.setdefault("deferred_jobs", [job.id for job in ctx.deferred])
        return metadata

    def _tenant(self, event: Event, spec: TopicSpec) -> str | None:
        return redacted_tenant(event.shop_id) if spec.pseudonymous_audit else None

    def _record_failure(
        self,
        event: Event,
        spec: TopicSpec,
        payload: pydantic.BaseModel,
        exc: Exception,
        *,
        schedule_retry: bool,
    ) -> None:
        error = summarize_error(exc)
        policy = RETRY_POLICIES[spec.retry_class]
        metadata: dict[str, Any] = {"retry_class": spec.retry_class.value}
        try:
            with self._store.transaction() as uow:
                if schedule_retry:
                    job = enqueue_retry(
                        uow, event, retry_class=spec.retry_class, error=error, now=self._clock()
                    )
                    metadata["retry_job_id"] = job.id
                self._audit.record(
                    uow,
                    event,
                    AuditOutcome.FAILED,
                    metadata,
                    error,
                    resource=spec.resource,
                    resource_id=_resource_id(spec, payload),
                    tenant=self._tenant(event, spec),
                )
        except Exception:
            logger.exception(
                "Failed to record failure of %s for shop %s",
                event.topic, mask_identifier(event.shop_id, keep=8),
            )
            return

        logger.log(
            policy.log_level if schedule_retry else logging.WARNING,
            "Webhook effect failed: topic=%s shop=%s retry=%s error=%s",
            event.topic,
            mask_identifier(event.shop_id, keep=8),
            metadata.get("retry_job_id", "none"),
            error,
        )


def classify_failure(exc: Exception, event: Event) -> Exception:
    """Relabel database and network errors as ``TransientEffectError``."""
    if isinstance(exc, _TRANSIENT_ERRORS):
        error = TransientEffectError(str(exc), topic=event.topic, shop_id=event.shop_id)
        error.__cause__ = exc
        return error
    return exc


def _resource_id(spec: TopicSpec, payload: pydantic.BaseModel) -> str:
    value = spec.resource_id(payload)
    return "" if value is None else str(value)
