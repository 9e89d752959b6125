"""What an effect gets to work with inside the executor's transaction."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from wishcraft.jobs.queue import enqueue_job
from wishcraft.models import Event, JobRecord, JobType, RetryClass
from wishcraft.security.crypto import GiftMessageCipher
from wishcraft.store.base import UnitOfWork


@dataclass
class EffectContext:
    """Unit of work, event and services for one effect invocation.

    Effects read and write only through ``uow`` and only for ``shop_id``.
    """

    uow: UnitOfWork
    event: Event
    now: datetime
    cipher: GiftMessageCipher | None = None
    deferred: list[JobRecord] = field(default_factory=list)

    @property
    def shop_id(self) -> str:
        return self.event.shop_id

    def defer(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        *,
        retry_class: RetryClass = RetryClass.RETRY_SAFE,
        run_at: datetime | None = None,
    ) -> JobRecord:
        """Queue follow-up work in the same transaction as the effect.

        At most one job per (event, job type): a replayed event gets the
        job created the first time.
        """
        job = enqueue_job(
            self.uow,
            job_type=job_type,
            shop_id=self.shop_id,
            payload=payload,
            retry_class=retry_class,
            idempotency_key=self.event.idempotency_key,
            run_at=run_at or self.now,
        )
        self.deferred.append(job)
        return job
