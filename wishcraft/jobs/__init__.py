"""Durable job queue and its processor.

The processor lives in ``wishcraft.jobs.processor``; it is not imported
here because it depends on the topic dispatcher, which in turn depends on
the queue primitives below.
"""

from wishcraft.jobs.queue import (
    RETENTION_DAYS,
    RETRY_POLICIES,
    RetryPolicy,
    backoff,
    cancel_shop_jobs,
    cleanup_old_jobs,
    cleanup_retained_data,
    enqueue_job,
    enqueue_retry,
    job_statistics,
    next_job_state,
)

__all__ = [
    "RETENTION_DAYS",
    "RETRY_POLICIES",
    "RetryPolicy",
    "backoff",
    "cancel_shop_jobs",
    "cleanup_old_jobs",
    "cleanup_retained_data",
    "enqueue_job",
    "enqueue_retry",
    "job_statistics",
    "next_job_state",
]
