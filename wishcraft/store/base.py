"""Persistence protocols.

The pipeline talks to storage only through ``Store.transaction()``, which
yields a ``UnitOfWork``. Everything done on one unit of work commits or
rolls back together; that transaction is the sole concurrency boundary of
the service, so no in-process locking is layered on top of it.

Every query is scoped by ``shop_id`` (tenant isolation) except lookups by
globally unique keys (job id, idempotency key).

Counters that are read, changed and written back (registry value, item
purchase count) are loaded with ``for_update=True`` so concurrent
transactions on the same row queue behind each other instead of losing
an increment.

``InMemoryStore`` serves tests and single-process use; ``PostgresStore`` is
the production backend.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol, runtime_checkable

from wishcraft.models import (
    AuditOutcome,
    AuditRecord,
    JobRecord,
    JobStatus,
    JobType,
    Purchase,
    Registry,
    RegistryActivity,
    RegistryItem,
    RegistryStatus,
    ShopSettings,
)

# Child-before-parent order; shop redaction deletes in exactly this order.
SHOP_SCOPED_TABLES: tuple[str, ...] = (
    "registry_purchases",
    "registry_activities",
    "registry_items",
    "registries",
    "audit_logs",
    "system_jobs",
    "shop_settings",
    "shops",
)


@runtime_checkable
class UnitOfWork(Protocol):
    """Operations available inside one transaction."""

    # shops
    def ensure_shop(self, shop_id: str) -> ShopSettings: ...
    def get_shop_settings(self, shop_id: str) -> ShopSettings | None: ...
    def save_shop_settings(self, settings: ShopSettings) -> None: ...

    # registries
    def get_registry(
        self, shop_id: str, registry_id: str, *, for_update: bool = False
    ) -> Registry | None: ...
    def list_registries(
        self,
        shop_id: str,
        *,
        customer_id: str | None = None,
        statuses: Iterable[RegistryStatus] | None = None,
    ) -> list[Registry]: ...
    def save_registry(self, registry: Registry) -> None: ...

    # registry items
    def get_item(
        self, shop_id: str, item_id: str, *, for_update: bool = False
    ) -> RegistryItem | None: ...
    def list_items(
        self,
        shop_id: str,
        *,
        registry_id: str | None = None,
        product_id: str | None = None,
        variant_id: str | None = None,
        inventory_item_id: str | None = None,
    ) -> list[RegistryItem]: ...
    def save_item(self, item: RegistryItem) -> None: ...

    # purchases
    def find_purchase(self, shop_id: str, order_id: str, line_item_id: str) -> Purchase | None: ...
    def list_purchases(
        self,
        shop_id: str,
        *,
        order_id: str | None = None,
        purchaser_id: str | None = None,
        registry_id: str | None = None,
    ) -> list[Purchase]: ...
    def save_purchase(self, purchase: Purchase) -> None: ...

    # activities
    def list_activities(
        self,
        shop_id: str,
        *,
        registry_id: str | None = None,
        actor_id: str | None = None,
    ) -> list[RegistryActivity]: ...
    def save_activity(self, activity: RegistryActivity) -> None: ...
    def delete_activities_before(self, cutoff: datetime) -> int: ...

    # audit
    def append_audit(self, record: AuditRecord) -> None: ...
    def find_audit(self, idempotency_key: str) -> AuditRecord | None: ...
    def list_audit(
        self,
        shop_id: str,
        *,
        outcome: AuditOutcome | None = None,
        limit: int = 100,
    ) -> list[AuditRecord]: ...
    def delete_audit_before(self, cutoff: datetime) -> int: ...

    # jobs
    def save_job(self, job: JobRecord) -> None: ...
    def get_job(self, job_id: str) -> JobRecord | None: ...
    def find_job(self, idempotency_key: str, job_type: JobType) -> JobRecord | None: ...
    def list_jobs(
        self,
        *,
        shop_id: str | None = None,
        statuses: Iterable[JobStatus] | None = None,
        limit: int = 100,
    ) -> list[JobRecord]: ...
    def due_jobs(self, now: datetime, limit: int) -> list[JobRecord]: ...
    def stale_jobs(self, started_before: datetime, limit: int) -> list[JobRecord]: ...
    def delete_jobs(self, *, statuses: Iterable[JobStatus], completed_before: datetime) -> int: ...

    # tenant-wide
    def delete_shop_rows(self, table: str, shop_id: str) -> int: ...
    def count_shop_rows(self, table: str, shop_id: str) -> int: ...


class Store(Protocol):
    """A transactional store."""

    def transaction(self) -> AbstractContextManager[UnitOfWork]:
        """Open an atomic scope. Exceptions roll back everything done in it."""
        ...


def check_table(table: str) -> str:
    """Guard against anything but a known shop-scoped table name."""
    if table not in SHOP_SCOPED_TABLES:
        raise ValueError(f"not a shop-scoped table: {table!r}")
    return table
