"""In-memory store for tests and single-process deployments.

Transactions are serialized with a re-entrant lock. On entry the tables
are snapshotted; an exception inside the scope restores the snapshot, so
a failed multi-step effect leaves no partial writes behind. Nested
``transaction()`` calls join the outer scope.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

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
    utcnow,
)
from wishcraft.store.base import SHOP_SCOPED_TABLES, check_table

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Dict-backed implementation of the ``Store`` protocol."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: dict[str, dict[str, Any]] = {t: {} for t in SHOP_SCOPED_TABLES}

    @contextmanager
    def transaction(self) -> Iterator[InMemoryUnitOfWork]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield InMemoryUnitOfWork(self._tables)
                finally:
                    self._depth -= 1
                return

            snapshot = copy.deepcopy(self._tables)
            self._depth = 1
            try:
                yield InMemoryUnitOfWork(self._tables)
            except BaseException:
                self._tables.clear()
                self._tables.update(snapshot)
                logger.debug("In-memory transaction rolled back")
                raise
            finally:
                self._depth = 0


class InMemoryUnitOfWork:
    """Operations on the shared tables. Records are copied in and out."""

    def __init__(self, tables: dict[str, dict[str, Any]]) -> None:
        self._t = tables

    def _put(self, table: str, key: str, record: Any) -> None:
        self._t[table][key] = copy.deepcopy(record)

    def _rows(self, table: str) -> list[Any]:
        return [copy.deepcopy(r) for r in self._t[table].values()]

    def _delete_where(self, table: str, predicate: Callable[[Any], bool]) -> int:
        doomed = [key for key, r in self._t[table].items() if predicate(r)]
        for key in doomed:
            del self._t[table][key]
        return len(doomed)

    # ── shops ─────────────────────────────────────────────────────────────

    def ensure_shop(self, shop_id: str) -> ShopSettings:
        if shop_id not in self._t["shops"]:
            self._t["shops"][shop_id] = {"shop_id": shop_id, "created_at": utcnow()}
        settings = self._t["shop_settings"].get(shop_id)
        if settings is None:
            settings = ShopSettings(shop_id=shop_id)
            self._put("shop_settings", shop_id, settings)
        return copy.deepcopy(settings)

    def get_shop_settings(self, shop_id: str) -> ShopSettings | None:
        return copy.deepcopy(self._t["shop_settings"].get(shop_id))

    def save_shop_settings(self, settings: ShopSettings) -> None:
        self._put("shop_settings", settings.shop_id, settings)

    # ── registries ────────────────────────────────────────────────────────

    def get_registry(
        self, shop_id: str, registry_id: str, *, for_update: bool = False
    ) -> Registry | None:
        # transactions are already serialized by the store lock
        reg = self._t["registries"].get(registry_id)
        if reg is None or reg.shop_id != shop_id:
            return None
        return copy.deepcopy(reg)

    def list_registries(
        self,
        shop_id: str,
        *,
        customer_id: str | None = None,
        statuses: Iterable[RegistryStatus] | None = None,
    ) -> list[Registry]:
        wanted = set(statuses) if statuses is not None else None
        return [
            r for r in self._rows("registries")
            if r.shop_id == shop_id
            and (customer_id is None or r.customer_id == customer_id)
            and (wanted is None or r.status in wanted)
        ]

    def save_registry(self, registry: Registry) -> None:
        self._put("registries", registry.id, registry)

    # ── registry items ────────────────────────────────────────────────────

    def get_item(
        self, shop_id: str, item_id: str, *, for_update: bool = False
    ) -> RegistryItem | None:
        item = self._t["registry_items"].get(item_id)
        if item is None or item.shop_id != shop_id:
            return None
        return copy.deepcopy(item)

    def list_items(
        self,
        shop_id: str,
        *,
        registry_id: str | None = None,
        product_id: str | None = None,
        variant_id: str | None = None,
        inventory_item_id: str | None = None,
    ) -> list[RegistryItem]:
        return [
            i for i in self._rows("registry_items")
            if i.shop_id == shop_id
            and (registry_id is None or i.registry_id == registry_id)
            and (product_id is None or i.product_id == product_id)
            and (variant_id is None or i.variant_id == variant_id)
            and (inventory_item_id is None or i.inventory_item_id == inventory_item_id)
        ]

    def save_item(self, item: RegistryItem) -> None:
        self._put("registry_items", item.id, item)

    # ── purchases ─────────────────────────────────────────────────────────

    def find_purchase(self, shop_id: str, order_id: str, line_item_id: str) -> Purchase | None:
        for p in self._t["registry_purchases"].values():
            if p.shop_id == shop_id and p.order_id == order_id and p.line_item_id == line_item_id:
                return copy.deepcopy(p)
        return None

    def list_purchases(
        self,
        shop_id: str,
        *,
        order_id: str | None = None,
        purchaser_id: str | None = None,
        registry_id: str | None = None,
    ) -> list[Purchase]:
        return [
            p for p in self._rows("registry_purchases")
            if p.shop_id == shop_id
            and (order_id is None or p.order_id == order_id)
            and (purchaser_id is None or p.purchaser_id == purchaser_id)
            and (registry_id is None or p.registry_id == registry_id)
        ]

    def save_purchase(self, purchase: Purchase) -> None:
        self._put("registry_purchases", purchase.id, purchase)

    # ── activities ────────────────────────────────────────────────────────

    def list_activities(
        self,
        shop_id: str,
        *,
        registry_id: str | None = None,
        actor_id: str | None = None,
    ) -> list[RegistryActivity]:
        return [
            a for a in self._rows("registry_activities")
            if a.shop_id == shop_id
            and (registry_id is None or a.registry_id == registry_id)
            and (actor_id is None or a.actor_id == actor_id)
        ]

    def save_activity(self, activity: RegistryActivity) -> None:
        self._put("registry_activities", activity.id, activity)

    def delete_activities_before(self, cutoff: datetime) -> int:
        return self._delete_where("registry_activities", lambda a: a.created_at < cutoff)

    # ── audit ─────────────────────────────────────────────────────────────

    def append_audit(self, record: AuditRecord) -> None:
        if record.id in self._t["audit_logs"]:
            raise ValueError(f"audit record {record.id} already exists")
        self._put("audit_logs", record.id, record)

    def find_audit(self, idempotency_key: str) -> AuditRecord | None:
        if not idempotency_key:
            return None
        for rec in self._t["audit_logs"].values():
            if rec.idempotency_key == idempotency_key:
                return copy.deepcopy(rec)
        return None

    def list_audit(
        self,
        shop_id: str,
        *,
        outcome: AuditOutcome | None = None,
        limit: int = 100,
    ) -> list[AuditRecord]:
        rows = [
            r for r in self._rows("audit_logs")
            if r.shop_id == shop_id and (outcome is None or r.outcome == outcome)
        ]
        rows.sort(key=lambda r: r.timestamp, reverse=True)
        return rows[:limit]

    def delete_audit_before(self, cutoff: datetime) -> int:
        return self._delete_where("audit_logs", lambda r: r.timestamp < cutoff)

    # ── jobs ──────────────────────────────────────────────────────────────

    def save_job(self, job: JobRecord) -> None:
        self._put("system_jobs", job.id, job)

    def get_job(self, job_id: str) -> JobRecord | None:
        return copy.deepcopy(self._t["system_jobs"].get(job_id))

    def find_job(self, idempotency_key: str, job_type: JobType) -> JobRecord | None:
        if not idempotency_key:
            return None
        for job in self._t["system_jobs"].values():
            if job.idempotency_key == idempotency_key and job.type == job_type:
                return copy.deepcopy(job)
        return None

    def list_jobs(
        self,
        *,
        shop_id: str | None = None,
        statuses: Iterable[JobStatus] | None = None,
        limit: int = 100,
    ) -> list[JobRecord]:
        wanted = set(statuses) if statuses is not None else None
        rows = [
            j for j in self._rows("system_jobs")
            if (shop_id is None or j.shop_id == shop_id)
            and (wanted is None or j.status in wanted)
        ]
        rows.sort(key=lambda j: j.created_at, reverse=True)
        return rows[:limit]

    def due_jobs(self, now: datetime, limit: int) -> list[JobRecord]:
        rows = [
            j for j in self._rows("system_jobs")
            if j.status == JobStatus.PENDING and j.run_at <= now
        ]
        rows.sort(key=lambda j: (j.priority, j.run_at))
        return rows[:limit]

    def stale_jobs(self, started_before: datetime, limit: int) -> list[JobRecord]:
        rows = [
            j for j in self._rows("system_jobs")
            if j.status == JobStatus.RUNNING
            and j.started_at is not None
            and j.started_at < started_before
        ]
        rows.sort(key=lambda j: j.started_at)
        return rows[:limit]

    def delete_jobs(self, *, statuses: Iterable[JobStatus], completed_before: datetime) -> int:
        wanted = set(statuses)
        return self._delete_where(
            "system_jobs",
            lambda j: j.status in wanted
            and j.completed_at is not None
            and j.completed_at < completed_before,
        )

    # ── tenant-wide ───────────────────────────────────────────────────────

    def delete_shop_rows(self, table: str, shop_id: str) -> int:
        rows = self._t[check_table(table)]
        doomed = [k for k, r in rows.items() if _shop_of(r) == shop_id]
        for key in doomed:
            del rows[key]
        return len(doomed)

    def count_shop_rows(self, table: str, shop_id: str) -> int:
        return sum(1 for r in self._t[check_table(table)].values() if _shop_of(r) == shop_id)


def _shop_of(row: Any) -> str | None:
    if isinstance(row, dict):
        return row.get("shop_id")
    return getattr(row, "shop_id", None)
