"""PostgreSQL store (psycopg 3).

One connection per transaction; ``conn.transaction()`` gives the
commit-or-rollback scope. Foreign keys run shop -> registries -> items ->
purchases, which is why shop redaction deletes children first. Audit logs
and system jobs carry ``shop_id`` without a foreign key so failure records
can be written for shops that were never installed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from wishcraft.models import (
    AuditOutcome,
    AuditRecord,
    ItemStatus,
    JobRecord,
    JobStatus,
    JobType,
    Purchase,
    Registry,
    RegistryActivity,
    RegistryItem,
    RegistryStatus,
    RetryClass,
    ShopSettings,
)
from wishcraft.store.base import check_table

logger = logging.getLogger(__name__)

SCHEMA = (
    """CREATE TABLE IF NOT EXISTS shops (
        shop_id     TEXT PRIMARY KEY,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
    )""",
    """CREATE TABLE IF NOT EXISTS shop_settings (
        shop_id             TEXT PRIMARY KEY REFERENCES shops(shop_id),
        app_active          BOOLEAN NOT NULL DEFAULT TRUE,
        installed_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
        app_uninstalled_at  TIMESTAMPTZ
    )""",
    """CREATE TABLE IF NOT EXISTS registries (
        id                   TEXT PRIMARY KEY,
        shop_id              TEXT NOT NULL REFERENCES shops(shop_id),
        title                TEXT NOT NULL DEFAULT '',
        status               TEXT NOT NULL DEFAULT 'active',
        customer_id          TEXT,
        customer_email       TEXT,
        customer_first_name  TEXT,
        customer_last_name   TEXT,
        currency             TEXT NOT NULL DEFAULT 'USD',
        purchased_value      NUMERIC(14, 4) NOT NULL DEFAULT 0,
        updated_at           TIMESTAMPTZ NOT NULL DEFAULT now()
    )""",
    """CREATE TABLE IF NOT EXISTS registry_items (
        id                    TEXT PRIMARY KEY,
        registry_id           TEXT NOT NULL REFERENCES registries(id),
        shop_id               TEXT NOT NULL,
        product_id            TEXT NOT NULL DEFAULT '',
        variant_id            TEXT,
        inventory_item_id     TEXT,
        product_title         TEXT NOT NULL DEFAULT '',
        price                 NUMERIC(14, 4) NOT NULL DEFAULT 0,
        quantity              INT NOT NULL DEFAULT 1,
        quantity_purchased    INT NOT NULL DEFAULT 0,
        inventory_tracked     BOOLEAN NOT NULL DEFAULT TRUE,
        inventory_quantity    INT,
        status                TEXT NOT NULL DEFAULT 'active',
        inventory_updated_at  TIMESTAMPTZ
    )""",
    """CREATE TABLE IF NOT EXISTS registry_purchases (
        id                TEXT PRIMARY KEY,
        shop_id           TEXT NOT NULL,
        registry_id       TEXT NOT NULL,
        registry_item_id  TEXT NOT NULL REFERENCES registry_items(id),
        order_id          TEXT NOT NULL,
        line_item_id      TEXT NOT NULL,
        quantity          INT NOT NULL,
        unit_price        NUMERIC(14, 4) NOT NULL,
        total_amount      NUMERIC(14, 4) NOT NULL,
        currency          TEXT NOT NULL,
        purchaser_id      TEXT,
        purchaser_email   TEXT,
        purchaser_name    TEXT,
        is_gift           BOOLEAN NOT NULL DEFAULT FALSE,
        gift_message      TEXT,
        payment_status    TEXT NOT NULL DEFAULT 'pending',
        created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (shop_id, order_id, line_item_id)
    )""",
    """CREATE TABLE IF NOT EXISTS registry_activities (
        id           TEXT PRIMARY KEY,
        shop_id      TEXT NOT NULL,
        registry_id  TEXT NOT NULL REFERENCES registries(id),
        type         TEXT NOT NULL,
        description  TEXT NOT NULL DEFAULT '',
        actor_id     TEXT,
        actor_email  TEXT,
        actor_name   TEXT,
        metadata     JSONB NOT NULL DEFAULT '{}',
        created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
    )""",
    """CREATE TABLE IF NOT EXISTS audit_logs (
        id               TEXT PRIMARY KEY,
        shop_id          TEXT NOT NULL,
        action           TEXT NOT NULL,
        resource         TEXT NOT NULL,
        resource_id      TEXT NOT NULL,
        outcome          TEXT NOT NULL,
        metadata         JSONB NOT NULL DEFAULT '{}',
        idempotency_key  TEXT NOT NULL DEFAULT '',
        error            TEXT,
        timestamp        TIMESTAMPTZ NOT NULL DEFAULT now()
    )""",
    """CREATE TABLE IF NOT EXISTS system_jobs (
        id               TEXT PRIMARY KEY,
        type             TEXT NOT NULL,
        shop_id          TEXT NOT NULL,
        payload          JSONB NOT NULL DEFAULT '{}',
        status           TEXT NOT NULL DEFAULT 'pending',
        priority         INT NOT NULL DEFAULT 2,
        run_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
        result           JSONB,
        attempts         INT NOT NULL DEFAULT 0,
        max_attempts     INT NOT NULL DEFAULT 5,
        retry_class      TEXT NOT NULL DEFAULT 'retry_safe',
        idempotency_key  TEXT NOT NULL DEFAULT '',
        error_message    TEXT,
        created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
        started_at       TIMESTAMPTZ,
        completed_at     TIMESTAMPTZ
    )""",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_idem ON audit_logs (idempotency_key)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_shop ON audit_logs (shop_id, timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_system_jobs_due ON system_jobs (status, priority, run_at)",
    "CREATE INDEX IF NOT EXISTS idx_registry_activities_created ON registry_activities (created_at)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp ON audit_logs (timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_registry_items_inv ON registry_items (shop_id, inventory_item_id)",
)


class PostgresStore:
    """psycopg-backed implementation of the ``Store`` protocol."""

    def __init__(self, database_url: str) -> None:
        self._url = database_url

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self._url, row_factory=dict_row)

    def init_tables(self) -> None:
        """Create tables if they don't exist. Idempotent."""
        with self._connect() as conn:
            with conn.transaction():
                for stmt in SCHEMA:
                    conn.execute(stmt)
        logger.info("WishCraft tables initialized")

    @contextmanager
    def transaction(self) -> Iterator[PostgresUnitOfWork]:
        with self._connect() as conn:
            with conn.transaction():
                yield PostgresUnitOfWork(conn)


# ── Row mappers ───────────────────────────────────────────────────────────


def _settings(row: dict[str, Any]) -> ShopSettings:
    return ShopSettings(
        shop_id=row["shop_id"],
        app_active=row["app_active"],
        installed_at=row["installed_at"],
        app_uninstalled_at=row["app_uninstalled_at"],
    )


def _registry(row: dict[str, Any]) -> Registry:
    return Registry(
        id=row["id"],
        shop_id=row["shop_id"],
        title=row["title"],
        status=RegistryStatus(row["status"]),
        customer_id=row["customer_id"],
        customer_email=row["customer_email"],
        customer_first_name=row["customer_first_name"],
        customer_last_name=row["customer_last_name"],
        currency=row["currency"],
        purchased_value=row["purchased_value"],
        updated_at=row["updated_at"],
    )


def _item(row: dict[str, Any]) -> RegistryItem:
    return RegistryItem(
        id=row["id"],
        registry_id=row["registry_id"],
        shop_id=row["shop_id"],
        product_id=row["product_id"],
        variant_id=row["variant_id"],
        inventory_item_id=row["inventory_item_id"],
        product_title=row["product_title"],
        price=row["price"],
        quantity=row["quantity"],
        quantity_purchased=row["quantity_purchased"],
        inventory_tracked=row["inventory_tracked"],
        inventory_quantity=row["inventory_quantity"],
        status=ItemStatus(row["status"]),
        inventory_updated_at=row["inventory_updated_at"],
    )


def _purchase(row: dict[str, Any]) -> Purchase:
    return Purchase(**row)


def _activity(row: dict[str, Any]) -> RegistryActivity:
    return RegistryActivity(**row)


def _audit(row: dict[str, Any]) -> AuditRecord:
    return AuditRecord(**{**row, "outcome": AuditOutcome(row["outcome"])})


def _job(row: dict[str, Any]) -> JobRecord:
    return JobRecord(
        **{
            **row,
            "type": JobType(row["type"]),
            "status": JobStatus(row["status"]),
            "retry_class": RetryClass(row["retry_class"]),
        }
    )


def _lock(for_update: bool) -> str:
    return " FOR UPDATE" if for_update else ""


def _where(filters: dict[str, Any]) -> tuple[sql.Composable, list[Any]]:
    """Build ``col = %s AND ...`` for the non-None filters."""
    clauses = []
    params: list[Any] = []
    for column, value in filters.items():
        if value is None:
            continue
        clauses.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
        params.append(value)
    return sql.SQL(" AND ").join(clauses), params


class PostgresUnitOfWork:
    """SQL for each ``UnitOfWork`` operation on one open transaction."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _one(self, query: Any, params: Iterable[Any] = ()) -> dict[str, Any] | None:
        return self._conn.execute(query, tuple(params)).fetchone()

    def _all(self, query: Any, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
        return self._conn.execute(query, tuple(params)).fetchall()

    def _select(self, table: str, filters: dict[str, Any], suffix: str = "") -> list[dict[str, Any]]:
        where, params = _where(filters)
        query = sql.SQL("SELECT * FROM {} WHERE {}").format(sql.Identifier(table), where)
        if suffix:
            query = query + sql.SQL(" " + suffix)
        return self._all(query, params)

    # ── shops ─────────────────────────────────────────────────────────────

    def ensure_shop(self, shop_id: str) -> ShopSettings:
        self._conn.execute(
            "INSERT INTO shops (shop_id) VALUES (%s) ON CONFLICT (shop_id) DO NOTHING",
            (shop_id,),
        )
        row = self._one(
            """INSERT INTO shop_settings (shop_id) VALUES (%s)
               ON CONFLICT (shop_id) DO UPDATE SET shop_id = EXCLUDED.shop_id
               RETURNING *""",
            (shop_id,),
        )
        return _settings(row)

    def get_shop_settings(self, shop_id: str) -> ShopSettings | None:
        row = self._one("SELECT * FROM shop_settings WHERE shop_id = %s", (shop_id,))
        return _settings(row) if row else None

    def save_shop_settings(self, settings: ShopSettings) -> None:
        self._conn.execute(
            """INSERT INTO shop_settings (shop_id, app_active, installed_at, app_uninstalled_at)
               VALUES (%s, %s, %s, %s)
               ON CONFLICT (shop_id) DO UPDATE SET
                 app_active = EXCLUDED.app_active,
                 app_uninstalled_at = EXCLUDED.app_uninstalled_at""",
            (settings.shop_id, settings.app_active, settings.installed_at, settings.app_uninstalled_at),
        )

    # ── registries ────────────────────────────────────────────────────────

    def get_registry(
        self, shop_id: str, registry_id: str, *, for_update: bool = False
    ) -> Registry | None:
        row = self._one(
            "SELECT * FROM registries WHERE shop_id = %s AND id = %s" + _lock(for_update),
            (shop_id, registry_id),
        )
        return _registry(row) if row else None

    def list_registries(
        self,
        shop_id: str,
        *,
        customer_id: str | None = None,
        statuses: Iterable[RegistryStatus] | None = None,
    ) -> list[Registry]:
        rows = self._select("registries", {"shop_id": shop_id, "customer_id": customer_id})
        wanted = {s.value for s in statuses} if statuses is not None else None
        return [_registry(r) for r in rows if wanted is None or r["status"] in wanted]

    def save_registry(self, registry: Registry) -> None:
        self._conn.execute(
            """INSERT INTO registries
               (id, shop_id, title, status, customer_id, customer_email,
                customer_first_name, customer_last_name, currency, purchased_value, updated_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (id) DO UPDATE SET
                 title = EXCLUDED.title,
                 status = EXCLUDED.status,
                 customer_id = EXCLUDED.customer_id,
                 customer_email = EXCLUDED.customer_email,
                 customer_first_name = EXCLUDED.customer_first_name,
                 customer_last_name = EXCLUDED.customer_last_name,
                 currency = EXCLUDED.currency,
                 purchased_value = EXCLUDED.purchased_value,
                 updated_at = EXCLUDED.updated_at
               WHERE registries.shop_id = EXCLUDED.shop_id""",
            (
                registry.id, registry.shop_id, registry.title, registry.status.value,
                registry.customer_id, registry.customer_email, registry.customer_first_name,
                registry.customer_last_name, registry.currency, registry.purchased_value,
                registry.updated_at,
            ),
        )

    # ── registry items ────────────────────────────────────────────────────

    def get_item(
        self, shop_id: str, item_id: str, *, for_update: bool = False
    ) -> RegistryItem | None:
        row = self._one(
            "SELECT * FROM registry_items WHERE shop_id = %s AND id = %s" + _lock(for_update),
            (shop_id, item_id),
        )
        return _item(row) if row else None

    def list_items(
        self,
        shop_id: str,
        *,
        registry_id: str | None = None,
        product_id: str | None = None,
        variant_id: str | None = None,
        inventory_item_id: str | None = None,
    ) -> list[RegistryItem]:
        rows = self._select(
            "registry_items",
            {
                "shop_id": shop_id,
                "registry_id": registry_id,
                "product_id": product_id,
                "variant_id": variant_id,
                "inventory_item_id": inventory_item_id,
            },
        )
        return [_item(r) for r in rows]

    def save_item(self, item: RegistryItem) -> None:
        self._conn.execute(
            """INSERT INTO registry_items
               (id, registry_id, shop_id, product_id, variant_id, inventory_item_id,
                product_title, price, quantity, quantity_purchased, inventory_tracked,
                inventory_quantity, status, inventory_updated_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (id) DO UPDATE SET
                 product_id = EXCLUDED.product_id,
                 variant_id = EXCLUDED.variant_id,
                 inventory_item_id = EXCLUDED.inventory_item_id,
                 product_title = EXCLUDED.product_title,
                 price = EXCLUDED.price,
                 quantity = EXCLUDED.quantity,
                 quantity_purchased = EXCLUDED.quantity_purchased,
                 inventory_tracked = EXCLUDED.inventory_tracked,
                 inventory_quantity = EXCLUDED.inventory_quantity,
                 status = EXCLUDED.status,
                 inventory_updated_at = EXCLUDED.inventory_updated_at
               WHERE registry_items.shop_id = EXCLUDED.shop_id""",
            (
                item.id, item.registry_id, item.shop_id, item.product_id, item.variant_id,
                item.inventory_item_id, item.product_title, item.price, item.quantity,
                item.quantity_purchased, item.inventory_tracked, item.inventory_quantity,
                item.status.value, item.inventory_updated_at,
            ),
        )

    # ── purchases ─────────────────────────────────────────────────────────

    def find_purchase(self, shop_id: str, order_id: str, line_item_id: str) -> Purchase | None:
        row = self._one(
            """SELECT * FROM registry_purchases
               WHERE shop_id = %s AND order_id = %s AND line_item_id = %s""",
            (shop_id, order_id, line_item_id),
        )
        return _purchase(row) if row else None

    def list_purchases(
        self,
        shop_id: str,
        *,
        order_id: str | None = None,
        purchaser_id: str | None = None,
        registry_id: str | None = None,
    ) -> list[Purchase]:
        rows = self._select(
            "registry_purchases",
            {
                "shop_id": shop_id,
                "order_id": order_id,
                "purchaser_id": purchaser_id,
                "registry_id": registry_id,
            },
        )
        return [_purchase(r) for r in rows]

    def save_purchase(self, purchase: Purchase) -> None:
        self._conn.execute(
            """INSERT INTO registry_purchases
               (id, shop_id, registry_id, registry_item_id, order_id, line_item_id,
                quantity, unit_price, total_amount, currency, purchaser_id,
                purchaser_email, purchaser_name, is_gift, gift_message,
                payment_status, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (id) DO UPDATE SET
                 purchaser_id = EXCLUDED.purchaser_id,
                 purchaser_email = EXCLUDED.purchaser_email,
                 purchaser_name = EXCLUDED.purchaser_name,
                 gift_message = EXCLUDED.gift_message,
                 payment_status = EXCLUDED.payment_status
               WHERE registry_purchases.shop_id = EXCLUDED.shop_id""",
            (
                purchase.id, purchase.shop_id, purchase.registry_id, purchase.registry_item_id,
                purchase.order_id, purchase.line_item_id, purchase.quantity, purchase.unit_price,
                purchase.total_amount, purchase.currency, purchase.purchaser_id,
                purchase.purchaser_email, purchase.purchaser_name, purchase.is_gift,
                purchase.gift_message, purchase.payment_status, purchase.created_at,
            ),
        )

    # ── activities ────────────────────────────────────────────────────────

    def list_activities(
        self,
        shop_id: str,
        *,
        registry_id: str | None = None,
        actor_id: str | None = None,
    ) -> list[RegistryActivity]:
        rows = self._select(
            "registry_activities",
            {"shop_id": shop_id, "registry_id": registry_id, "actor_id": actor_id},
        )
        return [_activity(r) for r in rows]

    def save_activity(self, activity: RegistryActivity) -> None:
        self._conn.execute(
            """INSERT INTO registry_activities
               (id, shop_id, registry_id, type, description, actor_id, actor_email,
                actor_name, metadata, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (id) DO UPDATE SET
                 actor_id = EXCLUDED.actor_id,
                 actor_email = EXCLUDED.actor_email,
                 actor_name = EXCLUDED.actor_name,
                 metadata = EXCLUDED.metadata""",
            (
                activity.id, activity.shop_id, activity.registry_id, activity.type,
                activity.description, activity.actor_id, activity.actor_email,
                activity.actor_name, Jsonb(activity.metadata), activity.created_at,
            ),
        )

    def delete_activities_before(self, cutoff: datetime) -> int:
        cur = self._conn.execute(
            "DELETE FROM registry_activities WHERE created_at < %s", (cutoff,)
        )
        return cur.rowcount

    # ── audit ─────────────────────────────────────────────────────────────

    def append_audit(self, record: AuditRecord) -> None:
        self._conn.execute(
            """INSERT INTO audit_logs
               (id, shop_id, action, resource, resource_id, outcome, metadata,
                idempotency_key, error, timestamp)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                record.id, record.shop_id, record.action, record.resource, record.resource_id,
                record.outcome.value, Jsonb(record.metadata), record.idempotency_key,
                record.error, record.timestamp,
            ),
        )

    def find_audit(self, idempotency_key: str) -> AuditRecord | None:
        if not idempotency_key:
            return None
        row = self._one(
            "SELECT * FROM audit_logs WHERE idempotency_key = %s LIMIT 1", (idempotency_key,)
        )
        return _audit(row) if row else None

    def list_audit(
        self,
        shop_id: str,
        *,
        outcome: AuditOutcome | None = None,
        limit: int = 100,
    ) -> list[AuditRecord]:
        rows = self._select(
            "audit_logs",
            {"shop_id": shop_id, "outcome": outcome.value if outcome else None},
            suffix=f"ORDER BY timestamp DESC LIMIT {int(limit)}",
        )
        return [_audit(r) for r in rows]

    def delete_audit_before(self, cutoff: datetime) -> int:
        cur = self._conn.execute("DELETE FROM audit_logs WHERE timestamp < %s", (cutoff,))
        return cur.rowcount

    # ── jobs ──────────────────────────────────────────────────────────────

    def save_job(self, job: JobRecord) -> None:
        self._conn.execute(
            """INSERT INTO system_jobs
               (id, type, shop_id, payload, status, priority, run_at, result, attempts,
                max_attempts, retry_class, idempotency_key, error_message, created_at,
                started_at, completed_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (id) DO UPDATE SET
                 status = EXCLUDED.status,
                 priority = EXCLUDED.priority,
                 run_at = EXCLUDED.run_at,
                 result = EXCLUDED.result,
                 attempts = EXCLUDED.attempts,
                 error_message = EXCLUDED.error_message,
                 started_at = EXCLUDED.started_at,
                 completed_at = EXCLUDED.completed_at""",
            (
                job.id, job.type.value, job.shop_id, Jsonb(job.payload), job.status.value,
                job.priority, job.run_at, Jsonb(job.result) if job.result is not None else None,
                job.attempts, job.max_attempts, job.retry_class.value, job.idempotency_key,
                job.error_message, job.created_at, job.started_at, job.completed_at,
            ),
        )

    def get_job(self, job_id: str) -> JobRecord | None:
        row = self._one("SELECT * FROM system_jobs WHERE id = %s", (job_id,))
        return _job(row) if row else None

    def find_job(self, idempotency_key: str, job_type: JobType) -> JobRecord | None:
        if not idempotency_key:
            return None
        row = self._one(
            "SELECT * FROM system_jobs WHERE idempotency_key = %s AND type = %s LIMIT 1",
            (idempotency_key, job_type.value),
        )
        return _job(row) if row else None

    def list_jobs(
        self,
        *,
        shop_id: str | None = None,
        statuses: Iterable[JobStatus] | None = None,
        limit: int = 100,
    ) -> list[JobRecord]:
        clauses = ["TRUE"]
        params: list[Any] = []
        if shop_id is not None:
            clauses.append("shop_id = %s")
            params.append(shop_id)
        if statuses is not None:
            clauses.append("status = ANY(%s)")
            params.append([s.value for s in statuses])
        params.append(int(limit))
        rows = self._all(
            "SELECT * FROM system_jobs WHERE " + " AND ".join(clauses)
            + " ORDER BY created_at DESC LIMIT %s",
            params,
        )
        return [_job(r) for r in rows]

    def due_jobs(self, now: datetime, limit: int) -> list[JobRecord]:
        rows = self._all(
            """SELECT * FROM system_jobs
               WHERE status = 'pending' AND run_at <= %s
               ORDER BY priority ASC, run_at ASC
               LIMIT %s
               FOR UPDATE SKIP LOCKED""",
            (now, int(limit)),
        )
        return [_job(r) for r in rows]

    def stale_jobs(self, started_before: datetime, limit: int) -> list[JobRecord]:
        rows = self._all(
            """SELECT * FROM system_jobs
               WHERE status = 'running' AND started_at < %s
               ORDER BY started_at ASC
               LIMIT %s
               FOR UPDATE SKIP LOCKED""",
            (started_before, int(limit)),
        )
        return [_job(r) for r in rows]

    def delete_jobs(self, *, statuses: Iterable[JobStatus], completed_before: datetime) -> int:
        cur = self._conn.execute(
            """DELETE FROM system_jobs
               WHERE status = ANY(%s) AND completed_at < %s""",
            ([s.value for s in statuses], completed_before),
        )
        return cur.rowcount

    # ── tenant-wide ───────────────────────────────────────────────────────

    def delete_shop_rows(self, table: str, shop_id: str) -> int:
        cur = self._conn.execute(
            sql.SQL("DELETE FROM {} WHERE shop_id = %s").format(sql.Identifier(check_table(table))),
            (shop_id,),
        )
        return cur.rowcount

    def count_shop_rows(self, table: str, shop_id: str) -> int:
        row = self._one(
            sql.SQL("SELECT count(*) AS n FROM {} WHERE shop_id = %s").format(
                sql.Identifier(check_table(table))
            ),
            (shop_id,),
        )
        return row["n"] if row else 0
