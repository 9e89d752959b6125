"""Domain records shared by the pipeline, the effects and the stores.

Events are immutable once received. Everything else is a plain mutable
dataclass owned by whichever store loaded it; stores hand out copies, so
mutating a record has no effect until it is saved inside a transaction.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


# ── Enums ─────────────────────────────────────────────────────────────────


class JobStatus(str, Enum):
    """Lifecycle of a JobRecord. COMPLETED, FAILED and CANCELLED are terminal."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(str, Enum):
    WEBHOOK_RETRY = "webhook_retry"
    CUSTOMER_DATA_EXPORT = "customer_data_export"


class RetryClass(str, Enum):
    """How aggressively a failed effect is retried."""
    RETRY_SAFE = "retry_safe"
    COMPLIANCE_CRITICAL = "compliance_critical"


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class RegistryStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class ItemStatus(str, Enum):
    ACTIVE = "active"
    UNAVAILABLE = "unavailable"


# ── Pipeline records ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Event:
    """A verified inbound webhook delivery."""
    topic: str
    shop_id: str
    payload: dict[str, Any]
    received_at: datetime
    signature_valid: bool
    idempotency_key: str = ""
    event_id: str | None = None
    triggered_at: datetime | None = None

    @property
    def occurred_at(self) -> datetime:
        """Best known time the event happened at the source."""
        return self.triggered_at or self.received_at


@dataclass
class AuditRecord:
    """Append-only trace of one handler invocation."""
    action: str
    resource: str
    resource_id: str
    shop_id: str
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    metadata: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str = ""
    error: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("aud"))


@dataclass
class JobRecord:
    """Durable unit of deferred or retried work."""
    type: JobType
    shop_id: str
    payload: dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    priority: int = 2
    run_at: datetime = field(default_factory=utcnow)
    result: dict[str, Any] | None = None
    attempts: int = 0
    max_attempts: int = 5
    retry_class: RetryClass = RetryClass.RETRY_SAFE
    idempotency_key: str = ""
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    id: str = field(default_factory=lambda: new_id("job"))


# ── Registry domain ───────────────────────────────────────────────────────


@dataclass
class ShopSettings:
    shop_id: str
    app_active: bool = True
    installed_at: datetime = field(default_factory=utcnow)
    app_uninstalled_at: datetime | None = None


@dataclass
class Registry:
    id: str
    shop_id: str
    title: str = ""
    status: RegistryStatus = RegistryStatus.ACTIVE
    customer_id: str | None = None
    customer_email: str | None = None
    customer_first_name: str | None = None
    customer_last_name: str | None = None
    currency: str = "USD"
    purchased_value: Decimal = Decimal("0")
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class RegistryItem:
    id: str
    registry_id: str
    shop_id: str
    product_id: str = ""
    variant_id: str | None = None
    inventory_item_id: str | None = None
    product_title: str = ""
    price: Decimal = Decimal("0")
    quantity: int = 1
    quantity_purchased: int = 0
    inventory_tracked: bool = True
    inventory_quantity: int | None = None
    status: ItemStatus = ItemStatus.ACTIVE
    inventory_updated_at: datetime | None = None


@dataclass
class Purchase:
    shop_id: str
    registry_id: str
    registry_item_id: str
    order_id: str
    line_item_id: str
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    currency: str
    purchaser_id: str | None = None
    purchaser_email: str | None = None
    purchaser_name: str | None = None
    is_gift: bool = False
    gift_message: str | None = None  # ciphertext, never plaintext
    payment_status: str = "pending"
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("pur"))


@dataclass
class RegistryActivity:
    shop_id: str
    registry_id: str
    type: str
    description: str = ""
    actor_id: str | None = None
    actor_email: str | None = None
    actor_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("act"))
