"""Audit/outcome logging for webhook handler invocations.

Security contract:
- One AuditRecord per accepted event, success or failure
- The record goes through the caller's unit of work, so a success record
  commits or rolls back together with the effect it describes
- The WEBHOOK_AUDIT log line carries masked identifiers only; the audit
  table keeps real values until a redaction replaces them
- Error text is truncated before it is stored
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from wishcraft.models import AuditOutcome, AuditRecord, Event, utcnow
from wishcraft.security.pii import mask_identifier, mask_text
from wishcraft.store.base import UnitOfWork

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 500

_LOG_LEVELS = {
    AuditOutcome.SUCCESS: logging.INFO,
    AuditOutcome.FAILED: logging.WARNING,
}


def redacted_tenant(shop_id: str) -> str:
    """Pseudonymous tenant key for records that must outlive a shop redaction."""
    return "redacted:" + hashlib.sha256(shop_id.encode("utf-8")).hexdigest()[:16]


def summarize_error(exc: BaseException) -> str:
    """Short, PII-masked error summary safe to persist."""
    text = f"{type(exc).__name__}: {exc}"
    return mask_text(text)[:_MAX_ERROR_LENGTH]


class AuditLogger:
    """Appends AuditRecords and mirrors each one to the log."""

    def record(
        self,
        uow: UnitOfWork,
        event: Event,
        outcome: AuditOutcome,
        metadata: dict[str, Any] | None = None,
        error: str | None = None,
        *,
        resource: str = "webhook",
        resource_id: str = "",
        tenant: str | None = None,
    ) -> AuditRecord:
        """Append one AuditRecord for ``event`` inside ``uow``.

        ``tenant`` overrides the shop the record is filed under; shop
        redaction uses it to keep its own trace without referencing the shop.
        """
        record = AuditRecord(
            action=f"webhook.{event.topic}",
            resource=resource,
            resource_id=resource_id,
            shop_id=tenant or event.shop_id,
            outcome=outcome,
            metadata=dict(metadata or {}),
            idempotency_key=event.idempotency_key,
            error=error[:_MAX_ERROR_LENGTH] if error else None,
            timestamp=utcnow(),
        )
        uow.append_audit(record)

        logger.log(
            _LOG_LEVELS[outcome],
            "WEBHOOK_AUDIT topic=%s shop=%s resource=%s id=%s outcome=%s key=%s%s",
            event.topic,
            mask_identifier(record.shop_id, keep=8),
            resource,
            mask_identifier(resource_id),
            outcome.value,
            event.idempotency_key[:12],
            f" error={record.error}" if record.error else "",
        )
        return record
