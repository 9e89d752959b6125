"""Topic dispatcher: the closed mapping from Topic to handler spec.

Every ``Topic`` has exactly one ``TopicSpec`` naming its effect, payload
model, rate limit and retry class. The table is checked when this module
is imported, so adding a topic without wiring a handler fails at startup
instead of silently dropping deliveries.

Security contract:
- Unknown topics are a client error (400), never a server error
- Payloads are validated against the topic's model before any effect runs
- Validation messages returned to callers never echo payload content
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pydantic

from wishcraft.effects import (
    EffectContext,
    apply_app_uninstalled,
    apply_customer_created,
    apply_customer_data_request,
    apply_customer_redact,
    apply_inventory_update,
    apply_order_created,
    apply_order_paid,
    apply_product_update,
    apply_shop_redact,
)
from wishcraft.errors import ValidationError
from wishcraft.models import RetryClass
from wishcraft.webhooks import payloads
from wishcraft.webhooks.topics import Topic, normalize_topic

logger = logging.getLogger(__name__)

Effect = Callable[[EffectContext, Any], dict[str, Any]]


@dataclass(frozen=True)
class TopicSpec:
    """How one topic is validated, limited, executed and retried."""

    topic: Topic
    effect: Effect
    model: type[pydantic.BaseModel]
    rate_limit: str
    retry_class: RetryClass = RetryClass.RETRY_SAFE
    resource: str = "webhook"
    resource_id: Callable[[Any], str | None] = lambda p: getattr(p, "id", None)
    # audit under a pseudonymous tenant so no row references the shop afterwards
    pseudonymous_audit: bool = False

    def parse(self, payload: Any) -> pydantic.BaseModel:
        """Validate ``payload`` against the topic's model.

        Raises:
            ValidationError: the payload does not fit the model
        """
        try:
            return self.model.model_validate(payload)
        except pydantic.ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            logger.info("Invalid %s payload; bad fields: %s", self.topic.value, fields)
            raise ValidationError(
                f"invalid {self.topic.value} payload: {', '.join(fields) or 'body'}"
            ) from exc


_GDPR_LIMIT = "5/minute"

TOPIC_SPECS: dict[Topic, TopicSpec] = {
    Topic.ORDERS_CREATE: TopicSpec(
        topic=Topic.ORDERS_CREATE,
        effect=apply_order_created,
        model=payloads.OrderPayload,
        rate_limit="50/minute",
        resource="order",
    ),
    Topic.ORDERS_PAID: TopicSpec(
        topic=Topic.ORDERS_PAID,
        effect=apply_order_paid,
        model=payloads.OrderPayload,
        rate_limit="50/minute",
        resource="order",
    ),
    Topic.PRODUCTS_UPDATE: TopicSpec(
        topic=Topic.PRODUCTS_UPDATE,
        effect=apply_product_update,
        model=payloads.ProductPayload,
        rate_limit="30/minute",
        resource="product",
    ),
    Topic.INVENTORY_LEVELS_UPDATE: TopicSpec(
        topic=Topic.INVENTORY_LEVELS_UPDATE,
        effect=apply_inventory_update,
        model=payloads.InventoryLevelPayload,
        rate_limit="60/minute",
        resource="inventory_level",
        resource_id=lambda p: p.inventory_item_id,
    ),
    Topic.CUSTOMERS_CREATE: TopicSpec(
        topic=Topic.CUSTOMERS_CREATE,
        effect=apply_customer_created,
        model=payloads.CustomerPayload,
        rate_limit="30/minute",
        resource="customer",
    ),
    Topic.CUSTOMERS_DATA_REQUEST: TopicSpec(
        topic=Topic.CUSTOMERS_DATA_REQUEST,
        effect=apply_customer_data_request,
        model=payloads.CustomerDataRequestPayload,
        rate_limit=_GDPR_LIMIT,
        retry_class=RetryClass.COMPLIANCE_CRITICAL,
        resource="customer",
        resource_id=lambda p: p.customer.id,
    ),
    Topic.CUSTOMERS_REDACT: TopicSpec(
        topic=Topic.CUSTOMERS_REDACT,
        effect=apply_customer_redact,
        model=payloads.CustomerRedactPayload,
        rate_limit=_GDPR_LIMIT,
        retry_class=RetryClass.COMPLIANCE_CRITICAL,
        resource="customer",
        resource_id=lambda p: p.customer.id,
    ),
    Topic.SHOP_REDACT: TopicSpec(
        topic=Topic.SHOP_REDACT,
        effect=apply_shop_redact,
        model=payloads.ShopRedactPayload,
        rate_limit=_GDPR_LIMIT,
        retry_class=RetryClass.COMPLIANCE_CRITICAL,
        resource="shop",
        resource_id=lambda p: None,
        pseudonymous_audit=True,
    ),
    Topic.APP_UNINSTALLED: TopicSpec(
        topic=Topic.APP_UNINSTALLED,
        effect=apply_app_uninstalled,
        model=payloads.AppUninstalledPayload,
        rate_limit="2/minute",
        resource="shop",
        resource_id=lambda p: None,
    ),
}


def _check_complete() -> None:
    missing = [t.value for t in Topic if t not in TOPIC_SPECS]
    if missing:
        raise RuntimeError(f"topics without a handler spec: {missing}")
    mismatched = [t.value for t, s in TOPIC_SPECS.items() if s.topic is not t]
    if mismatched:
        raise RuntimeError(f"handler specs registered under the wrong topic: {mismatched}")


_check_complete()


def resolve(raw_topic: str | None) -> TopicSpec:
    """Normalize ``raw_topic`` and return its spec.

    Raises:
        UnknownTopicError: the topic is not supported
    """
    return TOPIC_SPECS[normalize_topic(raw_topic)]
