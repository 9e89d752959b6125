"""Supported webhook topics and topic-name normalization.

Shopify spells the same topic several ways depending on where it shows
up: ``orders/create`` in the ``X-Shopify-Topic`` header, ``ORDERS_CREATE``
in GraphQL subscriptions, ``orders.create`` in some configs. All of them
normalize to the same ``Topic`` member.
"""

from __future__ import annotations

import re
from enum import Enum

from wishcraft.errors import UnknownTopicError


class Topic(str, Enum):
    ORDERS_CREATE = "orders/create"
    ORDERS_PAID = "orders/paid"
    PRODUCTS_UPDATE = "products/update"
    INVENTORY_LEVELS_UPDATE = "inventory_levels/update"
    CUSTOMERS_CREATE = "customers/create"
    CUSTOMERS_DATA_REQUEST = "customers/data_request"
    CUSTOMERS_REDACT = "customers/redact"
    SHOP_REDACT = "shop/redact"
    APP_UNINSTALLED = "app/uninstalled"


GDPR_TOPICS = frozenset(
    {Topic.CUSTOMERS_DATA_REQUEST, Topic.CUSTOMERS_REDACT, Topic.SHOP_REDACT}
)

_SEPARATORS = re.compile(r"[^a-z0-9]+")


def _squash(name: str) -> str:
    """Lowercase and drop every separator: ``Orders.Create`` -> ``orderscreate``."""
    return _SEPARATORS.sub("", name.strip().lower())


_BY_SQUASHED: dict[str, Topic] = {_squash(t.value): t for t in Topic}


def normalize_topic(raw: str | None) -> Topic:
    """Map any spelling of a supported topic to its ``Topic``.

    Raises:
        UnknownTopicError: the topic is empty or not supported
    """
    if not raw:
        raise UnknownTopicError("")
    topic = _BY_SQUASHED.get(_squash(raw))
    if topic is None:
        raise UnknownTopicError(raw)
    return topic
