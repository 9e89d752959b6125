"""Shared fixtures for the WishCraft webhook test suite."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

from wishcraft.models import Event, Registry, RegistryItem
from wishcraft.security.crypto import GiftMessageCipher
from wishcraft.store.memory import InMemoryStore
from wishcraft.webhooks.executor import HandlerExecutor
from wishcraft.webhooks.idempotency import InMemoryIdempotencyStore, derive_idempotency_key
from wishcraft.webhooks.pipeline import WebhookPipeline
from wishcraft.webhooks.ratelimit import WebhookRateLimiter

WEBHOOK_SECRET = "shopify-test-secret"
SHOP = "test-shop.myshopify.com"
OTHER_SHOP = "other-shop.myshopify.com"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Compute a valid Shopify signature."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def webhook_headers(
    body: bytes, topic: str, shop: str = SHOP, **extra: str
) -> dict[str, str]:
    headers = {
        "X-Shopify-Hmac-Sha256": sign(body),
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
        "Content-Type": "application/json",
    }
    headers.update(extra)
    return headers


def encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode()


def make_event(
    topic: str,
    payload: dict[str, Any],
    shop: str = SHOP,
    *,
    event_id: str | None = None,
    received_at: datetime = FIXED_NOW,
    triggered_at: datetime | None = None,
) -> Event:
    return Event(
        topic=topic,
        shop_id=shop,
        payload=payload,
        received_at=received_at,
        signature_valid=True,
        idempotency_key=derive_idempotency_key(shop, topic, payload, event_id),
        event_id=event_id,
        triggered_at=triggered_at,
    )


def order_payload(
    *,
    order_id: int = 5001,
    registry_id: str = "reg_1",
    item_id: str = "item_1",
    price: str = "25.00",
    quantity: int = 2,
    currency: str = "USD",
    gift_message: str | None = None,
    line_item_id: int = 9001,
) -> dict[str, Any]:
    properties = [
        {"name": "_registry_id", "value": registry_id},
        {"name": "_registry_item_id", "value": item_id},
    ]
    if gift_message is not None:
        properties.append({"name": "_gift_message", "value": gift_message})
    return {
        "id": order_id,
        "name": f"#{order_id}",
        "email": "buyer@example.com",
        "currency": currency,
        "financial_status": "pending",
        "customer": {
            "id": 777,
            "email": "buyer@example.com",
            "first_name": "Ada",
            "last_name": "Lovelace",
        },
        "line_items": [
            {
                "id": line_item_id,
                "title": "Stand Mixer",
                "price": price,
                "quantity": quantity,
                "product_id": 100,
                "variant_id": 200,
                "properties": properties,
            }
        ],
    }


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def cipher() -> GiftMessageCipher:
    return GiftMessageCipher(hashlib.sha256(b"test-encryption-key").digest())


@pytest.fixture
def executor(store, cipher) -> HandlerExecutor:
    return HandlerExecutor(store, cipher=cipher, clock=lambda: FIXED_NOW)


@pytest.fixture
def idempotency() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore(ttl_seconds=86400)


@pytest.fixture
def rate_limiter() -> WebhookRateLimiter:
    return WebhookRateLimiter.from_uri("memory://")


@pytest.fixture
def pipeline(executor, idempotency, rate_limiter) -> WebhookPipeline:
    return WebhookPipeline(
        secret=WEBHOOK_SECRET,
        idempotency=idempotency,
        rate_limiter=rate_limiter,
        executor=executor,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def seed_registry(store):
    """Factory: create a registry with one item in the store."""

    def _seed(
        *,
        shop: str = SHOP,
        registry_id: str = "reg_1",
        item_id: str = "item_1",
        currency: str = "USD",
        customer_id: str | None = "777",
        customer_email: str | None = "owner@example.com",
        inventory_item_id: str | None = "inv_1",
        product_id: str = "100",
        variant_id: str | None = "200",
        inventory_tracked: bool = True,
    ) -> tuple[Registry, RegistryItem]:
        registry = Registry(
            id=registry_id,
            shop_id=shop,
            title="Wedding",
            customer_id=customer_id,
            customer_email=customer_email,
            customer_first_name="Grace",
            customer_last_name="Hopper",
            currency=currency,
        )
        item = RegistryItem(
            id=item_id,
            registry_id=registry_id,
            shop_id=shop,
            product_id=product_id,
            variant_id=variant_id,
            inventory_item_id=inventory_item_id,
            product_title="Stand Mixer",
            price=Decimal("25.00"),
            quantity=3,
            inventory_tracked=inventory_tracked,
            inventory_quantity=10,
        )
        with store.transaction() as uow:
            uow.ensure_shop(shop)
            uow.save_registry(registry)
            uow.save_item(item)
        return registry, item

    return _seed


# ── Helper fixtures ───────────────────────────────────────────────────────


@pytest.fixture
def shop() -> str:
    return SHOP


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture(name="sign")
def sign_fixture():
    """Factory: Shopify signature for a body."""
    return sign


@pytest.fixture(name="webhook_headers")
def webhook_headers_fixture():
    """Factory: signed Shopify headers for a body and topic."""
    return webhook_headers


@pytest.fixture(name="make_event")
def make_event_fixture():
    """Factory: verified Event with a derived idempotency key."""
    return make_event


@pytest.fixture(name="order_payload")
def order_payload_fixture():
    """Factory: orders/create payload with one registry line item."""
    return order_payload


@pytest.fixture(name="encode")
def encode_fixture():
    return encode
