"""Webhook idempotency: key derivation and duplicate suppression.

Security contract:
- Key = SHA-256 over (shop, topic, fingerprint); the fingerprint is the
  provider event id when Shopify sends one, otherwise the SHA-256 of the
  RFC 8785 canonical payload
- Keys are remembered for the retention window (24h by default)
- Duplicates are acknowledged with 200 (provider retries on errors)
- Redis key pattern: webhook:seen:{key}
- If Redis is down, falls back to allowing (fail-open for availability);
  the executor's audit lookup is the durable second line
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from typing import Any, Protocol, runtime_checkable

import jcs
import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400  # 24 hours

_KEY_PREFIX = "webhook:seen"


def payload_fingerprint(payload: Any) -> str:
    """SHA-256 hex of the RFC 8785 canonical JSON of ``payload``."""
    canonical = jcs.canonicalize(payload)
    return hashlib.sha256(canonical).hexdigest()


def derive_idempotency_key(
    shop_id: str,
    topic: str,
    payload: Any,
    event_id: str | None = None,
) -> str:
    """Derive the 64-char idempotency key for one delivery.

    Deterministic: the same shop, topic and event id (or, lacking one, the
    same payload regardless of key order) always yield the same key.
    """
    fingerprint = f"id:{event_id}" if event_id else f"body:{payload_fingerprint(payload)}"
    material = f"{shop_id}|{topic}|{fingerprint}".encode("utf-8")
    return hashlib.sha256(material).hexdigest()


@runtime_checkable
class IdempotencyStore(Protocol):
    """Atomic check-and-mark over idempotency keys."""

    def check_and_mark(self, key: str) -> bool:
        """Return ``True`` if *key* is new (and mark it), ``False`` if seen."""
        ...


class InMemoryIdempotencyStore:
    """Process-local store with TTL expiry, for tests and single-process use."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._ttl = ttl_seconds
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def check_and_mark(self, key: str) -> bool:
        if not key:
            return True
        now = time.time()
        with self._lock:
            expires = self._seen.get(key)
            if expires is not None and expires > now:
                return False
            self._seen[key] = now + self._ttl
            if len(self._seen) > 10000:
                self._evict(now)
            return True

    def _evict(self, now: float) -> None:
        for k in [k for k, exp in self._seen.items() if exp <= now]:
            del self._seen[k]


class RedisIdempotencyStore:
    """Redis SET NX EX store shared by every worker process."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._redis = client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> RedisIdempotencyStore:
        return cls(redis.from_url(redis_url, decode_responses=True), ttl_seconds)

    def check_and_mark(self, key: str) -> bool:
        """Uses Redis SET NX (set-if-not-exists) for atomic check-and-mark."""
        if not key:
            return True  # No key = can't dedup, allow through
        try:
            was_set = self._redis.set(f"{_KEY_PREFIX}:{key}", "1", nx=True, ex=self._ttl)
        except redis.RedisError:
            logger.warning(
                "Redis unavailable for webhook dedup; allowing %s", key[:12], exc_info=True
            )
            return True
        if not was_set:
            logger.info("Duplicate webhook suppressed: %s", key[:12])
            return False
        return True
