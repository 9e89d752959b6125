"""Per-shop, per-topic webhook rate limiting.

Fixed windows from the ``limits`` library (the engine under slowapi),
keyed by (shop, topic). Storage is Redis in production so every worker
counts against the same window; ``memory://`` in tests. A storage outage
fails open: rate limiting protects capacity, it is not a correctness
boundary.
"""

from __future__ import annotations

import logging
import math
import time

from limits import RateLimitItem, parse
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from wishcraft.errors import RateLimitError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = "30/minute"


class WebhookRateLimiter:
    """Rejects deliveries beyond a topic's cap within the current window."""

    def __init__(self, storage: Storage) -> None:
        self._limiter = FixedWindowRateLimiter(storage)

    @classmethod
    def from_uri(cls, storage_uri: str) -> WebhookRateLimiter:
        """``redis://host:port/db`` or ``memory://``."""
        return cls(storage_from_string(storage_uri))

    def check(self, shop_id: str, topic: str, limit: str = DEFAULT_LIMIT) -> None:
        """Count one delivery. Raises RateLimitError when over the cap."""
        item: RateLimitItem = parse(limit)
        try:
            allowed = self._limiter.hit(item, "webhook", shop_id, topic)
        except Exception:
            logger.warning(
                "Rate limit storage unavailable; allowing %s for %s", topic, shop_id,
                exc_info=True,
            )
            return
        if allowed:
            return

        retry_after = self._retry_after(item, shop_id, topic)
        logger.warning(
            "Webhook rate limit exceeded: shop=%s topic=%s limit=%s retry_after=%ds",
            shop_id, topic, limit, retry_after,
        )
        raise RateLimitError(shop_id, topic, retry_after)

    def _retry_after(self, item: RateLimitItem, shop_id: str, topic: str) -> int:
        try:
            stats = self._limiter.get_window_stats(item, "webhook", shop_id, topic)
            return max(1, math.ceil(stats.reset_time - time.time()))
        except Exception:
            return item.get_expiry()
