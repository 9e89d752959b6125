"""Exception taxonomy for the webhook pipeline.

Each class maps to exactly one outcome at the HTTP boundary:

- AuthenticationError -> 401, never retried
- ValidationError     -> 400, never retried
- RateLimitError      -> 429, the provider may redeliver
- EffectError         -> 200, retried internally through a JobRecord
"""

from __future__ import annotations


class WishcraftError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(WishcraftError):
    """Required configuration is missing or malformed."""


class AuthenticationError(WishcraftError):
    """Missing or invalid webhook signature."""


class ValidationError(WishcraftError):
    """Malformed payload or missing required field."""


class UnknownTopicError(ValidationError):
    """No handler is registered for the delivered topic."""

    def __init__(self, topic: str) -> None:
        super().__init__(f"no handler registered for topic {topic!r}")
        self.topic = topic


class RateLimitError(WishcraftError):
    """Too many deliveries for one shop and topic in the current window."""

    def __init__(self, shop_id: str, topic: str, retry_after: int) -> None:
        super().__init__(f"rate limit exceeded for {topic}")
        self.shop_id = shop_id
        self.topic = topic
        self.retry_after = retry_after


class EffectError(WishcraftError):
    """A handler effect failed after the event was accepted."""

    def __init__(self, message: str, *, topic: str = "", shop_id: str = "") -> None:
        super().__init__(message)
        self.topic = topic
        self.shop_id = shop_id


class TransientEffectError(EffectError):
    """Database or network failure in a retry-safe effect."""


class ComplianceCriticalError(EffectError):
    """Failure in a GDPR export or redaction effect."""
