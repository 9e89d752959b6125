"""Webhook intake pipeline, independent of the HTTP framework.

Order of checks:
1. Verify signature on the raw body          -> 401
2. Parse JSON                                -> 400
3. Resolve topic, shop and payload model     -> 400
4. Rate limit per (shop, topic)              -> 429 + Retry-After
5. Duplicate suppression (check-and-mark)    -> 200 duplicate
6. Execute effect + audit in one transaction -> 200 received

The rate check runs before duplicate suppression so a rejected delivery
never marks its idempotency key; Shopify's redelivery of it is processed.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from wishcraft.errors import AuthenticationError, RateLimitError, ValidationError
from wishcraft.models import Event, utcnow
from wishcraft.security.pii import mask_identifier
from wishcraft.webhooks.dispatcher import resolve
from wishcraft.webhooks.executor import ExecutionOutcome, HandlerExecutor
from wishcraft.webhooks.idempotency import IdempotencyStore, derive_idempotency_key
from wishcraft.webhooks.ratelimit import WebhookRateLimiter
from wishcraft.webhooks.verification import verify_webhook

logger = logging.getLogger(__name__)

TOPIC_HEADER = "x-shopify-topic"
SHOP_HEADER = "x-shopify-shop-domain"
EVENT_ID_HEADERS = ("x-shopify-event-id", "x-shopify-webhook-id")
TRIGGERED_AT_HEADER = "x-shopify-triggered-at"

_SHOP_DOMAIN = re.compile(r"^[a-z0-9][a-z0-9\-.]{0,254}$")


@dataclass
class PipelineResult:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


def _parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.strip())
    except ValueError:
        logger.debug("Ignoring unparseable %s header", TRIGGERED_AT_HEADER)
        return None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name} in JSON body")


def _shop_domain(headers: Mapping[str, str], payload: dict[str, Any]) -> str:
    raw = (
        headers.get(SHOP_HEADER)
        or payload.get("shop_domain")
        or payload.get("myshopify_domain")
        or ""
    )
    shop = str(raw).strip().lower()
    if not shop or not _SHOP_DOMAIN.match(shop):
        raise ValidationError("missing or malformed shop domain")
    return shop


def _idempotency_key(shop_id: str, topic: str, payload: Any, event_id: str | None) -> str:
    try:
        return derive_idempotency_key(shop_id, topic, payload, event_id)
    except (ValueError, TypeError, RecursionError) as exc:
        # numbers outside the I-JSON range cannot be canonicalized
        raise ValidationError("payload cannot be canonicalized") from exc


class WebhookPipeline:
    """Verifies, routes, guards and executes one webhook delivery."""

    def __init__(
        self,
        *,
        secret: str,
        idempotency: IdempotencyStore,
        rate_limiter: WebhookRateLimiter,
        executor: HandlerExecutor,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret = secret
        self._idempotency = idempotency
        self._rate_limiter = rate_limiter
        self._executor = executor
        self._clock = clock

    def process(
        self,
        body: bytes,
        headers: Mapping[str, str],
        topic_hint: str | None = None,
    ) -> PipelineResult:
        """Handle one delivery. Never raises; errors map to status codes."""
        start = time.time()
        headers = {k.lower(): v for k, v in headers.items()}
        try:
            result = self._process(body, headers, topic_hint)
        except AuthenticationError:
            logger.warning("WEBHOOK_REJECTED reason=signature")
            return PipelineResult(401, {"status": "unauthorized"})
        except ValidationError as exc:
            logger.info("WEBHOOK_REJECTED reason=invalid detail=%s", exc)
            return PipelineResult(400, {"status": "invalid"})
        except RateLimitError as exc:
            return PipelineResult(
                429,
                {"status": "rate_limited", "retry_after": exc.retry_after},
                {"Retry-After": str(exc.retry_after)},
            )
        logger.debug("Webhook processed in %.1fms", (time.time() - start) * 1000)
        return result

    def _process(
        self, body: bytes, headers: dict[str, str], topic_hint: str | None
    ) -> PipelineResult:
        if not verify_webhook(body, headers, self._secret):
            raise AuthenticationError("invalid webhook signature")

        try:
            payload = json.loads(body, parse_constant=_reject_constant)
        except (ValueError, RecursionError) as exc:
            raise ValidationError("body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ValidationError("body must be a JSON object")

        spec = resolve(headers.get(TOPIC_HEADER) or topic_hint)
        shop_id = _shop_domain(headers, payload)
        model = spec.parse(payload)

        event_id = next((headers[h] for h in EVENT_ID_HEADERS if headers.get(h)), None)
        topic = spec.topic.value
        event = Event(
            topic=topic,
            shop_id=shop_id,
            payload=payload,
            received_at=self._clock(),
            signature_valid=True,
            idempotency_key=_idempotency_key(shop_id, topic, payload, event_id),
            event_id=event_id,
            triggered_at=_parse_timestamp(headers.get(TRIGGERED_AT_HEADER)),
        )

        self._rate_limiter.check(shop_id, topic, spec.rate_limit)

        if not self._idempotency.check_and_mark(event.idempotency_key):
            return self._duplicate(event)

        outcome = self._executor.execute(event, spec, model)
        if outcome is ExecutionOutcome.DUPLICATE:
            return self._duplicate(event)
        if outcome is ExecutionOutcome.REJECTED:
            return PipelineResult(400, {"status": "invalid"})
        return PipelineResult(200, {"status": "received"})

    def _duplicate(self, event: Event) -> PipelineResult:
        logger.info(
            "Duplicate webhook: topic=%s shop=%s key=%s",
            event.topic, mask_identifier(event.shop_id, keep=8), event.idempotency_key[:12],
        )
        return PipelineResult(200, {"status": "duplicate"})
