"""Webhook signature verification: constant-time HMAC over the raw body.

Security contract:
- Runs on the raw request bytes, before any JSON parsing
- All comparisons use hmac.compare_digest() (no timing side channel)
- Never raises: a missing, blank or malformed header is simply invalid
- Missing secret -> verification always fails (fail-closed)
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-shopify-hmac-sha256"


def compute_signature(body: bytes, secret: str) -> str:
    """Base64-encoded HMAC-SHA256 of ``body`` under ``secret``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_shopify(body: bytes, signature_header: str | None, secret: str) -> bool:
    """Verify a Shopify webhook HMAC-SHA256 signature.

    Shopify sends the base64-encoded digest in ``X-Shopify-Hmac-Sha256``.
    The header is decoded before comparing so that only well-formed,
    correctly sized digests can match.

    Args:
        body: Raw request body bytes
        signature_header: Value of X-Shopify-Hmac-Sha256 header
        secret: Shared webhook secret

    Returns:
        True if the signature is valid
    """
    if not secret:
        logger.warning("SHOPIFY_WEBHOOK_SECRET not set; rejecting webhook")
        return False
    if not signature_header or not isinstance(signature_header, str):
        return False

    try:
        provided = base64.b64decode(signature_header.strip(), validate=True)
    except (binascii.Error, ValueError):
        return False

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected)


def verify_webhook(body: bytes, headers: dict[str, str], secret: str) -> bool:
    """Verify a webhook given its lowercase-keyed request headers."""
    return verify_shopify(body, headers.get(SIGNATURE_HEADER), secret)
