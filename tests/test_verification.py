"""Tests for Shopify webhook signature verification.

Tests:
- Valid, tampered, missing and malformed signatures
- Fail-closed when no secret is configured
- Header lookup through verify_webhook
"""

from __future__ import annotations

import base64

from hypothesis import given, settings
from hypothesis import strategies as st

from wishcraft.webhooks.verification import (
    SIGNATURE_HEADER,
    compute_signature,
    verify_shopify,
    verify_webhook,
)

SECRET = "shopify-test-secret"


class TestShopifyVerification:
    """Shopify HMAC-SHA256 verification (base64-encoded)."""

    def test_valid_signature(self, sign):
        body = b'{"id": 123, "topic": "orders/create"}'
        assert verify_shopify(body, sign(body), SECRET) is True

    def test_compute_signature_matches_reference(self, sign):
        body = b'{"id": 1}'
        assert compute_signature(body, SECRET) == sign(body)

    def test_invalid_signature(self):
        assert verify_shopify(b'{"id": 123}', "invalid-signature", SECRET) is False

    def test_tampered_body(self, sign):
        sig = sign(b'{"id": 123}')
        assert verify_shopify(b'{"id": 456}', sig, SECRET) is False

    def test_wrong_secret(self, sign):
        body = b'{"id": 1}'
        assert verify_shopify(body, sign(body, "other-secret"), SECRET) is False

    def test_missing_signature(self):
        assert verify_shopify(b"body", None, SECRET) is False

    def test_blank_signature(self):
        assert verify_shopify(b"body", "   ", SECRET) is False

    def test_missing_secret_rejects(self, sign):
        """No secret configured -> always reject (fail-closed)."""
        body = b'{"id": 123}'
        assert verify_shopify(body, sign(body), "") is False

    def test_hex_digest_is_not_accepted(self):
        """Shopify sends base64; a hex digest of the right HMAC must not match."""
        import hashlib
        import hmac

        body = b'{"id": 1}'
        hex_sig = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()
        assert verify_shopify(body, hex_sig, SECRET) is False

    def test_truncated_digest_rejected(self, sign):
        body = b'{"id": 1}'
        raw = base64.b64decode(sign(body))
        short = base64.b64encode(raw[:16]).decode()
        assert verify_shopify(body, short, SECRET) is False

    def test_verify_webhook_reads_lowercase_header(self, sign):
        body = b'{"id": 1}'
        assert verify_webhook(body, {SIGNATURE_HEADER: sign(body)}, SECRET) is True
        assert verify_webhook(body, {}, SECRET) is False


class TestNeverRaises:
    @given(header=st.one_of(st.none(), st.text(max_size=200)), body=st.binary(max_size=200))
    @settings(max_examples=100)
    def test_arbitrary_headers_never_raise(self, header, body):
        assert verify_shopify(body, header, SECRET) in (True, False)

    @given(body=st.binary(max_size=500))
    @settings(max_examples=60)
    def test_own_signature_always_verifies(self, body):
        assert verify_shopify(body, compute_signature(body, SECRET), SECRET) is True
