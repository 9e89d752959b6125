"""Gift message encryption (AES-256-GCM).

Gift messages are sentimental, personal text that must be shown back to
the registry owner, so they are encrypted rather than hashed. Each
ciphertext is bound to its purchaser and registry through the GCM
associated data: decrypting it under another context fails.

Stored format::

    v1:<unix_ms>:<nonce_hex>:<aad_hex>:<ciphertext+tag hex>
"""

from __future__ import annotations

import logging
import os
import re
import time

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from wishcraft.errors import ConfigError
from wishcraft.security.pii import mask_identifier

logger = logging.getLogger(__name__)

_VERSION = "v1"
_NONCE_BYTES = 12
MAX_GIFT_MESSAGE_LENGTH = 2000
_MAX_AGE_MS = 5 * 365 * 24 * 60 * 60 * 1000  # older ciphertexts are rejected
ENCRYPTED_PLACEHOLDER = "[ENCRYPTED GIFT MESSAGE]"

_SUSPICIOUS_PATTERNS = (
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"\beval\s*\(", re.IGNORECASE),
    re.compile(r"\bfunction\s*\(", re.IGNORECASE),
)


def derive_key(secret: str, salt: str) -> bytes:
    """Derive a 256-bit key from the configured secret with scrypt."""
    if not secret:
        raise ConfigError("DATA_ENCRYPTION_KEY is required for gift message encryption")
    kdf = Scrypt(salt=salt.encode("utf-8"), length=32, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


def sanitize_gift_message(message: str | None) -> str:
    """Strip script-like content and clamp to the maximum length."""
    if not message:
        return ""
    cleaned = message
    for pattern in _SUSPICIOUS_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()[:MAX_GIFT_MESSAGE_LENGTH]


def _context(purchaser_id: str | None, registry_id: str) -> bytes:
    return f"gift:{purchaser_id or 'guest'}:{registry_id}".encode("utf-8")


class GiftMessageCipher:
    """Encrypts and decrypts gift messages with a key derived once at startup."""

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise ConfigError("gift message key must be 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str, salt: str) -> GiftMessageCipher:
        return cls(derive_key(secret, salt))

    def encrypt(self, message: str, purchaser_id: str | None, registry_id: str) -> str:
        """Return the ciphertext envelope, or ``""`` for an empty message."""
        if not message or not message.strip():
            return ""
        aad = _context(purchaser_id, registry_id)
        nonce = os.urandom(_NONCE_BYTES)
        ct = self._aead.encrypt(nonce, message.encode("utf-8"), aad)
        stamp = int(time.time() * 1000)
        return f"{_VERSION}:{stamp}:{nonce.hex()}:{aad.hex()}:{ct.hex()}"

    def decrypt(self, envelope: str, purchaser_id: str | None, registry_id: str) -> str:
        """Decrypt an envelope; returns a placeholder when it cannot be trusted."""
        if not envelope:
            return ""
        try:
            version, stamp, nonce_hex, aad_hex, ct_hex = envelope.split(":")
            if version != _VERSION:
                raise ValueError(f"unsupported gift message version {version!r}")
            if int(stamp) < int(time.time() * 1000) - _MAX_AGE_MS:
                raise ValueError("gift message too old")
            aad = bytes.fromhex(aad_hex)
            if aad != _context(purchaser_id, registry_id):
                raise ValueError("gift message context mismatch")
            plain = self._aead.decrypt(bytes.fromhex(nonce_hex), bytes.fromhex(ct_hex), aad)
            return plain.decode("utf-8")
        except (ValueError, InvalidTag) as exc:
            logger.warning(
                "Gift message decryption failed purchaser=%s registry=%s: %s",
                mask_identifier(purchaser_id, keep=8),
                mask_identifier(registry_id, keep=8),
                type(exc).__name__,
            )
            return ENCRYPTED_PLACEHOLDER
