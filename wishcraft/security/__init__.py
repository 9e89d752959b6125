"""Security helpers: gift message encryption, PII masking, HTTP middleware."""

from wishcraft.security.crypto import GiftMessageCipher, sanitize_gift_message
from wishcraft.security.pii import (
    PIIMaskingFilter,
    configure_logging,
    mask_email,
    mask_identifier,
)

__all__ = [
    "GiftMessageCipher",
    "PIIMaskingFilter",
    "configure_logging",
    "mask_email",
    "mask_identifier",
    "sanitize_gift_message",
]
