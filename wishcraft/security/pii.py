"""PII masking for log output and audit metadata.

Masking applies to what is *logged*; the primary store keeps real values
until a GDPR redaction replaces them. ``PIIMaskingFilter`` is installed
on the root handler by ``configure_logging`` so that an e-mail address
passed to any logger never reaches the log sink in clear text.
"""

from __future__ import annotations

import logging
import re
from typing import Any

EMAIL_PATTERN: re.Pattern[str] = re.compile(
    r"([a-zA-Z0-9._%+\-]+)@([a-zA-Z0-9.\-]+\.[a-zA-Z]{2,})"
)

_MASK = "****"


def mask_email(email: str | None) -> str:
    """``john.doe@example.com`` -> ``jo****@example.com``."""
    if not email:
        return ""
    if "@" not in email:
        return mask_identifier(email)
    local, _, domain = email.partition("@")
    return f"{local[:2]}{_MASK}@{domain}"


def mask_identifier(value: Any, keep: int = 4) -> str:
    """Keep the first ``keep`` characters of an identifier, mask the rest."""
    if value is None:
        return ""
    s = str(value)
    if len(s) <= keep:
        return _MASK
    return s[:keep] + _MASK


def mask_text(text: str) -> str:
    """Mask every e-mail address embedded in free text."""
    return EMAIL_PATTERN.sub(lambda m: f"{m.group(1)[:2]}{_MASK}@{m.group(2)}", text)


class PIIMaskingFilter(logging.Filter):
    """Rewrites log records so formatted messages carry no raw e-mail."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        masked = mask_text(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Install a stream handler with PII masking on the root logger. Idempotent."""
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if any(isinstance(f, PIIMaskingFilter) for f in handler.filters):
            return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    handler.addFilter(PIIMaskingFilter())
    root.addHandler(handler)
