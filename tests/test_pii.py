"""PII masking helpers and the logging filter."""

from __future__ import annotations

import logging

import pytest

from wishcraft.security.pii import (
    PIIMaskingFilter,
    mask_email,
    mask_identifier,
    mask_text,
)


@pytest.mark.parametrize(
    "email,expected",
    [
        ("john.doe@example.com", "jo****@example.com"),
        ("a@b.io", "a****@b.io"),
        ("", ""),
        (None, ""),
        ("no-at-sign", "no-a****"),
    ],
)
def test_mask_email(email, expected):
    assert mask_email(email) == expected


def test_mask_identifier():
    assert mask_identifier(123456789) == "1234****"
    assert mask_identifier("abc") == "****"
    assert mask_identifier(None) == ""
    assert mask_identifier("test-shop.myshopify.com", keep=8) == "test-sho****"


def test_mask_text_masks_every_address():
    text = "from alice@example.com to bob@example.org"
    assert mask_text(text) == "from al****@example.com to bo****@example.org"


class TestFilter:
    def _record(self, msg, *args):
        return logging.LogRecord("t", logging.INFO, __file__, 1, msg, args, None)

    def test_masks_formatted_args(self):
        record = self._record("customer %s signed up", "jane@example.com")
        assert PIIMaskingFilter().filter(record) is True
        assert record.getMessage() == "customer ja****@example.com signed up"

    def test_leaves_clean_records_alone(self):
        record = self._record("processed %d jobs", 3)
        PIIMaskingFilter().filter(record)
        assert record.args == (3,)

    def test_caplog_never_sees_raw_email(self, caplog):
        logger = logging.getLogger("wishcraft.test.pii")
        handler_filter = PIIMaskingFilter()
        caplog.handler.addFilter(handler_filter)
        try:
            with caplog.at_level(logging.INFO, logger="wishcraft.test.pii"):
                logger.info("export for %s", "owner@example.com")
        finally:
            caplog.handler.removeFilter(handler_filter)
        assert "owner@example.com" not in caplog.text
        assert "ow****@example.com" in caplog.text
