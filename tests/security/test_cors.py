"""P3 MEDIUM: CORS middleware tests.

Verifies CORS middleware honours the configured origin allowlist and never
uses a wildcard.
"""

from __future__ import annotations


class TestCORSPolicy:
    """CORS middleware enforces origin allowlist."""

    def test_cors_allows_configured_origin(self, client):
        resp = client.options(
            "/admin/jobs",
            headers={
                "Origin": "https://admin.shopify.com",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert resp.status_code == 200
        assert resp.headers.get("access-control-allow-origin") == "https://admin.shopify.com"

    def test_cors_rejects_unknown_origin(self, client):
        resp = client.options(
            "/admin/jobs",
            headers={
                "Origin": "https://evil-site.com",
                "Access-Control-Request-Method": "GET",
            },
        )
        allow_origin = resp.headers.get("access-control-allow-origin", "")
        assert allow_origin != "https://evil-site.com"
        assert allow_origin != "*"

    def test_preflight_skips_auth(self, client):
        """OPTIONS never hits the bearer check."""
        resp = client.options(
            "/jobs/process",
            headers={
                "Origin": "https://admin.shopify.com",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.status_code != 401
