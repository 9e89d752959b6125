"""Security middleware for FastAPI: bearer auth, CORS, rate limiting.

Middleware ordering (outermost first):
1. CORS -- handles OPTIONS preflight before auth
2. Rate limiting -- slowapi, per client IP on the operator routes
3. Auth -- static bearer tokens for /admin/* and /jobs/*

Webhook routes are public at this layer; their HMAC signature is checked
by the pipeline on the raw body.
"""

from __future__ import annotations

import hmac
import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from wishcraft.config import Settings

logger = logging.getLogger(__name__)

ADMIN_RATE_LIMIT = "60/minute"

# Methods handled by CORS middleware
SKIP_METHODS = frozenset({"OPTIONS", "HEAD"})

# Public endpoints (exact method + path match)
PUBLIC_ALLOWLIST: frozenset[tuple[str, str]] = frozenset({("GET", "/health")})

# Trusted proxy CIDRs -- only trust X-Forwarded-For when set
_TRUSTED_PROXIES = os.environ.get("TRUSTED_PROXIES", "")


def _get_client_ip(request: Request) -> str:
    """Extract client IP, respecting TRUSTED_PROXIES config."""
    if _TRUSTED_PROXIES:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def build_limiter() -> Limiter:
    """One limiter per app so separate app instances never share counters."""
    return Limiter(key_func=_get_client_ip)


def is_webhook_path(path: str) -> bool:
    return path == "/webhooks" or path.startswith("/webhooks/")


def extract_bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def token_matches(presented: str | None, expected: str) -> bool:
    """Constant-time comparison; an unset expected token matches nothing."""
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


class AuthMiddleware(BaseHTTPMiddleware):
    """Require the admin token on /admin/* and the cron secret on /jobs/*.

    Runs BEFORE request body parsing (so unauthenticated POST returns 401 not 422).
    """

    def __init__(self, app, *, admin_token: str, cron_secret: str) -> None:
        super().__init__(app)
        self._admin_token = admin_token
        self._cron_secret = cron_secret

    async def dispatch(self, request: Request, call_next):
        method = request.method
        path = request.url.path

        if method in SKIP_METHODS or (method, path) in PUBLIC_ALLOWLIST:
            return await call_next(request)

        # Webhook endpoints -- public but signature-verified by the pipeline.
        if method == "POST" and is_webhook_path(path):
            return await call_next(request)

        if path.startswith("/admin"):
            expected = self._admin_token
        elif path.startswith("/jobs"):
            expected = self._cron_secret
        else:
            return await call_next(request)

        token = extract_bearer_token(request.headers.get("authorization"))
        if not token:
            return JSONResponse(
                {"error": "Authentication required"},
                status_code=401,
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not token_matches(token, expected):
            logger.warning("Rejected bearer token for %s %s", method, path)
            return JSONResponse(
                {"error": "Invalid credentials"},
                status_code=401,
                headers={"WWW-Authenticate": "Bearer"},
            )
        return await call_next(request)


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors."""
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        {"error": "Rate limit exceeded", "retry_after": retry_after},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


def install_security_middleware(app: FastAPI, settings: Settings, limiter: Limiter) -> None:
    """Install all security middleware on the FastAPI app.

    Call this AFTER all routes are registered but BEFORE the app starts.
    Middleware is added in reverse order (last added = outermost = runs first).
    """
    # 3. Auth middleware (innermost -- runs last, after CORS and rate limit)
    app.add_middleware(
        AuthMiddleware,
        admin_token=settings.admin_api_token,
        cron_secret=settings.cron_secret,
    )

    # 2. Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # 1. CORS middleware (outermost -- runs first, handles OPTIONS preflight)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
