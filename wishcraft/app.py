"""Application factory and entry point.

``create_app()`` wires settings, store, idempotency store, rate limiter,
executor and job processor into one FastAPI app. Every collaborator can
be injected, which is how the tests run the full HTTP surface against
in-memory backends.
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI

from wishcraft import __version__
from wishcraft.config import Settings
from wishcraft.jobs.processor import JobProcessor
from wishcraft.security.crypto import GiftMessageCipher
from wishcraft.security.middleware import build_limiter, install_security_middleware
from wishcraft.security.pii import configure_logging
from wishcraft.store import Store, build_store
from wishcraft.webhooks.executor import HandlerExecutor
from wishcraft.webhooks.handlers import (
    register_admin_routes,
    register_job_routes,
    register_webhook_routes,
)
from wishcraft.webhooks.idempotency import IdempotencyStore, RedisIdempotencyStore
from wishcraft.webhooks.pipeline import WebhookPipeline
from wishcraft.webhooks.ratelimit import WebhookRateLimiter

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    store: Store | None = None,
    idempotency: IdempotencyStore | None = None,
    rate_limiter: WebhookRateLimiter | None = None,
    cipher: GiftMessageCipher | None = None,
) -> FastAPI:
    settings = (settings or Settings.from_env()).validate()

    store = store or build_store(settings)
    idempotency = idempotency or RedisIdempotencyStore.from_url(
        settings.redis_url, settings.idempotency_ttl_seconds
    )
    rate_limiter = rate_limiter or WebhookRateLimiter.from_uri(settings.redis_url)
    cipher = cipher or GiftMessageCipher.from_secret(
        settings.data_encryption_key, settings.data_encryption_salt
    )

    executor = HandlerExecutor(store, cipher=cipher)
    pipeline = WebhookPipeline(
        secret=settings.shopify_webhook_secret,
        idempotency=idempotency,
        rate_limiter=rate_limiter,
        executor=executor,
    )
    processor = JobProcessor(store, executor, cipher=cipher)
    limiter = build_limiter()

    app = FastAPI(title="WishCraft Webhooks", version=__version__)
    app.state.store = store
    app.state.processor = processor

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    register_webhook_routes(app, pipeline)
    register_job_routes(app, store, processor, batch_size=settings.job_batch_size)
    register_admin_routes(app, store, processor, limiter)
    install_security_middleware(app, settings, limiter)
    return app


def main() -> None:
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    if settings.store_backend == "postgres":
        from wishcraft.store.postgres import PostgresStore

        store = PostgresStore(settings.database_url)
        store.init_tables()
        app = create_app(settings, store=store)
    else:
        app = create_app(settings)
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
