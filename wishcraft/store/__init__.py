"""Transactional persistence for the webhook pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

from wishcraft.store.base import SHOP_SCOPED_TABLES, Store, UnitOfWork
from wishcraft.store.memory import InMemoryStore

if TYPE_CHECKING:
    from wishcraft.config import Settings

__all__ = ["SHOP_SCOPED_TABLES", "InMemoryStore", "Store", "UnitOfWork", "build_store"]


def build_store(settings: Settings) -> Store:
    """Create the store selected by ``STORE_BACKEND``."""
    if settings.store_backend == "memory":
        return InMemoryStore()
    from wishcraft.store.postgres import PostgresStore

    return PostgresStore(settings.database_url)
