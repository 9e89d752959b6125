"""WishCraft webhook intake service.

Receives Shopify webhooks for the WishCraft gift registry, verifies and
deduplicates them, applies their effects transactionally, and keeps an
audit trail plus an internal retry queue.
"""

__version__ = "0.4.0"
