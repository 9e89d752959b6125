"""Topic effects. Each takes an ``EffectContext`` and a validated payload
and returns the metadata recorded on the event's audit record."""

from wishcraft.effects.context import EffectContext
from wishcraft.effects.customers import apply_customer_created
from wishcraft.effects.gdpr import (
    apply_customer_data_request,
    apply_customer_redact,
    apply_shop_redact,
)
from wishcraft.effects.inventory import apply_inventory_update
from wishcraft.effects.orders import apply_order_created, apply_order_paid
from wishcraft.effects.products import apply_product_update
from wishcraft.effects.shop import apply_app_uninstalled

__all__ = [
    "EffectContext",
    "apply_app_uninstalled",
    "apply_customer_created",
    "apply_customer_data_request",
    "apply_customer_redact",
    "apply_inventory_update",
    "apply_order_created",
    "apply_order_paid",
    "apply_product_update",
    "apply_shop_redact",
]
