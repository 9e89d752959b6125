"""customers/create: acknowledged and audited, no registry state changes."""

from __future__ import annotations

from typing import Any

from wishcraft.effects.context import EffectContext
from wishcraft.security.pii import mask_email, mask_identifier
from wishcraft.webhooks.payloads import CustomerPayload


def apply_customer_created(ctx: EffectContext, customer: CustomerPayload) -> dict[str, Any]:
    return {
        "customer": mask_identifier(customer.id),
        "email": mask_email(customer.email),
        "accepts_marketing": customer.accepts_marketing,
    }
