"""Typed views over Shopify webhook payloads.

Only the fields the effects read are declared; everything else in the
payload is ignored here and kept verbatim on the ``Event``. Shopify
sends numeric ids, the store keeps them as strings.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


# Shopify money fields: non-negative, at most 11 integer digits and 4 decimals.
Money = Annotated[Decimal, Field(ge=0, max_digits=15, decimal_places=4)]


def _id_to_str(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, str)):
        return str(value)
    return value


ShopifyId = Annotated[str, BeforeValidator(_id_to_str)]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ── Orders ────────────────────────────────────────────────────────────────


class LineItemProperty(_Payload):
    name: str
    value: Any = None


class LineItem(_Payload):
    id: ShopifyId
    title: str = ""
    price: Money = Decimal("0")
    quantity: int = Field(default=1, ge=0, le=100_000)
    product_id: ShopifyId | None = None
    variant_id: ShopifyId | None = None
    properties: list[LineItemProperty] = Field(default_factory=list)

    def prop(self, name: str) -> Any:
        for p in self.properties:
            if p.name == name:
                return p.value
        return None


class OrderCustomer(_Payload):
    id: ShopifyId | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @property
    def full_name(self) -> str | None:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or None


class OrderPayload(_Payload):
    id: ShopifyId
    name: str = ""
    email: str | None = None
    currency: str = "USD"
    financial_status: str | None = None
    note: str | None = None
    customer: OrderCustomer | None = None
    line_items: list[LineItem] = Field(default_factory=list)


# ── Catalog ───────────────────────────────────────────────────────────────


class ProductVariant(_Payload):
    id: ShopifyId
    price: Money | None = None
    inventory_quantity: int | None = None
    inventory_management: str | None = None
    inventory_item_id: ShopifyId | None = None


class ProductPayload(_Payload):
    id: ShopifyId
    title: str = ""
    status: str = "active"
    updated_at: datetime | None = None
    variants: list[ProductVariant] = Field(default_factory=list)


class InventoryLevelPayload(_Payload):
    inventory_item_id: ShopifyId
    location_id: ShopifyId | None = None
    available: int | None = None
    updated_at: datetime | None = None


# ── Customers & GDPR ──────────────────────────────────────────────────────


class CustomerPayload(_Payload):
    id: ShopifyId
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    accepts_marketing: bool | None = None


class GdprCustomer(_Payload):
    id: ShopifyId
    email: str | None = None
    phone: str | None = None


class DataRequest(_Payload):
    id: ShopifyId


class CustomerDataRequestPayload(_Payload):
    shop_id: ShopifyId | None = None
    shop_domain: str | None = None
    customer: GdprCustomer
    orders_requested: list[ShopifyId] = Field(default_factory=list)
    data_request: DataRequest | None = None


class CustomerRedactPayload(_Payload):
    shop_id: ShopifyId | None = None
    shop_domain: str | None = None
    customer: GdprCustomer
    orders_to_redact: list[ShopifyId] = Field(default_factory=list)


class ShopRedactPayload(_Payload):
    shop_id: ShopifyId | None = None
    shop_domain: str | None = None


class AppUninstalledPayload(_Payload):
    id: ShopifyId | None = None
    domain: str | None = None
    myshopify_domain: str | None = None
