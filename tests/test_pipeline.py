"""End-to-end checks of WebhookPipeline.process without HTTP."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from wishcraft.errors import RateLimitError
from wishcraft.webhooks.pipeline import WebhookPipeline

INVENTORY = "inventory_levels/update"


def _inventory(available=0):
    return {"inventory_item_id": "inv_1", "available": available}


class TestRejections:
    def test_bad_signature_401_and_nothing_written(self, pipeline, store, encode, webhook_headers, shop):
        body = encode(_inventory())
        headers = webhook_headers(body, INVENTORY)
        headers["X-Shopify-Hmac-Sha256"] = "bm90LWEtc2lnbmF0dXJl"
        result = pipeline.process(body, headers)
        assert result.status_code == 401
        with store.transaction() as uow:
            assert uow.list_audit(shop) == []
            assert uow.get_shop_settings(shop) is None

    def test_missing_signature_401(self, pipeline, encode, shop):
        body = encode(_inventory())
        result = pipeline.process(body, {"X-Shopify-Topic": INVENTORY, "X-Shopify-Shop-Domain": shop})
        assert result.status_code == 401

    def test_signature_over_different_body_401(self, pipeline, encode, webhook_headers):
        headers = webhook_headers(encode(_inventory(5)), INVENTORY)
        assert pipeline.process(encode(_inventory(0)), headers).status_code == 401

    def test_invalid_json_400(self, pipeline, webhook_headers):
        body = b"{not json"
        assert pipeline.process(body, webhook_headers(body, INVENTORY)).status_code == 400

    def test_json_array_400(self, pipeline, webhook_headers):
        body = b"[1, 2]"
        assert pipeline.process(body, webhook_headers(body, INVENTORY)).status_code == 400

    def test_unknown_topic_400(self, pipeline, encode, webhook_headers):
        body = encode({"id": 1})
        result = pipeline.process(body, webhook_headers(body, "carts/update"))
        assert result.status_code == 400
        assert result.body == {"status": "invalid"}

    def test_missing_shop_400(self, pipeline, encode, webhook_headers):
        body = encode(_inventory())
        headers = webhook_headers(body, INVENTORY)
        del headers["X-Shopify-Shop-Domain"]
        assert pipeline.process(body, headers).status_code == 400

    def test_malformed_payload_400_without_echo(self, pipeline, encode, webhook_headers):
        body = encode({"available": "lots", "secret_note": "do-not-echo"})
        result = pipeline.process(body, webhook_headers(body, INVENTORY))
        assert result.status_code == 400
        assert "do-not-echo" not in str(result.body)


class TestAcceptance:
    def test_received(self, pipeline, seed_registry, encode, webhook_headers, store, shop):
        seed_registry()
        body = encode(_inventory(0))
        result = pipeline.process(body, webhook_headers(body, INVENTORY))
        assert (result.status_code, result.body) == (200, {"status": "received"})
        with store.transaction() as uow:
            assert uow.get_item(shop, "item_1").inventory_quantity == 0

    def test_topic_from_path_when_header_missing(self, pipeline, encode, webhook_headers):
        body = encode(_inventory())
        headers = webhook_headers(body, INVENTORY)
        del headers["X-Shopify-Topic"]
        assert pipeline.process(body, headers, topic_hint="inventory-levels/update").status_code == 200

    def test_shop_from_payload_when_header_missing(self, pipeline, encode, webhook_headers, store, shop):
        body = encode({"shop_domain": shop})
        headers = webhook_headers(body, "shop/redact")
        del headers["X-Shopify-Shop-Domain"]
        assert pipeline.process(body, headers).status_code == 200

    def test_duplicate_delivery(self, pipeline, encode, webhook_headers, store, shop):
        body = encode({"id": 42})
        headers = webhook_headers(body, "customers/create", **{"X-Shopify-Event-Id": "evt-1"})
        assert pipeline.process(body, headers).body == {"status": "received"}
        assert pipeline.process(body, headers).body == {"status": "duplicate"}
        with store.transaction() as uow:
            assert len(uow.list_audit(shop)) == 1

    def test_durable_dedup_when_fast_path_forgets(self, pipeline, idempotency, encode, webhook_headers, store, shop):
        body = encode({"id": 42})
        headers = webhook_headers(body, "customers/create")
        pipeline.process(body, headers)
        idempotency._seen.clear()
        assert pipeline.process(body, headers).body == {"status": "duplicate"}
        with store.transaction() as uow:
            assert len(uow.list_audit(shop)) == 1

    def test_effect_failure_still_200(self, pipeline, seed_registry, encode, webhook_headers, order_payload, store, shop, monkeypatch):
        seed_registry()
        monkeypatch.setattr(pipeline._executor, "_cipher", None)
        body = encode(order_payload(gift_message="hello"))
        result = pipeline.process(body, webhook_headers(body, "orders/create"))
        assert result.status_code == 200
        with store.transaction() as uow:
            assert len(uow.list_jobs(shop_id=shop)) == 1

    def test_gdpr_mismatch_400(self, pipeline, encode, webhook_headers):
        body = encode({"shop_domain": "someone-else.myshopify.com"})
        assert pipeline.process(body, webhook_headers(body, "shop/redact")).status_code == 400


class TestRateLimiting:
    def test_thirty_first_product_update_rejected(self, pipeline, encode, webhook_headers):
        statuses = []
        for n in range(31):
            body = encode({"id": n, "title": f"p{n}"})
            statuses.append(pipeline.process(body, webhook_headers(body, "products/update")).status_code)
        assert statuses[:30] == [200] * 30
        assert statuses[30] == 429

    def test_429_carries_retry_after(self, pipeline, encode, webhook_headers):
        for n in range(3):
            body = encode({"id": n})
            result = pipeline.process(body, webhook_headers(body, "app/uninstalled"))
        assert result.status_code == 429
        assert int(result.headers["Retry-After"]) >= 1
        assert result.body["status"] == "rate_limited"

    def test_rate_limited_delivery_is_not_marked_seen(self, executor, idempotency, encode, webhook_headers, now):
        limiter = MagicMock()
        limiter.check.side_effect = [RateLimitError("s", "customers/create", 10), None]
        pipeline = WebhookPipeline(
            secret="shopify-test-secret",
            idempotency=idempotency,
            rate_limiter=limiter,
            executor=executor,
            clock=lambda: now,
        )
        body = encode({"id": 42})
        headers = webhook_headers(body, "customers/create")
        assert pipeline.process(body, headers).status_code == 429
        assert pipeline.process(body, headers).body == {"status": "received"}

    @pytest.mark.parametrize("topic", ["shop/redact", "customers/redact", "customers/data_request"])
    def test_gdpr_topics_capped_at_five(self, pipeline, encode, webhook_headers, shop, topic):
        codes = []
        for n in range(6):
            payload = {"shop_domain": shop, "customer": {"id": n}, "nonce": n}
            body = encode(payload)
            codes.append(pipeline.process(body, webhook_headers(body, topic)).status_code)
        assert codes[-1] == 429
        assert 429 not in codes[:5]


class TestHostileBodies:
    @pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_number_400(self, pipeline, webhook_headers, shop, constant):
        body = f'{{"shop_domain": "{shop}", "shop_id": 1, "note": {constant}}}'.encode()
        result = pipeline.process(body, webhook_headers(body, "shop/redact"))
        assert result.status_code == 400

    def test_non_finite_number_with_event_id_400(self, pipeline, webhook_headers, shop):
        body = f'{{"shop_domain": "{shop}", "note": NaN}}'.encode()
        headers = webhook_headers(body, "shop/redact", **{"X-Shopify-Event-Id": "evt-nan"})
        assert pipeline.process(body, headers).status_code == 400

    def test_uncanonicalizable_payload_400(self, pipeline, encode, webhook_headers, monkeypatch):
        def boom(_payload):
            raise ValueError("number out of range")

        monkeypatch.setattr("wishcraft.webhooks.idempotency.jcs.canonicalize", boom)
        body = encode({"id": 1})
        assert pipeline.process(body, webhook_headers(body, "customers/create")).status_code == 400

    def test_deeply_nested_body_400(self, pipeline, webhook_headers):
        body = b'{"id": 1, "x": ' + b"[" * 100_000 + b"]" * 100_000 + b"}"
        assert pipeline.process(body, webhook_headers(body, "customers/create")).status_code == 400

    @pytest.mark.parametrize("price", ["-5.00", 1e30, "12.345678"])
    def test_out_of_range_price_400_without_retry(
        self, pipeline, seed_registry, encode, webhook_headers, order_payload, store, shop, price
    ):
        seed_registry()
        payload = order_payload()
        payload["line_items"][0]["price"] = price
        body = encode(payload)
        assert pipeline.process(body, webhook_headers(body, "orders/create")).status_code == 400
        with store.transaction() as uow:
            assert uow.list_jobs(shop_id=shop) == []
            assert uow.get_registry(shop, "reg_1").purchased_value == 0
