"""Tests for HandlerExecutor failure handling and audit guarantees."""

from __future__ import annotations

import logging
from datetime import timedelta

import psycopg
import pytest
import redis

from wishcraft.errors import TransientEffectError, ValidationError
from wishcraft.models import AuditOutcome, JobStatus, JobType, RetryClass
from wishcraft.webhooks import dispatcher
from wishcraft.webhooks.dispatcher import resolve
from wishcraft.webhooks.executor import ExecutionOutcome, classify_failure


def _spec_with(topic, effect):
    spec = resolve(topic)
    return dispatcher.TopicSpec(
        topic=spec.topic,
        effect=effect,
        model=spec.model,
        rate_limit=spec.rate_limit,
        retry_class=spec.retry_class,
        resource=spec.resource,
        resource_id=spec.resource_id,
    )


def _exploding(exc):
    def effect(ctx, payload):
        # write something first so rollback is observable
        registry = ctx.uow.get_registry(ctx.shop_id, "reg_1")
        if registry is not None:
            registry.title = "changed"
            ctx.uow.save_registry(registry)
        raise exc

    return effect


class TestFailurePaths:
    def test_validation_error_rejected_without_retry(self, store, executor, seed_registry, make_event, shop):
        seed_registry()
        payload = {"id": 1, "title": "x"}
        spec = _spec_with("products/update", _exploding(ValidationError("bad sku")))
        outcome = executor.execute(make_event("products/update", payload), spec, spec.parse(payload))

        assert outcome is ExecutionOutcome.REJECTED
        with store.transaction() as uow:
            assert uow.list_jobs(shop_id=shop) == []
            audits = uow.list_audit(shop)
            assert uow.get_registry(shop, "reg_1").title == "Wedding"
        assert len(audits) == 1
        assert audits[0].outcome is AuditOutcome.FAILED
        assert "bad sku" in audits[0].error

    def test_unexpected_error_rolls_back_and_schedules_retry(self, store, executor, seed_registry, make_event, shop, now):
        seed_registry()
        payload = {"id": 1}
        spec = _spec_with("products/update", _exploding(RuntimeError("db went away")))
        event = make_event("products/update", payload)
        outcome = executor.execute(event, spec, spec.parse(payload))

        assert outcome is ExecutionOutcome.RETRY_SCHEDULED
        with store.transaction() as uow:
            assert uow.get_registry(shop, "reg_1").title == "Wedding"
            jobs = uow.list_jobs(shop_id=shop)
            audits = uow.list_audit(shop)
        assert len(jobs) == 1
        job = jobs[0]
        assert job.type is JobType.WEBHOOK_RETRY
        assert job.status is JobStatus.PENDING
        assert job.retry_class is RetryClass.RETRY_SAFE
        assert job.idempotency_key == event.idempotency_key
        assert job.run_at == now + timedelta(seconds=60)
        assert job.payload["topic"] == "products/update"
        assert [a.outcome for a in audits] == [AuditOutcome.FAILED]
        assert audits[0].metadata["retry_job_id"] == job.id

    def test_compliance_failure_logs_error(self, store, executor, make_event, shop, caplog):
        payload = {"shop_domain": shop, "customer": {"id": 1}}
        spec = _spec_with("customers/redact", _exploding(RuntimeError("boom")))
        with caplog.at_level(logging.WARNING, logger="wishcraft.webhooks.executor"):
            outcome = executor.execute(make_event("customers/redact", payload), spec, spec.parse(payload))

        assert outcome is ExecutionOutcome.RETRY_SCHEDULED
        failures = [r for r in caplog.records if "Webhook effect failed" in r.getMessage()]
        assert [r.levelno for r in failures] == [logging.ERROR]
        with store.transaction() as uow:
            job = uow.list_jobs(shop_id=shop)[0]
        assert job.priority == 1
        assert job.max_attempts == 10

    def test_retry_safe_failure_logs_warning(self, executor, make_event, caplog):
        payload = {"id": 1}
        spec = _spec_with("products/update", _exploding(RuntimeError("boom")))
        with caplog.at_level(logging.WARNING, logger="wishcraft.webhooks.executor"):
            executor.execute(make_event("products/update", payload), spec, spec.parse(payload))
        failures = [r for r in caplog.records if "Webhook effect failed" in r.getMessage()]
        assert [r.levelno for r in failures] == [logging.WARNING]

    def test_error_text_masks_email(self, store, executor, make_event, shop):
        payload = {"id": 1}
        spec = _spec_with("products/update", _exploding(RuntimeError("lookup failed for jane@example.com")))
        executor.execute(make_event("products/update", payload), spec, spec.parse(payload))
        with store.transaction() as uow:
            audit = uow.list_audit(shop)[0]
            job = uow.list_jobs(shop_id=shop)[0]
        assert "jane@example.com" not in audit.error
        assert "ja****@example.com" in audit.error
        assert "jane@example.com" not in job.error_message


    def test_database_failure_recorded_as_transient(self, store, executor, make_event, shop):
        payload = {"id": 1}
        spec = _spec_with("products/update", _exploding(psycopg.OperationalError("connection refused")))
        outcome = executor.execute(make_event("products/update", payload), spec, spec.parse(payload))

        assert outcome is ExecutionOutcome.RETRY_SCHEDULED
        with store.transaction() as uow:
            job = uow.list_jobs(shop_id=shop)[0]
            audit = uow.list_audit(shop)[0]
        assert job.error_message.startswith("TransientEffectError: connection refused")
        assert audit.error.startswith("TransientEffectError")


class TestClassifyFailure:
    def test_network_errors_become_transient(self, make_event):
        event = make_event("products/update", {"id": 1})
        for cause in (redis.ConnectionError("down"), TimeoutError("slow"), psycopg.OperationalError("gone")):
            error = classify_failure(cause, event)
            assert isinstance(error, TransientEffectError)
            assert error.__cause__ is cause
            assert error.topic == "products/update"
            assert error.shop_id == event.shop_id

    def test_other_errors_pass_through(self, make_event):
        event = make_event("products/update", {"id": 1})
        cause = RuntimeError("bug")
        assert classify_failure(cause, event) is cause

class TestAuditGuarantees:
    def test_one_audit_per_event(self, store, executor, make_event, shop):
        payload = {"id": 42, "email": "a@example.com"}
        spec = resolve("customers/create")
        event = make_event("customers/create", payload)
        outcomes = [executor.execute(event, spec, spec.parse(payload)) for _ in range(3)]
        assert outcomes == [
            ExecutionOutcome.APPLIED,
            ExecutionOutcome.DUPLICATE,
            ExecutionOutcome.DUPLICATE,
        ]
        with store.transaction() as uow:
            assert len(uow.list_audit(shop)) == 1

    def test_audit_action_and_key(self, store, executor, make_event, shop):
        payload = {"id": 42}
        spec = resolve("customers/create")
        event = make_event("customers/create", payload)
        executor.execute(event, spec, spec.parse(payload))
        with store.transaction() as uow:
            audit = uow.find_audit(event.idempotency_key)
        assert audit.action == "webhook.customers/create"
        assert audit.resource == "customer"
        assert audit.shop_id == shop

    def test_first_event_creates_shop(self, store, executor, make_event, shop):
        payload = {"id": 42}
        spec = resolve("customers/create")
        executor.execute(make_event("customers/create", payload), spec, spec.parse(payload))
        with store.transaction() as uow:
            settings = uow.get_shop_settings(shop)
        assert settings is not None
        assert settings.app_active is True

    def test_replay_writes_no_audit(self, store, executor, make_event, shop):
        payload = {"id": 42}
        spec = resolve("customers/create")
        event = make_event("customers/create", payload)
        metadata = executor.replay(event, spec)
        assert metadata["customer"] == "****"
        with store.transaction() as uow:
            assert uow.list_audit(shop) == []

    def test_replay_raises(self, executor, make_event):
        payload = {"id": 1}
        spec = _spec_with("products/update", _exploding(RuntimeError("still down")))
        with pytest.raises(RuntimeError):
            executor.replay(make_event("products/update", payload), spec)
