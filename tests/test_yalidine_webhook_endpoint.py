"""
Yalidine webhook endpoint tests through the FastAPI app

Batch processing happens on the work queue; leaving the TestClient context
runs the lifespan shutdown, which drains the queue before assertions.
"""

import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from database import managed_session
from models import Order, OrderStatus, YalidineEvent
from services.object_keys import ObjectKeyGenerator
from services.service_context import ServiceContext
from services.webhook_queue import QueueFullError
from tests.conftest import WEBHOOK_SECRET, sequential_uuid_factory
from webhook_server import create_app

REPLAY_PAYLOAD = {
    "type": "parcel_status_updated",
    "events": [{"event_id": "evt-1", "data": {"tracking": "T1", "status": "Livré"}}],
}


def sign(raw: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode("utf-8"), raw, hashlib.sha256).hexdigest()


def signed_post(client, payload=None, raw=None, header="x-yalidine-signature"):
    raw = raw if raw is not None else json.dumps(payload).encode("utf-8")
    return client.post(
        "/webhooks/yalidine",
        content=raw,
        headers={"content-type": "application/json", header: sign(raw)},
    )


def ledger_count(session_factory) -> int:
    with managed_session(session_factory) as session:
        return session.scalar(select(func.count()).select_from(YalidineEvent))


def order_status(session_factory, order_id) -> str:
    with managed_session(session_factory) as session:
        return session.get(Order, order_id).status


@pytest.fixture
def signed_context(session_factory, storage, messaging_notifier, email_notifier):
    return ServiceContext.build(
        session_factory=session_factory,
        storage=storage,
        notifiers=[messaging_notifier, email_notifier],
        key_generator=ObjectKeyGenerator(uuid_factory=sequential_uuid_factory()),
        webhook_secret=WEBHOOK_SECRET,
        queue_workers=1,
        queue_drain_timeout=5.0,
        audit_retry_delay=0,
    )


@pytest.fixture
def app(signed_context):
    return create_app(signed_context)


class TestSubscriptionHandshake:
    def test_crc_token_echoed(self, app):
        with TestClient(app) as client:
            response = client.get("/webhooks/yalidine", params={"subscribe": "1", "crc_token": "abc123"})

        assert response.status_code == 200
        assert response.text == "abc123"
        assert response.headers["content-type"].startswith("text/plain")

    def test_plain_get_is_ok(self, app):
        with TestClient(app) as client:
            response = client.get("/webhooks/yalidine")

        assert response.status_code == 200
        assert response.json() == {"ok": True}


class TestBatchDelivery:
    def test_identical_replay_applies_once(self, app, make_order, session_factory):
        order = make_order(tracking="T1")

        with TestClient(app) as client:
            first = signed_post(client, REPLAY_PAYLOAD)
            second = signed_post(client, REPLAY_PAYLOAD)

        expected_ack = {"ok": True, "received": 1, "type": "parcel_status_updated"}
        assert first.status_code == 200 and first.json() == expected_ack
        assert second.status_code == 200 and second.json() == expected_ack
        assert order_status(session_factory, order.id) == OrderStatus.DELIVERED.value
        assert ledger_count(session_factory) == 1

    def test_alternate_signature_header_accepted(self, app, make_order, session_factory):
        make_order(tracking="T1")

        with TestClient(app) as client:
            response = signed_post(client, REPLAY_PAYLOAD, header="yalidine-signature")

        assert response.status_code == 200
        assert ledger_count(session_factory) == 1

    def test_unknown_order_still_acknowledged(self, app, session_factory):
        with TestClient(app) as client:
            response = signed_post(client, REPLAY_PAYLOAD)

        assert response.status_code == 200
        assert ledger_count(session_factory) == 1

    def test_full_queue_is_not_acknowledged(self, app, signed_context, monkeypatch, session_factory):
        def reject(job, label="job"):
            raise QueueFullError("Webhook queue is full")

        with TestClient(app) as client:
            monkeypatch.setattr(signed_context.webhook_queue, "submit", reject)
            response = signed_post(client, REPLAY_PAYLOAD)

        assert response.status_code == 503
        assert ledger_count(session_factory) == 0


class TestLegacyDelivery:
    def test_legacy_shape_processed_inline(self, app, make_order, session_factory):
        order = make_order(order_number="ORD-7")

        with TestClient(app) as client:
            response = signed_post(client, {"status": "in_transit", "tracking": "T7", "order_id": "ORD-7"})
            status_before_shutdown = order_status(session_factory, order.id)

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert status_before_shutdown == OrderStatus.SHIPPED.value


class TestRejectedDeliveries:
    def test_missing_signature(self, app, session_factory):
        with TestClient(app) as client:
            response = client.post("/webhooks/yalidine", content=json.dumps(REPLAY_PAYLOAD).encode("utf-8"))

        assert response.status_code == 400
        assert ledger_count(session_factory) == 0

    def test_tampered_body(self, app, make_order, session_factory):
        order = make_order(tracking="T1")
        raw = json.dumps(REPLAY_PAYLOAD).encode("utf-8")
        tampered = raw.replace(b"T1", b"T2")

        with TestClient(app) as client:
            response = client.post(
                "/webhooks/yalidine",
                content=tampered,
                headers={"x-yalidine-signature": sign(raw)},
            )

        assert response.status_code == 400
        assert ledger_count(session_factory) == 0
        assert order_status(session_factory, order.id) == OrderStatus.PENDING.value

    def test_malformed_json(self, app):
        with TestClient(app) as client:
            response = signed_post(client, raw=b"{broken")

        assert response.status_code == 400

    def test_unknown_shape(self, app):
        with TestClient(app) as client:
            response = signed_post(client, {"hello": "world"})

        assert response.status_code == 400
