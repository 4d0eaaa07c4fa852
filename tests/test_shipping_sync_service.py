"""
Shipping sync tests: ledger dedup, order resolution, status application and
parcel mirroring
"""

import pytest
from sqlalchemy import func, select

from database import managed_session
from models import Order, OrderStatus, YalidineEvent, YalidineParcel
from services.shipping_sync_service import SyncResult
from services.yalidine_webhook_parser import CanonicalEvent


def event(event_id="evt-1", event_type="parcel_status_updated", data=None, **fields):
    payload = {"event": event_id}
    payload.update(data or {})
    return CanonicalEvent(event_id=event_id, event_type=event_type, data=payload, **fields)


def load_order(session_factory, order_id) -> Order:
    with managed_session(session_factory) as session:
        order = session.get(Order, order_id)
        _ = order.parcel
        return order


def ledger_count(session_factory) -> int:
    with managed_session(session_factory) as session:
        return session.scalar(select(func.count()).select_from(YalidineEvent))


@pytest.fixture
def gateway(context):
    return context.ingestion_gateway


class TestIdempotentIngestion:
    def test_replay_changes_order_once(self, gateway, make_order, session_factory):
        order = make_order(tracking="T1")
        delivered = event(tracking="T1", status_text="Livré")

        first = gateway.ingest_event(delivered)
        delivered_at = load_order(session_factory, order.id).delivered_at
        second = gateway.ingest_event(delivered)

        assert first.result == SyncResult.APPLIED
        assert second.result == SyncResult.DUPLICATE
        stored = load_order(session_factory, order.id)
        assert stored.status == OrderStatus.DELIVERED.value
        assert stored.delivered_at == delivered_at
        assert ledger_count(session_factory) == 1

    def test_failed_sync_leaves_no_ledger_row(self, gateway, context, make_order, session_factory, monkeypatch):
        make_order(tracking="T1")

        def explode(session, canonical):
            raise RuntimeError("db hiccup")

        monkeypatch.setattr(context.shipping_sync, "sync", explode)

        outcomes = gateway.ingest_events([event(tracking="T1", status_text="Livré")])

        assert outcomes[0].result == SyncResult.FAILED
        assert ledger_count(session_factory) == 0

    def test_one_bad_event_does_not_abort_siblings(self, gateway, make_order, session_factory):
        order = make_order(tracking="T2")
        bad = CanonicalEvent(event_id="evt-bad", event_type="parcel_status_updated", data={"x": object()})
        good = event(event_id="evt-good", tracking="T2", status_text="Expédié")

        outcomes = gateway.ingest_events([bad, good])

        assert [outcome.result for outcome in outcomes] == [SyncResult.FAILED, SyncResult.APPLIED]
        assert load_order(session_factory, order.id).status == OrderStatus.SHIPPED.value


class TestOrderResolution:
    def test_resolves_by_parcel_tracking(self, gateway, make_order, session_factory):
        order = make_order(tracking=None)
        with managed_session(session_factory) as session:
            session.add(YalidineParcel(order_id=order.id, tracking="P-77"))

        outcome = gateway.ingest_event(event(tracking="P-77", status_text="Expédié"))

        assert outcome.order_id == order.id

    def test_falls_back_to_order_reference(self, gateway, make_order, session_factory):
        order = make_order(order_number="ORD-42")

        outcome = gateway.ingest_event(event(tracking="NEW-TRACK", order_reference="ORD-42", status_text="Expédié"))

        stored = load_order(session_factory, order.id)
        assert outcome.order_id == order.id
        assert stored.tracking_number == "NEW-TRACK"
        assert stored.parcel.tracking == "NEW-TRACK"

    def test_unknown_order_is_dropped_and_recorded(self, gateway, session_factory):
        outcome = gateway.ingest_event(event(tracking="NOPE", order_reference="ORD-404", status_text="Livré"))

        assert outcome.result == SyncResult.ORDER_NOT_FOUND
        assert ledger_count(session_factory) == 1


class TestStatusApplication:
    def test_shipped_at_set_only_once(self, gateway, make_order, session_factory):
        order = make_order(tracking="T1")

        gateway.ingest_event(event("evt-1", tracking="T1", status_text="Expédié"))
        first_shipped_at = load_order(session_factory, order.id).shipped_at
        gateway.ingest_event(event("evt-2", tracking="T1", status_text="En transit"))

        stored = load_order(session_factory, order.id)
        assert first_shipped_at is not None
        assert stored.shipped_at == first_shipped_at
        assert stored.status == OrderStatus.SHIPPED.value

    def test_deleted_parcel_cancels(self, gateway, make_order, session_factory):
        order = make_order(tracking="T1")

        gateway.ingest_event(event(event_type="parcel_deleted", tracking="T1", status_text="Livré"))

        assert load_order(session_factory, order.id).status == OrderStatus.CANCELLED.value

    def test_cod_status_mirrored(self, gateway, make_order, session_factory):
        order = make_order(tracking="T1", cod=True)

        gateway.ingest_event(event(tracking="T1", status_text="Livré au client"))

        stored = load_order(session_factory, order.id)
        assert stored.cod_status == OrderStatus.DELIVERED.value

    def test_unknown_status_keeps_order_but_mirrors_parcel(self, gateway, make_order, session_factory):
        order = make_order(tracking="T1")

        outcome = gateway.ingest_event(event(tracking="T1", status_text="Alerte météo"))

        stored = load_order(session_factory, order.id)
        assert outcome.result == SyncResult.UNMAPPED
        assert stored.status == OrderStatus.PENDING.value
        assert stored.parcel.status == "Alerte météo"


class TestParcelMirror:
    def test_parcel_created_with_snapshot(self, gateway, make_order, session_factory):
        order = make_order(tracking="T1")
        payload = {"tracking": "T1", "status": "Expédié", "label": "https://yalidine.app/l/1.pdf"}

        gateway.ingest_event(
            event(
                tracking="T1",
                status_text="Expédié",
                label_url="https://yalidine.app/l/1.pdf",
                recipient={
                    "firstname": "Karim",
                    "familyname": "Benali",
                    "contact_phone": "0550000000",
                    "to_wilaya_name": "Alger",
                    "to_commune_name": "Bab Ezzouar",
                },
                data=payload,
            )
        )

        parcel = load_order(session_factory, order.id).parcel
        assert parcel.tracking == "T1"
        assert parcel.label_url == "https://yalidine.app/l/1.pdf"
        assert parcel.status == "Expédié"
        assert parcel.recipient_name == "Karim Benali"
        assert parcel.wilaya == "Alger"
        assert parcel.commune == "Bab Ezzouar"
        assert parcel.last_payload["label"] == "https://yalidine.app/l/1.pdf"

    def test_existing_parcel_is_updated_not_duplicated(self, gateway, make_order, session_factory):
        order = make_order(tracking="T1", with_parcel=True)

        gateway.ingest_event(event("evt-1", tracking="T1", status_text="Expédié"))
        gateway.ingest_event(event("evt-2", tracking="T1", status_text="Livré"))

        with managed_session(session_factory) as session:
            parcels = session.scalars(select(YalidineParcel).where(YalidineParcel.order_id == order.id)).all()
        assert len(parcels) == 1
        assert parcels[0].status == "Livré"
