"""
Shipping Sync - reconcile Yalidine parcel events into orders and parcels

Runs inside the transaction that recorded the event in the ledger, so a
failed sync also forgets the ledger row and the carrier's retry replays it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from models import Order, OrderStatus, YalidineParcel, utc_now
from services.yalidine_status_mapper import YalidineStatusMapper
from services.yalidine_webhook_parser import CanonicalEvent

logger = logging.getLogger(__name__)


class SyncResult:
    """Outcome tags for one processed event"""
    APPLIED = "applied"
    UNMAPPED = "unmapped"
    DUPLICATE = "duplicate"
    ORDER_NOT_FOUND = "order_not_found"
    FAILED = "failed"


@dataclass
class SyncOutcome:
    event_id: str
    result: str
    order_id: Optional[int] = None
    order_status: Optional[str] = None


class ShippingSyncEngine:
    """Applies one carrier event to the matching order and its parcel mirror"""

    def __init__(self, mapper=YalidineStatusMapper):
        self._mapper = mapper

    def sync(self, session: Session, event: CanonicalEvent) -> SyncOutcome:
        order = self._resolve_order(session, event)
        if order is None:
            logger.warning(
                f"⚠️ YALIDINE_ORDER_NOT_FOUND: event={event.event_id} "
                f"tracking={event.tracking} order_ref={event.order_reference} - dropped"
            )
            return SyncOutcome(event_id=event.event_id, result=SyncResult.ORDER_NOT_FOUND)

        now = utc_now()
        mapped = self._mapper.map_status(event.status_text, event.event_type)
        if mapped is not None:
            self._apply_status(order, mapped, now)
        else:
            logger.warning(
                f"⚠️ YALIDINE_STATUS_UNMAPPED: event={event.event_id} order={order.order_number} "
                f"status={event.status_text!r} - order status unchanged"
            )

        self._mirror_parcel(session, order, event, now)
        session.flush()

        logger.info(
            f"🚚 YALIDINE_SYNCED: event={event.event_id} order={order.order_number} "
            f"status={order.status} carrier_status={event.status_text!r}"
        )
        return SyncOutcome(
            event_id=event.event_id,
            result=SyncResult.APPLIED if mapped is not None else SyncResult.UNMAPPED,
            order_id=order.id,
            order_status=order.status,
        )

    @staticmethod
    def _resolve_order(session: Session, event: CanonicalEvent) -> Optional[Order]:
        """Tracking number first (order or parcel), then the carrier's order reference"""
        if event.tracking:
            order = session.scalars(
                select(Order)
                .outerjoin(YalidineParcel, YalidineParcel.order_id == Order.id)
                .where(or_(Order.tracking_number == event.tracking, YalidineParcel.tracking == event.tracking))
                .limit(1)
            ).first()
            if order is not None:
                return order

        if event.order_reference:
            return session.scalars(
                select(Order).where(Order.order_number == event.order_reference).limit(1)
            ).first()
        return None

    @staticmethod
    def _apply_status(order: Order, status: OrderStatus, now) -> None:
        previous = order.status
        order.status = status.value
        if status == OrderStatus.SHIPPED and order.shipped_at is None:
            order.shipped_at = now
        if status == OrderStatus.DELIVERED and order.delivered_at is None:
            order.delivered_at = now
        if order.is_cash_on_delivery:
            order.cod_status = status.value
        order.updated_at = now
        if previous != status.value:
            logger.info(f"📦 ORDER_STATUS_CHANGED: order={order.order_number} {previous} -> {status.value}")

    @staticmethod
    def _mirror_parcel(session: Session, order: Order, event: CanonicalEvent, now) -> None:
        parcel = order.parcel
        if parcel is None:
            parcel = YalidineParcel(order_id=order.id, created_at=now)
            session.add(parcel)
            order.parcel = parcel

        if event.tracking:
            # Order and parcel tracking must agree
            parcel.tracking = event.tracking
            order.tracking_number = event.tracking
        if event.label_url:
            parcel.label_url = event.label_url
        if event.status_text:
            parcel.status = event.status_text

        recipient = event.recipient
        if recipient:
            name = " ".join(
                part for part in (recipient.get("firstname"), recipient.get("familyname")) if part
            )
            parcel.recipient_name = name or parcel.recipient_name
            parcel.recipient_phone = recipient.get("contact_phone") or parcel.recipient_phone
            parcel.address = recipient.get("address") or parcel.address
            parcel.wilaya = recipient.get("to_wilaya_name") or parcel.wilaya
            parcel.commune = recipient.get("to_commune_name") or parcel.commune

        parcel.last_payload = event.data
        parcel.updated_at = now
