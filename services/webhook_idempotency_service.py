"""
Webhook Idempotency - the Yalidine event ledger

Recording an event is an INSERT ... ON CONFLICT DO NOTHING keyed by the
carrier's event_id. A row that already existed means the event was handled
before and must not touch orders again.
"""

import logging

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import YalidineEvent
from services.yalidine_webhook_parser import CanonicalEvent

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class WebhookIdempotencyService:
    """Ledger writes for inbound carrier events"""

    @staticmethod
    def record_event(session: Session, event: CanonicalEvent) -> bool:
        """Insert the ledger row in the caller's transaction; True when it is new"""
        values = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "occurred_at": event.occurred_at,
            "payload": event.data,
        }

        insert = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)
        if insert is not None:
            result = session.execute(
                insert(YalidineEvent).values(**values).on_conflict_do_nothing(index_elements=["event_id"])
            )
            is_new = result.rowcount == 1
        else:
            # Other backends: savepoint around a plain insert
            try:
                with session.begin_nested():
                    session.add(YalidineEvent(**values))
                is_new = True
            except IntegrityError:
                is_new = False

        if not is_new:
            logger.info(f"🔁 YALIDINE_DUPLICATE_EVENT: {event.event_id} already processed")
        return is_new
