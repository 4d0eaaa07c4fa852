"""
Yalidine Webhook Ingestion

received -> authenticated -> normalized -> acknowledged -> [worker] deduplicated -> synced

Batches are acknowledged immediately and processed on the work queue; the
legacy single-event shape is small and processed before responding.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import sessionmaker

from database import managed_session
from services.shipping_sync_service import ShippingSyncEngine, SyncOutcome, SyncResult
from services.webhook_idempotency_service import WebhookIdempotencyService
from services.webhook_queue import WebhookWorkQueue
from services.webhook_security_service import WebhookSecurityService
from services.yalidine_webhook_parser import BatchEvent, CanonicalEvent, parse_yalidine_payload

logger = logging.getLogger(__name__)


class WebhookIngestionGateway:
    """Authenticates, normalizes and deduplicates Yalidine deliveries"""

    def __init__(
        self,
        session_factory: sessionmaker,
        sync_engine: ShippingSyncEngine,
        work_queue: WebhookWorkQueue,
        secret: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self._sync_engine = sync_engine
        self._work_queue = work_queue
        self._secret = secret

    async def accept(self, headers: Mapping[str, str], raw_body: bytes) -> Dict[str, Any]:
        """
        Returns the acknowledgement body.

        Raises:
            AuthzError: missing or invalid signature (nothing is written)
            ValidationError: malformed JSON or unknown payload shape
            QueueFullError: batch could not be queued
        """
        WebhookSecurityService.authenticate_yalidine(headers, raw_body, self._secret)
        shape, events = parse_yalidine_payload(raw_body)

        if isinstance(shape, BatchEvent):
            self._work_queue.submit(
                lambda: self.ingest_events(events),
                label=f"yalidine:{shape.event_type}:{len(events)}",
            )
            logger.info(f"📬 YALIDINE_BATCH_ACCEPTED: type={shape.event_type} received={len(shape.events)}")
            return {"ok": True, "received": len(shape.events), "type": shape.event_type}

        outcomes = await asyncio.to_thread(self.ingest_events, events)
        logger.info(f"📬 YALIDINE_LEGACY_PROCESSED: {[outcome.result for outcome in outcomes]}")
        return {"ok": True}

    def ingest_events(self, events: List[CanonicalEvent]) -> List[SyncOutcome]:
        """Process events one by one; a failing event never aborts its siblings"""
        outcomes = []
        for event in events:
            try:
                outcomes.append(self.ingest_event(event))
            except Exception as e:
                logger.error(f"❌ YALIDINE_EVENT_FAILED: event={event.event_id}: {e}", exc_info=True)
                outcomes.append(SyncOutcome(event_id=event.event_id, result=SyncResult.FAILED))
        return outcomes

    def ingest_event(self, event: CanonicalEvent) -> SyncOutcome:
        """Ledger insert and sync share one transaction"""
        with managed_session(self._session_factory) as session:
            if not WebhookIdempotencyService.record_event(session, event):
                return SyncOutcome(event_id=event.event_id, result=SyncResult.DUPLICATE)
            return self._sync_engine.sync(session, event)
