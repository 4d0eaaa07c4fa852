"""
Service Context - every long-lived collaborator, built once at startup

Handlers read the context from app.state instead of module-level singletons,
so tests can assemble one with doubles.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.orm import sessionmaker

from config import Config
from services.audit_logger import AuditLogger
from services.file_status_service import StatusTransitionEngine
from services.notification_channels import Notifier, build_notifiers
from services.notification_dispatcher import NotificationDispatcher
from services.object_keys import ObjectKeyGenerator
from services.shipping_sync_service import ShippingSyncEngine
from services.storage_service import PresignedAccessIssuer
from services.webhook_queue import WebhookWorkQueue
from services.yalidine_ingestion_service import WebhookIngestionGateway

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    session_factory: sessionmaker
    storage: PresignedAccessIssuer
    key_generator: ObjectKeyGenerator
    audit_logger: AuditLogger
    dispatcher: NotificationDispatcher
    file_status: StatusTransitionEngine
    shipping_sync: ShippingSyncEngine
    webhook_queue: WebhookWorkQueue
    ingestion_gateway: WebhookIngestionGateway

    @classmethod
    def build(
        cls,
        session_factory: sessionmaker,
        storage: PresignedAccessIssuer,
        notifiers: Sequence[Notifier],
        key_generator: Optional[ObjectKeyGenerator] = None,
        webhook_secret: Optional[str] = None,
        notification_timeout: float = 10.0,
        queue_max_size: int = 1000,
        queue_workers: int = 2,
        queue_drain_timeout: float = 10.0,
        site_url: Optional[str] = None,
        audit_retry_delay: float = 0.05,
    ) -> "ServiceContext":
        key_generator = key_generator or ObjectKeyGenerator()
        audit_logger = AuditLogger(session_factory, retry_delay=audit_retry_delay)
        dispatcher = NotificationDispatcher(notifiers, timeout=notification_timeout)
        shipping_sync = ShippingSyncEngine()
        webhook_queue = WebhookWorkQueue(
            max_size=queue_max_size, workers=queue_workers, drain_timeout=queue_drain_timeout
        )
        return cls(
            session_factory=session_factory,
            storage=storage,
            key_generator=key_generator,
            audit_logger=audit_logger,
            dispatcher=dispatcher,
            file_status=StatusTransitionEngine(
                session_factory, audit_logger, dispatcher, key_generator, storage, site_url=site_url
            ),
            shipping_sync=shipping_sync,
            webhook_queue=webhook_queue,
            ingestion_gateway=WebhookIngestionGateway(
                session_factory, shipping_sync, webhook_queue, secret=webhook_secret
            ),
        )

    @classmethod
    def from_config(cls, session_factory: sessionmaker, config=Config) -> "ServiceContext":
        context = cls.build(
            session_factory=session_factory,
            storage=PresignedAccessIssuer.from_config(),
            notifiers=build_notifiers(config),
            webhook_secret=config.YALIDINE_WEBHOOK_SECRET,
            notification_timeout=config.NOTIFICATION_TIMEOUT_SECONDS,
            queue_max_size=config.WEBHOOK_QUEUE_MAX_SIZE,
            queue_workers=config.WEBHOOK_QUEUE_WORKERS,
            queue_drain_timeout=config.WEBHOOK_QUEUE_DRAIN_TIMEOUT,
            site_url=config.SITE_URL,
        )
        logger.info(f"✅ SERVICE_CONTEXT_READY: channels={context.dispatcher.channels}")
        return context
