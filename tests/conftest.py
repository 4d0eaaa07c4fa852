"""
Shared fixtures for the fulfillment test suite

Key Components:
1. In-memory SQLite database (StaticPool, shared across threads)
2. Fake S3 client standing in for R2
3. Recording notifiers to observe notification fan-out
4. Seeded users, files and orders
"""

import itertools
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import pytest
from botocore.exceptions import ClientError
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from database import build_session_factory, managed_session
from models import (
    Base, FileModification, FileStatus, Modification, Order, TuningFile, User, YalidineParcel
)
from services.notification_channels import Notifier
from services.notification_events import FileEvent, FileEventKind
from services.object_keys import ObjectKeyGenerator
from services.service_context import ServiceContext
from services.storage_service import PresignedAccessIssuer

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

WEBHOOK_SECRET = "test_yalidine_secret_12345"


def sequential_uuid_factory():
    """Deterministic UUIDs whose first 8 hex chars differ"""
    counter = itertools.count(1)
    return lambda: uuid.UUID(int=next(counter) << 96)


class FakeS3Client:
    """Records presign calls and answers HEAD from an in-memory key set"""

    def __init__(self):
        self.objects = set()
        self.presign_calls = []
        self.fail_presign = False

    def generate_presigned_url(self, operation, Params=None, ExpiresIn=None):
        self.presign_calls.append((operation, Params, ExpiresIn))
        if self.fail_presign:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, operation)
        return f"https://r2.test/{Params['Bucket']}/{Params['Key']}?op={operation}&expires={ExpiresIn}"

    def head_object(self, Bucket=None, Key=None):
        if Key in self.objects:
            return {"ContentLength": 1}
        raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")


class RecordingNotifier(Notifier):
    """Notifier double: records events, optionally fails or only handles READY status events"""

    def __init__(self, name: str, fail_with: Optional[Exception] = None, ready_only: bool = False):
        self.name = name
        self.fail_with = fail_with
        self.ready_only = ready_only
        self.events = []

    def accepts(self, event: FileEvent) -> bool:
        if self.ready_only:
            return event.kind == FileEventKind.STATUS and event.status == FileStatus.READY
        return True

    async def send(self, event: FileEvent) -> Optional[str]:
        self.events.append(event)
        if self.fail_with is not None:
            raise self.fail_with
        return f"{self.name}-{len(self.events)}"


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def storage(fake_s3):
    return PresignedAccessIssuer(
        client=fake_s3,
        bucket="test-bucket",
        expires_in=900,
        max_upload_bytes=10 * 1024 * 1024,
    )


@pytest.fixture
def messaging_notifier():
    return RecordingNotifier("file_admin_telegram")


@pytest.fixture
def email_notifier():
    return RecordingNotifier("email", ready_only=True)


@pytest.fixture
def context(session_factory, storage, messaging_notifier, email_notifier):
    return ServiceContext.build(
        session_factory=session_factory,
        storage=storage,
        notifiers=[messaging_notifier, email_notifier],
        key_generator=ObjectKeyGenerator(uuid_factory=sequential_uuid_factory()),
        notification_timeout=1.0,
        queue_workers=1,
        queue_drain_timeout=5.0,
        site_url="https://shop.test",
        audit_retry_delay=0,
    )


@pytest.fixture
def file_engine(context):
    return context.file_status


def _persist(session_factory, obj):
    with managed_session(session_factory) as session:
        session.add(obj)
        session.flush()
        session.refresh(obj)
    return obj


@pytest.fixture
def admin_user(session_factory):
    return _persist(
        session_factory,
        User(email="ops@shop.test", first_name="Ops", last_name="Admin", is_admin=True),
    )


@pytest.fixture
def customer_user(session_factory):
    return _persist(
        session_factory,
        User(email="karim@example.com", first_name="Karim", last_name="Benali", telegram_chat_id="555001"),
    )


@pytest.fixture
def other_customer(session_factory):
    return _persist(session_factory, User(email="other@example.com", first_name="Other"))


@pytest.fixture
def stage1_modification(session_factory):
    return _persist(session_factory, Modification(code="STAGE1", label="Stage 1"))


@pytest.fixture
def make_file(session_factory, customer_user):
    """Factory for tuning files in a given state"""

    def _make(status: FileStatus = FileStatus.RECEIVED, estimate: Optional[int] = None, owner: User = None, **fields):
        owner = owner or customer_user
        file_id = str(uuid.uuid4())
        tuning_file = TuningFile(
            id=file_id,
            user_id=owner.id,
            original_filename="golf7_tdi.bin",
            r2_key=f"orders/{file_id}/original/golf7_tdi.bin",
            file_size=2 * 1024 * 1024,
            file_type="application/octet-stream",
            status=status.value,
            estimated_processing_time=estimate,
            estimated_time_set_at=datetime.now(timezone.utc) if estimate else None,
            **fields,
        )
        return _persist(session_factory, tuning_file)

    return _make


@pytest.fixture
def file_with_modification(session_factory, make_file, stage1_modification):
    tuning_file = make_file()
    _persist(session_factory, FileModification(file_id=tuning_file.id, modification_id=stage1_modification.id))
    return tuning_file


@pytest.fixture
def make_order(session_factory):
    def _make(order_number: str = "ORD-1001", tracking: Optional[str] = None, cod: bool = False, with_parcel: bool = False):
        order = _persist(
            session_factory,
            Order(
                order_number=order_number,
                tracking_number=tracking,
                is_cash_on_delivery=cod,
                payment_method="COD" if cod else "CARD",
                cod_status="PENDING" if cod else None,
            ),
        )
        if with_parcel:
            _persist(session_factory, YalidineParcel(order_id=order.id, tracking=tracking))
        return order

    return _make
