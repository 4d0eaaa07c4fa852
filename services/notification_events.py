"""Structured notification events and per-channel delivery results"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from models import FileStatus, TuningFile, utc_now


class DeliveryStatus(Enum):
    """Notification delivery status"""
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationSkipped(Exception):
    """Raised by a notifier that has nothing to deliver (disabled, unlinked recipient)"""


class FileEventKind(Enum):
    """What happened to the file; channels pick the kinds they deliver"""
    STATUS = "status"
    PRICE_SET = "price_set"
    PAYMENT_CONFIRMED = "payment_confirmed"
    ADMIN_NOTE = "admin_note"


@dataclass
class FileEvent:
    """Enough file/customer data to render every channel's template"""
    file_id: str
    filename: str
    status: FileStatus
    customer_id: int
    customer_name: str
    customer_email: Optional[str] = None
    customer_chat_id: Optional[str] = None
    previous_status: Optional[FileStatus] = None
    estimate_minutes: Optional[int] = None
    url: Optional[str] = None
    modifications: List[str] = field(default_factory=list)
    customer_comment: Optional[str] = None
    file_size: Optional[int] = None
    kind: FileEventKind = FileEventKind.STATUS
    price: Optional[float] = None
    admin_note: Optional[str] = None
    actor_name: Optional[str] = None

    @classmethod
    def from_file(
        cls,
        tuning_file: TuningFile,
        previous_status: Optional[FileStatus] = None,
        url: Optional[str] = None,
        kind: FileEventKind = FileEventKind.STATUS,
        actor_name: Optional[str] = None,
    ) -> "FileEvent":
        """Build from a loaded TuningFile; call inside the session that loaded it"""
        owner = tuning_file.user
        return cls(
            file_id=tuning_file.id,
            filename=tuning_file.original_filename,
            status=FileStatus(tuning_file.status),
            customer_id=owner.id,
            customer_name=owner.display_name,
            customer_email=owner.email,
            customer_chat_id=owner.telegram_chat_id,
            previous_status=previous_status,
            estimate_minutes=tuning_file.estimated_processing_time,
            url=url,
            modifications=tuning_file.modification_labels,
            customer_comment=tuning_file.customer_comment,
            file_size=tuning_file.file_size,
            kind=kind,
            price=float(tuning_file.price) if tuning_file.price is not None else None,
            admin_note=tuning_file.admin_notes,
            actor_name=actor_name,
        )


@dataclass
class ChannelResult:
    """Result of one channel's delivery attempt"""
    channel: str
    status: DeliveryStatus
    message_id: Optional[str] = None
    error: Optional[str] = None
    response_time_ms: Optional[int] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = utc_now()

    @property
    def succeeded(self) -> bool:
        return self.status == DeliveryStatus.SENT
