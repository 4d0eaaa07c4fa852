"""
Tuning File Fulfillment - Database Schema
=========================================

Tables backing the fulfillment pipeline:
- Submitted tuning files, their modifications and the append-only audit trail
- Shop orders with their Yalidine shipment mirror
- The Yalidine webhook idempotency ledger
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text, JSON,
    ForeignKey, UniqueConstraint, Index, func
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_file_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class FileStatus(Enum):
    """Tuning file lifecycle states"""
    RECEIVED = "RECEIVED"
    PENDING = "PENDING"
    READY = "READY"


class FileKind(Enum):
    """Stored versions of a tuning file"""
    ORIGINAL = "original"
    MODIFIED = "modified"


class PaymentStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


class OrderStatus(Enum):
    """Shop order lifecycle states"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# ============================================================================
# USERS
# ============================================================================

class User(Base):
    """Platform account (authentication lives outside this service)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    # Set once the customer links the Telegram customer bot
    telegram_chat_id = Column(String(64), nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    files = relationship("TuningFile", back_populates="user")

    @property
    def display_name(self) -> str:
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or (self.email or "")


# ============================================================================
# TUNING FILES
# ============================================================================

class Modification(Base):
    """Catalog of modification types (reference data)"""
    __tablename__ = "modifications"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=False)
    label = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class TuningFile(Base):
    """A submitted ECU file and, once processed, its modified version"""
    __tablename__ = "tuning_files"

    id = Column(String(36), primary_key=True, default=new_file_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    original_filename = Column(String(255), nullable=False)
    r2_key = Column(String(512), nullable=False, unique=True)
    file_size = Column(Integer, nullable=True)
    file_type = Column(String(100), nullable=True)

    modified_filename = Column(String(255), nullable=True)
    modified_r2_key = Column(String(512), nullable=True)
    modified_file_size = Column(Integer, nullable=True)
    modified_file_type = Column(String(100), nullable=True)
    modified_uploaded_at = Column(DateTime(timezone=True), nullable=True)

    # Staged modified upload: URL issued, object not yet confirmed in storage
    pending_modified_filename = Column(String(255), nullable=True)
    pending_modified_r2_key = Column(String(512), nullable=True)
    pending_modified_file_size = Column(Integer, nullable=True)
    pending_modified_file_type = Column(String(100), nullable=True)

    status = Column(String(20), default=FileStatus.RECEIVED.value, nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=True)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)

    # Minutes (5..60); only non-null while status is PENDING
    estimated_processing_time = Column(Integer, nullable=True)
    estimated_time_set_at = Column(DateTime(timezone=True), nullable=True)

    customer_comment = Column(Text, nullable=True)
    dtc_codes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    user = relationship("User", back_populates="files")
    modifications = relationship("FileModification", back_populates="file", cascade="all, delete-orphan")

    @property
    def modification_labels(self) -> list:
        return [link.modification.label for link in self.modifications if link.modification]


class FileModification(Base):
    """Association between a tuning file and requested modifications"""
    __tablename__ = "file_modifications"

    id = Column(Integer, primary_key=True)
    file_id = Column(String(36), ForeignKey("tuning_files.id"), nullable=False, index=True)
    modification_id = Column(Integer, ForeignKey("modifications.id"), nullable=False)

    file = relationship("TuningFile", back_populates="modifications")
    modification = relationship("Modification")

    __table_args__ = (
        UniqueConstraint("file_id", "modification_id", name="uq_file_modification"),
    )


class AuditLog(Base):
    """Append-only trail of every state-affecting action on a tuning file"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    file_id = Column(String(36), nullable=False, index=True)
    actor_id = Column(Integer, nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_file_created", "file_id", "created_at"),
    )


# ============================================================================
# ORDERS & SHIPPING
# ============================================================================

class Order(Base):
    """Shop order shipped through Yalidine"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)
    payment_method = Column(String(30), nullable=True)
    is_cash_on_delivery = Column(Boolean, default=False, nullable=False)
    # Customer-facing status for cash-on-delivery orders
    cod_status = Column(String(20), nullable=True)
    tracking_number = Column(String(100), nullable=True, index=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    parcel = relationship("YalidineParcel", back_populates="order", uselist=False)


class YalidineParcel(Base):
    """Mirror of the carrier's parcel record, at most one per order"""
    __tablename__ = "yalidine_parcels"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    tracking = Column(String(100), nullable=True, index=True)
    label_url = Column(String(512), nullable=True)
    status = Column(String(255), nullable=True)
    recipient_name = Column(String(200), nullable=True)
    recipient_phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    wilaya = Column(String(100), nullable=True)
    commune = Column(String(100), nullable=True)
    last_payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    order = relationship("Order", back_populates="parcel")


class YalidineEvent(Base):
    """Idempotency ledger for inbound Yalidine webhooks, written once per event_id"""
    __tablename__ = "yalidine_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False, index=True)
    occurred_at = Column(DateTime(timezone=True), nullable=True)
    payload = Column(JSON, nullable=False)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
