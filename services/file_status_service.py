"""
Tuning File Status Service

Validates and applies file status transitions and the operations around a
file's lifecycle (upload, estimate, modified-file attach, price, payment,
admin notes, download).

Ordering for every mutating operation:
    validate -> mutate (one transaction) -> audit -> notify
Validation failures leave no trace: nothing is written, audited or sent.

Database and storage calls block, so the async operations run them in worker
threads and keep the event loop free for other requests.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from database import managed_session
from models import (
    FileKind,
    FileModification,
    FileStatus,
    Modification,
    PaymentStatus,
    TuningFile,
    User,
    new_file_id,
    utc_now,
)
from services.audit_logger import AuditAction, AuditLogger
from services.notification_dispatcher import NotificationDispatcher
from services.notification_events import ChannelResult, FileEvent, FileEventKind
from services.object_keys import ObjectKeyGenerator
from services.storage_service import PresignedAccessIssuer
from utils.exceptions import AuthzError, ConflictError, NotFoundError, ValidationError
from utils.file_state_machine import FileStateValidator
from utils.normalizers import safe_basename

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class FileSnapshot:
    """State of a file after an operation, plus the notification outcome"""
    id: str
    status: FileStatus
    estimated_processing_time: Optional[int]
    estimated_time_set_at: Optional[datetime]
    modified_filename: Optional[str]
    updated_at: Optional[datetime]
    price: Optional[Decimal] = None
    payment_status: Optional[str] = None
    admin_notes: Optional[str] = None
    notifications: List[ChannelResult] = field(default_factory=list)

    @classmethod
    def from_file(cls, tuning_file: TuningFile) -> "FileSnapshot":
        return cls(
            id=tuning_file.id,
            status=FileStatus(tuning_file.status),
            estimated_processing_time=tuning_file.estimated_processing_time,
            estimated_time_set_at=tuning_file.estimated_time_set_at,
            modified_filename=tuning_file.modified_filename,
            updated_at=tuning_file.updated_at,
            price=tuning_file.price,
            payment_status=tuning_file.payment_status,
            admin_notes=tuning_file.admin_notes,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "estimatedProcessingTime": self.estimated_processing_time,
            "estimatedTimeSetAt": _iso(self.estimated_time_set_at),
            "modifiedFilename": self.modified_filename,
            "price": float(self.price) if self.price is not None else None,
            "paymentStatus": self.payment_status,
            "adminNotes": self.admin_notes,
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class UploadTicket:
    """Presigned PUT issued for a file whose record already exists"""
    file_id: str
    upload_url: str
    r2_key: str
    expires_in: int
    file: Optional[FileSnapshot] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "fileId": self.file_id,
            "uploadUrl": self.upload_url,
            "r2Key": self.r2_key,
            "expiresIn": self.expires_in,
        }
        if self.file is not None:
            payload["file"] = self.file.to_dict()
        return payload


@dataclass
class DownloadLink:
    url: str
    filename: str
    expires_in: int

    def to_dict(self) -> Dict[str, Any]:
        return {"downloadUrl": self.url, "filename": self.filename, "expiresIn": self.expires_in}


class StatusTransitionEngine:
    """Single entry point for every tuning file mutation"""

    VALID_TRANSITIONS = FileStateValidator.VALID_TRANSITIONS
    MIN_ESTIMATE_MINUTES = 5
    MAX_ESTIMATE_MINUTES = 60
    # Numeric(10, 2)
    MAX_PRICE = Decimal("99999999.99")
    MAX_ADMIN_NOTES_LENGTH = 2000

    def __init__(
        self,
        session_factory: sessionmaker,
        audit_logger: AuditLogger,
        dispatcher: NotificationDispatcher,
        key_generator: ObjectKeyGenerator,
        storage: PresignedAccessIssuer,
        site_url: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self._audit_logger = audit_logger
        self._dispatcher = dispatcher
        self._key_generator = key_generator
        self._storage = storage
        self._site_url = (site_url or "").rstrip("/")

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def transition(
        self,
        file_id: str,
        requested_status: Union[str, FileStatus],
        acting_user: Optional[User],
        estimate_minutes: Optional[int] = None,
    ) -> FileSnapshot:
        """
        Move a file along one allowed edge.

        Raises:
            AuthzError: caller is not an admin
            ValidationError: unknown status, illegal edge or bad estimate
            NotFoundError: unknown file
            ConflictError: the status changed concurrently
        """
        self._require_admin(acting_user)
        target = self._coerce_status(requested_status)
        estimate = self._validate_estimate(estimate_minutes)
        if estimate is not None and target != FileStatus.PENDING:
            raise ValidationError("An estimated processing time can only be set on PENDING files")

        current, snapshot, event = await asyncio.to_thread(self._apply_transition, file_id, target, estimate)

        logger.info(f"✅ STATUS_CHANGED: file={file_id} {current.value} -> {target.value} by user={acting_user.id}")
        await self._audit_logger.append_async(
            file_id, acting_user.id, AuditAction.STATUS_CHANGE, current.value, target.value
        )
        snapshot.notifications = await self._notify(event)
        return snapshot

    def _apply_transition(
        self, file_id: str, target: FileStatus, estimate: Optional[int]
    ) -> Tuple[FileStatus, FileSnapshot, FileEvent]:
        now = utc_now()
        with managed_session(self._session_factory) as session:
            tuning_file = self._load_file(session, file_id)
            current = FileStatus(tuning_file.status)
            if not FileStateValidator.is_valid_transition(current.value, target.value):
                raise ValidationError(
                    f"Invalid status transition {current.value} -> {target.value}",
                    {"allowed": FileStateValidator.get_valid_transitions(current.value)},
                )

            values = {"status": target.value, "updated_at": now}
            if target == FileStatus.PENDING:
                if estimate is not None:
                    values["estimated_processing_time"] = estimate
                    values["estimated_time_set_at"] = now
            else:
                # The estimate only lives while the file is PENDING
                values["estimated_processing_time"] = None
                values["estimated_time_set_at"] = None

            self._compare_and_set(session, file_id, current, values)
            session.refresh(tuning_file)
            snapshot = FileSnapshot.from_file(tuning_file)
            event = FileEvent.from_file(tuning_file, previous_status=current, url=self._file_url(file_id))
        return current, snapshot, event

    async def set_estimate(self, file_id: str, minutes: int, acting_user: Optional[User]) -> FileSnapshot:
        """Set or replace the processing estimate of a PENDING file"""
        self._require_admin(acting_user)
        estimate = self._validate_estimate(minutes)
        if estimate is None:
            raise ValidationError("estimatedProcessingTime is required")

        previous_estimate, snapshot, event = await asyncio.to_thread(self._apply_estimate, file_id, estimate)

        logger.info(f"⏱ ESTIMATE_SET: file={file_id} {previous_estimate} -> {estimate} min")
        await self._audit_logger.append_async(
            file_id, acting_user.id, AuditAction.ESTIMATED_TIME_SET, previous_estimate, estimate
        )
        snapshot.notifications = await self._notify(event)
        return snapshot

    def _apply_estimate(self, file_id: str, estimate: int) -> Tuple[Optional[int], FileSnapshot, FileEvent]:
        now = utc_now()
        with managed_session(self._session_factory) as session:
            tuning_file = self._load_file(session, file_id)
            if tuning_file.status != FileStatus.PENDING.value:
                raise ValidationError(
                    f"Estimates can only be set on PENDING files (file is {tuning_file.status})"
                )
            previous_estimate = tuning_file.estimated_processing_time
            self._compare_and_set(
                session,
                file_id,
                FileStatus.PENDING,
                {"estimated_processing_time": estimate, "estimated_time_set_at": now, "updated_at": now},
            )
            session.refresh(tuning_file)
            snapshot = FileSnapshot.from_file(tuning_file)
            event = FileEvent.from_file(tuning_file, url=self._file_url(file_id))
        return previous_estimate, snapshot, event

    # ------------------------------------------------------------------
    # Modified file: staged upload, then confirmed completion
    # ------------------------------------------------------------------

    async def attach_modified_file(
        self,
        file_id: str,
        filename: str,
        file_size: int,
        content_type: Optional[str],
        acting_user: Optional[User],
    ) -> UploadTicket:
        """
        Issue the PUT URL for the processed artifact and stage its key.

        Nothing customer-visible changes here: the status, the estimate and
        the current modified version stay as they are until
        confirm_modified_upload() finds the object in storage.
        """
        self._require_admin(acting_user)
        name = safe_basename(filename)
        if not name:
            raise ValidationError("Filename is required")
        self._storage.validate_upload(content_type, file_size)

        key, upload_url, snapshot = await asyncio.to_thread(
            self._stage_modified_upload, file_id, name, int(file_size), content_type
        )

        logger.info(f"📤 MODIFIED_UPLOAD_STAGED: file={file_id} key={key} by user={acting_user.id}")
        return UploadTicket(
            file_id=file_id,
            upload_url=upload_url,
            r2_key=key,
            expires_in=self._storage.expires_in,
            file=snapshot,
        )

    def _stage_modified_upload(
        self, file_id: str, name: str, file_size: int, content_type: Optional[str]
    ) -> Tuple[str, str, FileSnapshot]:
        with managed_session(self._session_factory) as session:
            tuning_file = self._load_file(session, file_id)
            current = FileStatus(tuning_file.status)
            owner = tuning_file.user
            key = self._key_generator.key(
                FileKind.MODIFIED,
                owner.id,
                tuning_file.id,
                name,
                owner_display_name=owner.display_name,
                submitted_at=tuning_file.created_at,
                modification_labels=tuning_file.modification_labels,
            )
            # Issued before the write: a storage failure leaves the file untouched
            upload_url = self._storage.issue_upload_url(key, content_type, file_size)

            self._compare_and_set(
                session,
                file_id,
                current,
                {
                    "pending_modified_filename": name,
                    "pending_modified_r2_key": key,
                    "pending_modified_file_size": file_size,
                    "pending_modified_file_type": content_type,
                },
            )
            session.refresh(tuning_file)
            snapshot = FileSnapshot.from_file(tuning_file)
        return key, upload_url, snapshot

    async def confirm_modified_upload(self, file_id: str, acting_user: Optional[User]) -> FileSnapshot:
        """
        Complete a staged modified upload once the object exists in storage.

        Forces the file to READY from any state, clears the estimate, then
        audits and sends the READY notifications.

        Raises:
            ValidationError: nothing staged, or the object is not in storage
            ConflictError: the status changed concurrently
        """
        self._require_admin(acting_user)

        previous_filename, name, snapshot, event = await asyncio.to_thread(
            self._complete_modified_upload, file_id
        )

        logger.info(
            f"✅ MODIFIED_FILE_ATTACHED: file={file_id} {event.previous_status.value} -> READY "
            f"by user={acting_user.id}"
        )
        await self._audit_logger.append_async(
            file_id, acting_user.id, AuditAction.MODIFIED_FILE_UPLOADED, previous_filename, name
        )
        snapshot.notifications = await self._notify(event)
        return snapshot

    def _complete_modified_upload(self, file_id: str) -> Tuple[Optional[str], str, FileSnapshot, FileEvent]:
        now = utc_now()
        with managed_session(self._session_factory) as session:
            tuning_file = self._load_file(session, file_id)
            key = tuning_file.pending_modified_r2_key
            if not key:
                raise ValidationError(f"File {file_id} has no modified upload waiting for confirmation")
            if not self._storage.object_exists(key):
                raise ValidationError("Modified file was not found in storage")

            current = FileStatus(tuning_file.status)
            previous_filename = tuning_file.modified_filename
            name = tuning_file.pending_modified_filename
            self._compare_and_set(
                session,
                file_id,
                current,
                {
                    "modified_filename": name,
                    "modified_r2_key": key,
                    "modified_file_size": tuning_file.pending_modified_file_size,
                    "modified_file_type": tuning_file.pending_modified_file_type,
                    "modified_uploaded_at": now,
                    "pending_modified_filename": None,
                    "pending_modified_r2_key": None,
                    "pending_modified_file_size": None,
                    "pending_modified_file_type": None,
                    "status": FileStatus.READY.value,
                    "estimated_processing_time": None,
                    "estimated_time_set_at": None,
                    "updated_at": now,
                },
            )
            session.refresh(tuning_file)
            snapshot = FileSnapshot.from_file(tuning_file)
            event = FileEvent.from_file(tuning_file, previous_status=current, url=self._file_url(file_id))
        return previous_filename, name, snapshot, event

    # ------------------------------------------------------------------
    # Price, payment and admin notes
    # ------------------------------------------------------------------

    async def set_price(self, file_id: str, price, acting_user: Optional[User]) -> FileSnapshot:
        """Set the quoted price and tell the customer"""
        self._require_admin(acting_user)
        amount = self._validate_price(price)

        previous, snapshot, event = await asyncio.to_thread(
            self._apply_field_update, file_id, "price", amount, FileEventKind.PRICE_SET
        )

        logger.info(f"💰 PRICE_SET: file={file_id} {previous} -> {amount} by user={acting_user.id}")
        await self._audit_logger.append_async(file_id, acting_user.id, AuditAction.PRICE_SET, previous, amount)
        snapshot.notifications = await self._notify(event)
        return snapshot

    async def set_payment_status(
        self, file_id: str, payment_status: Union[str, PaymentStatus], acting_user: Optional[User]
    ) -> FileSnapshot:
        """Record a payment status change; the customer hears about it only once it is PAID"""
        self._require_admin(acting_user)
        try:
            target = PaymentStatus(payment_status)
        except ValueError:
            raise ValidationError(f"Unknown payment status: {payment_status}")

        previous, snapshot, event = await asyncio.to_thread(
            self._apply_field_update, file_id, "payment_status", target.value, FileEventKind.PAYMENT_CONFIRMED
        )

        logger.info(f"💳 PAYMENT_STATUS_CHANGED: file={file_id} {previous} -> {target.value} by user={acting_user.id}")
        await self._audit_logger.append_async(
            file_id, acting_user.id, AuditAction.PAYMENT_STATUS_CHANGE, previous, target.value
        )
        if target == PaymentStatus.PAID and previous != PaymentStatus.PAID.value:
            snapshot.notifications = await self._notify(event)
        return snapshot

    async def set_admin_notes(self, file_id: str, notes: Optional[str], acting_user: Optional[User]) -> FileSnapshot:
        """Replace the admin notes; a non-empty note is also shown to the customer"""
        self._require_admin(acting_user)
        if notes is None:
            notes = ""
        if not isinstance(notes, str):
            raise ValidationError("adminNotes must be a string")
        if len(notes) > self.MAX_ADMIN_NOTES_LENGTH:
            raise ValidationError(f"adminNotes must be at most {self.MAX_ADMIN_NOTES_LENGTH} characters")

        previous, snapshot, event = await asyncio.to_thread(
            self._apply_field_update,
            file_id,
            "admin_notes",
            notes,
            FileEventKind.ADMIN_NOTE,
            acting_user.display_name,
        )

        logger.info(f"📝 ADMIN_NOTES_UPDATED: file={file_id} length={len(notes)} by user={acting_user.id}")
        await self._audit_logger.append_async(
            file_id, acting_user.id, AuditAction.ADMIN_NOTES_UPDATED, previous or "", notes
        )
        snapshot.notifications = await self._notify(event)
        return snapshot

    def _apply_field_update(
        self,
        file_id: str,
        column: str,
        value: Any,
        kind: FileEventKind,
        actor_name: Optional[str] = None,
    ) -> Tuple[Any, FileSnapshot, FileEvent]:
        """Write one non-status column, guarded on the status read in the same transaction"""
        with managed_session(self._session_factory) as session:
            tuning_file = self._load_file(session, file_id)
            previous = getattr(tuning_file, column)
            self._compare_and_set(
                session, file_id, FileStatus(tuning_file.status), {column: value, "updated_at": utc_now()}
            )
            session.refresh(tuning_file)
            snapshot = FileSnapshot.from_file(tuning_file)
            event = FileEvent.from_file(tuning_file, url=self._file_url(file_id), kind=kind, actor_name=actor_name)
        return previous, snapshot, event

    # ------------------------------------------------------------------
    # Customer upload and download
    # ------------------------------------------------------------------

    def request_upload(
        self,
        owner: Optional[User],
        filename: str,
        file_size: int,
        content_type: Optional[str],
        modification_ids: Optional[Sequence[int]] = None,
        customer_comment: Optional[str] = None,
        dtc_codes: Optional[str] = None,
    ) -> UploadTicket:
        """
        Create the RECEIVED file record and issue the PUT URL for its original version.

        Blocking; async callers run it in a worker thread.
        """
        if owner is None:
            raise AuthzError("Authentication required")
        name = safe_basename(filename)
        if not name:
            raise ValidationError("Filename is required")
        self._storage.validate_upload(content_type, file_size)

        file_id = new_file_id()
        now = utc_now()
        wanted_ids = sorted(set(modification_ids or []))
        with managed_session(self._session_factory) as session:
            modifications = []
            if wanted_ids:
                modifications = list(
                    session.scalars(
                        select(Modification)
                        .where(Modification.id.in_(wanted_ids), Modification.is_active.is_(True))
                        .order_by(Modification.id)
                    )
                )
                if len(modifications) != len(wanted_ids):
                    known = {modification.id for modification in modifications}
                    raise ValidationError(
                        "Unknown modification ids",
                        {"unknown": [mid for mid in wanted_ids if mid not in known]},
                    )

            key = self._key_generator.key(
                FileKind.ORIGINAL,
                owner.id,
                file_id,
                name,
                owner_display_name=owner.display_name,
                submitted_at=now,
                modification_labels=[modification.label for modification in modifications],
            )
            upload_url = self._storage.issue_upload_url(key, content_type, file_size)

            tuning_file = TuningFile(
                id=file_id,
                user_id=owner.id,
                original_filename=name,
                r2_key=key,
                file_size=int(file_size),
                file_type=content_type,
                status=FileStatus.RECEIVED.value,
                customer_comment=customer_comment,
                dtc_codes=dtc_codes,
                created_at=now,
                updated_at=now,
            )
            tuning_file.modifications = [FileModification(modification=modification) for modification in modifications]
            session.add(tuning_file)

        logger.info(f"📥 FILE_UPLOAD_REQUESTED: file={file_id} user={owner.id} key={key}")
        self._audit_logger.append(file_id, owner.id, AuditAction.FILE_UPLOADED, None, name)
        return UploadTicket(file_id=file_id, upload_url=upload_url, r2_key=key, expires_in=self._storage.expires_in)

    async def confirm_upload(self, file_id: str, acting_user: Optional[User]) -> FileSnapshot:
        """Check the object landed in storage, then tell the customer and the operators"""
        snapshot, event = await asyncio.to_thread(self._check_original_upload, file_id, acting_user)

        logger.info(f"📥 FILE_UPLOAD_CONFIRMED: file={file_id}")
        snapshot.notifications = await self._notify(event)
        return snapshot

    def _check_original_upload(self, file_id: str, acting_user: Optional[User]) -> Tuple[FileSnapshot, FileEvent]:
        with managed_session(self._session_factory) as session:
            tuning_file = self._load_file(session, file_id)
            self._require_owner_or_admin(tuning_file, acting_user)
            if tuning_file.status != FileStatus.RECEIVED.value:
                raise ValidationError(f"Upload already confirmed (file is {tuning_file.status})")
            if not self._storage.object_exists(tuning_file.r2_key):
                raise ValidationError("Uploaded object was not found in storage")
            snapshot = FileSnapshot.from_file(tuning_file)
            event = FileEvent.from_file(tuning_file, url=self._file_url(file_id))
        return snapshot, event

    def download_url(
        self,
        file_id: str,
        acting_user: Optional[User],
        kind: Union[str, FileKind] = FileKind.MODIFIED,
    ) -> DownloadLink:
        try:
            kind = FileKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown file kind: {kind}")

        with managed_session(self._session_factory) as session:
            tuning_file = self._load_file(session, file_id)
            self._require_owner_or_admin(tuning_file, acting_user)
            if kind == FileKind.MODIFIED:
                if not tuning_file.modified_r2_key:
                    raise NotFoundError(f"File {file_id} has no modified version yet")
                if tuning_file.status != FileStatus.READY.value:
                    raise ValidationError(f"Modified file is not ready (file is {tuning_file.status})")
                key, name = tuning_file.modified_r2_key, tuning_file.modified_filename
            else:
                key, name = tuning_file.r2_key, tuning_file.original_filename

        url = self._storage.issue_download_url(key, name)
        return DownloadLink(url=url, filename=name, expires_in=self._storage.expires_in)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_status(requested_status) -> FileStatus:
        try:
            return FileStateValidator.coerce(requested_status)
        except ValueError:
            raise ValidationError(f"Unknown status: {requested_status}")

    @classmethod
    def _validate_estimate(cls, minutes) -> Optional[int]:
        if minutes is None:
            return None
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise ValidationError("estimatedProcessingTime must be an integer")
        if not cls.MIN_ESTIMATE_MINUTES <= minutes <= cls.MAX_ESTIMATE_MINUTES:
            raise ValidationError(
                f"estimatedProcessingTime must be between {cls.MIN_ESTIMATE_MINUTES} "
                f"and {cls.MAX_ESTIMATE_MINUTES} minutes"
            )
        return minutes

    @classmethod
    def _validate_price(cls, price) -> Decimal:
        if isinstance(price, bool) or not isinstance(price, (int, float, Decimal, str)):
            raise ValidationError("price must be a number")
        if isinstance(price, float) and not math.isfinite(price):
            raise ValidationError("price must be a finite number")
        try:
            amount = Decimal(str(price)).quantize(Decimal("0.01"))
        except InvalidOperation:
            raise ValidationError(f"Invalid price: {price}")
        if not amount.is_finite() or amount < 0:
            raise ValidationError("price must be zero or positive")
        if amount > cls.MAX_PRICE:
            raise ValidationError(f"price must not exceed {cls.MAX_PRICE}")
        return amount

    @staticmethod
    def _require_admin(acting_user: Optional[User]) -> None:
        if acting_user is None:
            raise AuthzError("Authentication required")
        if not acting_user.is_admin:
            raise AuthzError("Admin privileges required")

    @staticmethod
    def _require_owner_or_admin(tuning_file: TuningFile, acting_user: Optional[User]) -> None:
        if acting_user is None:
            raise AuthzError("Authentication required")
        if not (acting_user.is_admin or tuning_file.user_id == acting_user.id):
            raise AuthzError("Not allowed to access this file")

    @staticmethod
    def _load_file(session: Session, file_id: str) -> TuningFile:
        tuning_file = session.get(TuningFile, file_id)
        if tuning_file is None:
            raise NotFoundError(f"File {file_id} not found")
        return tuning_file

    @staticmethod
    def _compare_and_set(session: Session, file_id: str, expected: FileStatus, values: Dict[str, Any]) -> None:
        """One atomic UPDATE guarded by the status read earlier in the transaction"""
        result = session.execute(
            update(TuningFile)
            .where(TuningFile.id == file_id, TuningFile.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"⚠️ STATUS_CONFLICT: file={file_id} expected={expected.value}")
            raise ConflictError(f"File {file_id} changed concurrently; expected status {expected.value}")

    def _file_url(self, file_id: str) -> Optional[str]:
        return f"{self._site_url}/dashboard/files/{file_id}" if self._site_url else None

    async def _notify(self, event: FileEvent) -> List[ChannelResult]:
        try:
            return await self._dispatcher.dispatch(event)
        except Exception as e:
            logger.error(f"❌ NOTIFY_DISPATCH_FAILED: file={event.file_id}: {e}", exc_info=True)
            return []
