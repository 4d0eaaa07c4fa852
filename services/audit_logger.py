"""
Audit Trail for tuning file mutations
Append-only: entries are inserted, never updated or deleted
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

from sqlalchemy.orm import sessionmaker

from database import managed_session
from models import AuditLog, utc_now

logger = logging.getLogger(__name__)


class AuditAction:
    """Action tags written to the audit trail"""
    FILE_UPLOADED = "FILE_UPLOADED"
    STATUS_CHANGE = "STATUS_CHANGE"
    ESTIMATED_TIME_SET = "ESTIMATED_TIME_SET"
    MODIFIED_FILE_UPLOADED = "MODIFIED_FILE_UPLOADED"
    PRICE_SET = "PRICE_SET"
    PAYMENT_STATUS_CHANGE = "PAYMENT_STATUS_CHANGE"
    ADMIN_NOTES_UPDATED = "ADMIN_NOTES_UPDATED"


class AuditLogger:
    """
    Writes audit entries in their own transaction.

    The primary mutation has already committed when an entry is appended, so a
    failed audit write never rolls it back: the write is retried, then the
    entry is emitted on the 'audit' operational log channel for follow-up.

    append() blocks and belongs in worker threads; append_async() runs each
    attempt in a thread and backs off with asyncio.sleep.
    """

    def __init__(self, session_factory: sessionmaker, max_attempts: int = 3, retry_delay: float = 0.05):
        self._session_factory = session_factory
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self.audit_channel = logging.getLogger("audit")

    def append(
        self,
        file_id: str,
        acting_user_id: Optional[int],
        action: str,
        old_value: Any = None,
        new_value: Any = None,
    ) -> bool:
        """Returns True when the entry reached the database"""
        entry = self._entry(file_id, acting_user_id, action, old_value, new_value)

        last_error = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                self._write(entry)
                return True
            except Exception as e:
                last_error = e
                delay = self._backoff(attempt, e, entry)
                if delay:
                    time.sleep(delay)

        self._report_failure(entry, last_error)
        return False

    async def append_async(
        self,
        file_id: str,
        acting_user_id: Optional[int],
        action: str,
        old_value: Any = None,
        new_value: Any = None,
    ) -> bool:
        """Same contract as append() without blocking the event loop"""
        entry = self._entry(file_id, acting_user_id, action, old_value, new_value)

        last_error = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                await asyncio.to_thread(self._write, entry)
                return True
            except Exception as e:
                last_error = e
                delay = self._backoff(attempt, e, entry)
                if delay:
                    await asyncio.sleep(delay)

        self._report_failure(entry, last_error)
        return False

    @staticmethod
    def _entry(file_id, acting_user_id, action, old_value, new_value) -> dict:
        return {
            "file_id": file_id,
            "actor_id": acting_user_id,
            "action": action,
            "old_value": None if old_value is None else str(old_value),
            "new_value": None if new_value is None else str(new_value),
        }

    def _write(self, entry: dict) -> None:
        with managed_session(self._session_factory) as session:
            session.add(AuditLog(**entry))
        logger.info(
            f"🛡️ AUDIT: file={entry['file_id']} actor={entry['actor_id']} {entry['action']} "
            f"{entry['old_value']} -> {entry['new_value']}"
        )

    def _backoff(self, attempt: int, error: Exception, entry: dict) -> float:
        """Delay before the next attempt; 0 after the last one"""
        logger.warning(
            f"⚠️ AUDIT_WRITE_RETRY: attempt {attempt}/{self._max_attempts} file={entry['file_id']}: {error}"
        )
        if attempt >= self._max_attempts:
            return 0
        return self._retry_delay * attempt

    def _report_failure(self, entry: dict, error: Optional[Exception]) -> None:
        self.audit_channel.error(
            "AUDIT_WRITE_FAILED: "
            + json.dumps({"timestamp": utc_now().isoformat(), **entry, "error": str(error)})
        )
