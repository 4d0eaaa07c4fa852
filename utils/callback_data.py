"""
Operator bot callback payloads

Status buttons encode `{prefix}_{fileId}_{STATUS}`; estimate buttons encode
`file_admin_time_{fileId}_{minutes}`. Telegram caps callback_data at 64 bytes.
"""

from typing import Tuple

from models import FileStatus
from utils.exceptions import ValidationError

FILE_ADMIN_STATUS_PREFIX = "file_admin_status"
SUPER_ADMIN_STATUS_PREFIX = "sa_fs"
FILE_ADMIN_TIME_PREFIX = "file_admin_time"

MAX_CALLBACK_DATA_BYTES = 64
ESTIMATE_CHOICES_MINUTES = (5, 10, 15, 20, 30, 45, 60)


def _check_size(data: str) -> str:
    if len(data.encode("utf-8")) > MAX_CALLBACK_DATA_BYTES:
        raise ValidationError(f"Callback data exceeds {MAX_CALLBACK_DATA_BYTES} bytes: {data}")
    return data


def _split(data: str, prefix: str) -> Tuple[str, str]:
    head = f"{prefix}_"
    if not data or not data.startswith(head):
        raise ValidationError(f"Callback data does not start with {head!r}")
    file_id, sep, tail = data[len(head):].rpartition("_")
    if not sep or not file_id or not tail:
        raise ValidationError(f"Malformed callback data: {data}")
    return file_id, tail


def build_status_callback(prefix: str, file_id: str, status: FileStatus) -> str:
    return _check_size(f"{prefix}_{file_id}_{FileStatus(status).value}")


def parse_status_callback(data: str, prefix: str) -> Tuple[str, FileStatus]:
    """Inverse of build_status_callback; the bot-callback ingress calls this"""
    file_id, raw_status = _split(data, prefix)
    try:
        return file_id, FileStatus(raw_status)
    except ValueError:
        raise ValidationError(f"Unknown status in callback data: {raw_status}")


def build_estimate_callback(file_id: str, minutes: int) -> str:
    return _check_size(f"{FILE_ADMIN_TIME_PREFIX}_{file_id}_{int(minutes)}")


def parse_estimate_callback(data: str) -> Tuple[str, int]:
    file_id, raw_minutes = _split(data, FILE_ADMIN_TIME_PREFIX)
    if not raw_minutes.isdigit():
        raise ValidationError(f"Estimate is not a number: {raw_minutes}")
    return file_id, int(raw_minutes)
