"""
Object storage key scheme for tuning files

Preferred:  orders/{owner}-{filename}-{mods}-{YYYY-MM-DD}-{HH-MM-SS}-{uuid8}/{kind}/{filename}
Fallback:   orders/{fileId}-{uuid}/{kind}/{filename}
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional, Sequence, Union

from models import FileKind
from utils.exceptions import ValidationError
from utils.normalizers import safe_basename, slugify

logger = logging.getLogger(__name__)

KEY_ROOT = "orders"
NO_MODIFICATIONS = "no-modifications"


class ObjectKeyGenerator:
    """Pure key builder; the UUID source is injectable for deterministic tests"""

    def __init__(self, uuid_factory: Callable[[], uuid.UUID] = uuid.uuid4):
        self._uuid_factory = uuid_factory

    def key(
        self,
        kind: Union[FileKind, str],
        owner_id,
        file_id: str,
        original_filename: str,
        owner_display_name: Optional[str] = None,
        submitted_at: Optional[datetime] = None,
        modification_labels: Optional[Sequence[str]] = None,
    ) -> str:
        try:
            kind = FileKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown file kind: {kind}")

        filename = safe_basename(original_filename)
        if not filename:
            raise ValidationError("Filename is required")

        if owner_display_name and owner_display_name.strip() and submitted_at:
            folder = self._readable_folder(owner_display_name, filename, submitted_at, modification_labels)
        else:
            logger.debug(f"OBJECT_KEY_FALLBACK: owner={owner_id} file={file_id}")
            folder = f"{file_id}-{self._uuid_factory()}"

        return f"{KEY_ROOT}/{folder}/{kind.value}/{filename}"

    def _readable_folder(
        self,
        owner_display_name: str,
        filename: str,
        submitted_at: datetime,
        modification_labels: Optional[Sequence[str]],
    ) -> str:
        labels = [label for label in (modification_labels or []) if label]
        modifications = slugify("-".join(labels)) if labels else NO_MODIFICATIONS
        suffix = self._uuid_factory().hex[:8]
        return "-".join(
            [
                slugify(owner_display_name.strip()),
                slugify(filename),
                modifications,
                submitted_at.strftime("%Y-%m-%d"),
                submitted_at.strftime("%H-%M-%S"),
                suffix,
            ]
        )
