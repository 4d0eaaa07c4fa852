"""
Tuning File State Machine
Allowed status edges for a submitted file
"""

from typing import Dict, List, Set, Union

from models import FileStatus


class FileStateValidator:
    """Validates tuning file status transitions"""

    # Valid state transition map; self-loops are never allowed
    VALID_TRANSITIONS: Dict[str, Set[str]] = {
        FileStatus.RECEIVED.value: {FileStatus.PENDING.value},
        FileStatus.PENDING.value: {
            FileStatus.READY.value,     # Operator finished the file
            FileStatus.RECEIVED.value,  # Put back in the queue
        },
        FileStatus.READY.value: {FileStatus.PENDING.value},  # Rework requested
    }

    @staticmethod
    def coerce(status: Union[str, FileStatus]) -> FileStatus:
        """Turn a raw value into FileStatus; raises ValueError for unknown values"""
        if isinstance(status, FileStatus):
            return status
        return FileStatus(str(status).strip().upper())

    @classmethod
    def is_valid_transition(cls, current_status: str, new_status: str) -> bool:
        return new_status in cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def get_valid_transitions(cls, current_status: str) -> List[str]:
        """Allowed next states in a stable display order"""
        allowed = cls.VALID_TRANSITIONS.get(current_status, set())
        return [status.value for status in FileStatus if status.value in allowed]
