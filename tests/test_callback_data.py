"""Operator button payload tests"""

import uuid

import pytest

from models import FileStatus
from utils.callback_data import (
    ESTIMATE_CHOICES_MINUTES,
    FILE_ADMIN_STATUS_PREFIX,
    MAX_CALLBACK_DATA_BYTES,
    SUPER_ADMIN_STATUS_PREFIX,
    build_estimate_callback,
    build_status_callback,
    parse_estimate_callback,
    parse_status_callback,
)
from utils.exceptions import ValidationError

FILE_ID = str(uuid.UUID("3f2b8c1e-9a47-4d2e-8b1a-0c5e7d9f1a23"))


class TestStatusCallback:
    def test_payload_layout(self):
        assert build_status_callback(FILE_ADMIN_STATUS_PREFIX, FILE_ID, FileStatus.READY) == (
            f"file_admin_status_{FILE_ID}_READY"
        )

    @pytest.mark.parametrize("prefix", [FILE_ADMIN_STATUS_PREFIX, SUPER_ADMIN_STATUS_PREFIX])
    @pytest.mark.parametrize("status", list(FileStatus))
    def test_parse_returns_file_and_status(self, prefix, status):
        data = build_status_callback(prefix, FILE_ID, status)

        assert len(data.encode("utf-8")) <= MAX_CALLBACK_DATA_BYTES
        assert parse_status_callback(data, prefix) == (FILE_ID, status)

    @pytest.mark.parametrize(
        "data",
        [
            "",
            f"sa_fs_{FILE_ID}_READY",
            f"file_admin_status_{FILE_ID}_DONE",
            "file_admin_status_READY",
            f"file_admin_status_{FILE_ID}_",
        ],
    )
    def test_malformed_payloads(self, data):
        with pytest.raises(ValidationError):
            parse_status_callback(data, FILE_ADMIN_STATUS_PREFIX)

    def test_oversized_payload_rejected(self):
        with pytest.raises(ValidationError):
            build_status_callback(FILE_ADMIN_STATUS_PREFIX, "x" * 64, FileStatus.READY)


class TestEstimateCallback:
    @pytest.mark.parametrize("minutes", ESTIMATE_CHOICES_MINUTES)
    def test_every_choice_fits_and_parses(self, minutes):
        data = build_estimate_callback(FILE_ID, minutes)

        assert len(data.encode("utf-8")) <= MAX_CALLBACK_DATA_BYTES
        assert parse_estimate_callback(data) == (FILE_ID, minutes)

    def test_non_numeric_minutes(self):
        with pytest.raises(ValidationError):
            parse_estimate_callback(f"file_admin_time_{FILE_ID}_soon")
