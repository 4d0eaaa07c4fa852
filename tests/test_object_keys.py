"""Object storage key scheme tests"""

import re
from datetime import datetime

import pytest

from models import FileKind
from services.object_keys import ObjectKeyGenerator
from tests.conftest import sequential_uuid_factory
from utils.exceptions import ValidationError
from utils.normalizers import slugify

SUBMITTED_AT = datetime(2024, 3, 9, 14, 5, 7)


class TestReadableKeys:
    def test_preferred_scheme_layout(self):
        generator = ObjectKeyGenerator(uuid_factory=sequential_uuid_factory())

        key = generator.key(
            FileKind.ORIGINAL,
            owner_id=7,
            file_id="file-1",
            original_filename="Golf 7 TDI.bin",
            owner_display_name="Karim Benali",
            submitted_at=SUBMITTED_AT,
            modification_labels=["Stage 1", "DPF Off"],
        )

        assert key == (
            "orders/karim-benali-golf-7-tdi.bin-stage-1-dpf-off-2024-03-09-14-05-07-00000001"
            "/original/Golf 7 TDI.bin"
        )

    def test_no_modifications_placeholder(self):
        generator = ObjectKeyGenerator(uuid_factory=sequential_uuid_factory())

        key = generator.key("modified", 7, "file-1", "ecu.bin", "Ana", SUBMITTED_AT, [])

        assert "-no-modifications-2024-03-09-14-05-07-" in key
        assert key.endswith("/modified/ecu.bin")

    def test_same_seed_gives_same_key(self):
        args = (FileKind.ORIGINAL, 7, "file-1", "ecu.bin", "Ana", SUBMITTED_AT, ["Stage 1"])

        first = ObjectKeyGenerator(uuid_factory=sequential_uuid_factory()).key(*args)
        second = ObjectKeyGenerator(uuid_factory=sequential_uuid_factory()).key(*args)

        assert first == second

    def test_thousand_keys_with_identical_inputs_are_distinct(self):
        generator = ObjectKeyGenerator(uuid_factory=sequential_uuid_factory())

        keys = {
            generator.key(FileKind.ORIGINAL, 7, "file-1", "ecu.bin", "Ana", SUBMITTED_AT, ["Stage 1"])
            for _ in range(1000)
        }

        assert len(keys) == 1000

    def test_directory_components_are_stripped_from_filename(self):
        generator = ObjectKeyGenerator(uuid_factory=sequential_uuid_factory())

        key = generator.key(FileKind.ORIGINAL, 7, "file-1", "C:\\dumps\\ecu.bin", "Ana", SUBMITTED_AT)

        assert key.endswith("/original/ecu.bin")


class TestFallbackKeys:
    @pytest.mark.parametrize("display_name,submitted_at", [(None, SUBMITTED_AT), ("Ana", None), ("  ", SUBMITTED_AT)])
    def test_fallback_when_name_or_date_missing(self, display_name, submitted_at):
        generator = ObjectKeyGenerator()

        key = generator.key(FileKind.ORIGINAL, 7, "file-1", "ecu.bin", display_name, submitted_at)

        assert re.fullmatch(r"orders/file-1-[0-9a-f-]{36}/original/ecu\.bin", key)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            ObjectKeyGenerator().key("backup", 7, "file-1", "ecu.bin")

    def test_empty_filename_rejected(self):
        with pytest.raises(ValidationError):
            ObjectKeyGenerator().key(FileKind.ORIGINAL, 7, "file-1", "")


class TestSlugify:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Karim Benali", "karim-benali"),
            ("ecu_v2.BIN", "ecu-v2.bin"),
            ("Élodie", "-lodie"),
            ("a/b", "a-b"),
        ],
    )
    def test_slug_rules(self, raw, expected):
        assert slugify(raw) == expected
