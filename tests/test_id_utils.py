import re
from datetime import UTC, datetime

import pytest

from bachata_moves_storage.id_utils import (
    EPOCH_ISO,
    generate_id,
    parse_id_timestamp,
    utc_now_iso,
)


class TestGenerateId:
    def test_format(self):
        assert re.fullmatch(r"\d{13}-[0-9a-z]{7}", generate_id())

    def test_unique(self):
        assert len({generate_id() for _ in range(500)}) == 500

    def test_encodes_creation_time(self):
        before = datetime.now(UTC)
        created = parse_id_timestamp(generate_id())
        assert abs((created - before).total_seconds()) < 5


class TestParseIdTimestamp:
    def test_basic(self):
        assert parse_id_timestamp("0-abcdefg") == datetime(1970, 1, 1, tzinfo=UTC)

    def test_malformed_raises(self):
        with pytest.raises(ValueError):
            parse_id_timestamp("not-an-id")

    def test_missing_suffix_raises(self):
        with pytest.raises(ValueError):
            parse_id_timestamp("1700000000000-")

    def test_no_separator_raises(self):
        with pytest.raises(ValueError):
            parse_id_timestamp("1700000000000")


class TestTimestamps:
    def test_utc_now_iso_format(self):
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", utc_now_iso())

    def test_epoch(self):
        assert EPOCH_ISO < utc_now_iso()
