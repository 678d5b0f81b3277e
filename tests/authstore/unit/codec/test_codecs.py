"""Tests for identifier and timestamp codecs (from_native(to_native(x)) == x)."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from authstore.codec import ISO_TIMESTAMPS, PrefixedIdCodec, UuidCodec

INSTANTS = [
    datetime(2030, 1, 1, tzinfo=timezone.utc),
    datetime(2024, 2, 29, 23, 59, 59, 999999, tzinfo=timezone.utc),
    datetime(2030, 6, 1, 8, 30, tzinfo=timezone(timedelta(hours=-5))),
]


class TestIsoTimestampCodec:
    @pytest.mark.parametrize("instant", INSTANTS)
    def test_round_trip(self, instant):
        assert ISO_TIMESTAMPS.from_native(ISO_TIMESTAMPS.to_native(instant)) == instant

    def test_naive_input_is_written_as_utc(self):
        assert ISO_TIMESTAMPS.to_native(datetime(2030, 1, 1)).endswith("+00:00")

    @pytest.mark.parametrize("raw", ["yesterday", "2030-01-01T00:00:00", 1700000000])
    def test_rejects_unparseable_or_offsetless_values(self, raw):
        with pytest.raises(ValueError):
            ISO_TIMESTAMPS.from_native(raw)


class TestPrefixedIdCodec:
    def test_round_trip(self):
        codec = PrefixedIdCodec("user:")

        assert codec.to_native("abc") == "user:abc"
        assert codec.from_native(codec.to_native("a:b:c")) == "a:b:c"

    def test_foreign_prefix_is_rejected(self):
        with pytest.raises(ValueError):
            PrefixedIdCodec("user:").from_native("session:abc")

    def test_empty_prefix_is_rejected(self):
        with pytest.raises(ValueError):
            PrefixedIdCodec("")


class TestUuidCodec:
    def test_round_trip(self):
        codec = UuidCodec()
        value = str(codec.new_id())

        assert isinstance(codec.to_native(value), UUID)
        assert codec.from_native(codec.to_native(value)) == value

    def test_parse_returns_none_for_foreign_ids(self):
        codec = UuidCodec()

        assert codec.parse("507f1f77bcf86cd799439011") is None
        assert codec.parse("not-a-uuid") is None
