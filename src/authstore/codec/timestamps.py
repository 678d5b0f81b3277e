"""ISO-8601 timestamp codec for backends that only store strings."""

from datetime import datetime

from authstore.domain.time import ensure_tz_aware


class IsoTimestampCodec:
    """Serialize timestamps as ISO-8601 and parse-and-validate on read.

    Written values always carry an offset. On read, a string without an
    offset is rejected: a stored timestamp that lost its zone cannot be
    trusted to mean UTC.
    """

    def to_native(self, value: datetime) -> str:
        return ensure_tz_aware(value).isoformat()

    def from_native(self, value: str) -> datetime:
        if not isinstance(value, str):
            raise ValueError(f"Expected ISO-8601 string, got {type(value).__name__}")
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            raise ValueError(f"Not an ISO-8601 timestamp: {value!r}") from None
        if parsed.tzinfo is None:
            raise ValueError(f"Timestamp without UTC offset: {value!r}")
        return parsed


ISO_TIMESTAMPS = IsoTimestampCodec()
