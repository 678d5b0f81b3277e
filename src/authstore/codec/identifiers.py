"""Identifier codecs.

Canonical identifiers are opaque strings. These codecs are the only place
that knows how a backend spells them natively.
"""

from uuid import UUID, uuid4


class PrefixedIdCodec:
    """Embed an identifier in a typed composite form such as ``user:<id>``."""

    def __init__(self, prefix: str) -> None:
        if not prefix:
            raise ValueError("prefix must not be empty")
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def to_native(self, value: str) -> str:
        return f"{self._prefix}{value}"

    def from_native(self, value: str) -> str:
        if not value.startswith(self._prefix):
            raise ValueError(f"{value!r} does not start with {self._prefix!r}")
        return value[len(self._prefix) :]


class UuidCodec:
    """Canonical string ids backed by native UUID values."""

    def new_id(self) -> UUID:
        return uuid4()

    def to_native(self, value: str) -> UUID:
        return UUID(value)

    def from_native(self, value: UUID) -> str:
        return str(value)

    def parse(self, value: str) -> UUID | None:
        """Like ``to_native`` but returns None for strings that are not UUIDs."""
        try:
            return self.to_native(value)
        except (TypeError, ValueError, AttributeError):
            return None
