"""Document codec for the MongoDB backend.

Canonical entities map to documents keyed by their wire aliases
(``emailVerified``, ``userId``, ...). The canonical ``id`` is stored as the
document ``_id`` (an ``ObjectId``) and ``userId`` references are stored as
``ObjectId`` as well. Optional fields holding ``None`` are omitted from the
document so that sparse unique indexes ignore them.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from bson import ObjectId

from authstore.domain.entities import field_aliases
from authstore.domain.time import ensure_tz_aware
from authstore.exceptions import MalformedRecordError

E = TypeVar("E")


class ObjectIdCodec:
    """Canonical ids as the 24-character hex form of an ``ObjectId``."""

    def new_id(self) -> str:
        return str(ObjectId())

    def to_native(self, value: str) -> ObjectId:
        if not isinstance(value, str) or not ObjectId.is_valid(value):
            raise ValueError(f"Not an ObjectId: {value!r}")
        return ObjectId(value)

    def from_native(self, value: ObjectId) -> str:
        return str(value)

    def parse(self, value: str) -> ObjectId | None:
        """Native form of an id used for lookups; None if it cannot exist."""
        try:
            return self.to_native(value)
        except ValueError:
            return None


class DocumentCodec(Generic[E]):
    """Bidirectional mapping between one entity type and its documents."""

    def __init__(
        self,
        entity_type: type[E],
        ids: ObjectIdCodec,
        reference_fields: frozenset[str] = frozenset({"user_id"}),
        enums: Mapping[str, type[Enum]] | None = None,
    ) -> None:
        self._entity_type = entity_type
        self._name = entity_type.__name__
        self._ids = ids
        self._aliases = field_aliases(entity_type)
        self._reference_fields = reference_fields
        self._enums = dict(enums or {})

    def native_name(self, field: str) -> str:
        return "_id" if field == "id" else self._aliases[field]

    def encode_value(self, field: str, value: Any) -> Any:
        """Convert one canonical value; raises ValueError for bad ids."""
        if field == "id" or field in self._reference_fields:
            return self._ids.to_native(value)
        if isinstance(value, Enum):
            return value.value
        return value

    def to_native(self, entity: E) -> dict[str, Any]:
        document: dict[str, Any] = {}
        for field in self._aliases:
            value = getattr(entity, field)
            if value is None:
                continue
            document[self.native_name(field)] = self.encode_value(field, value)
        return document

    def from_native(self, document: Mapping[str, Any]) -> E:
        values: dict[str, Any] = {}
        for field in self._aliases:
            key = self.native_name(field)
            if key not in document:
                continue
            values[field] = self._decode_value(field, document[key])

        try:
            return self._entity_type(**values)
        except TypeError as e:
            raise MalformedRecordError(self._name, str(e)) from e

    def patch_to_native(self, changes: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
        """Build a ``$set``/``$unset`` update touching only the given fields."""
        to_set: dict[str, Any] = {}
        to_unset: dict[str, Any] = {}
        for field, value in changes.items():
            if value is None:
                to_unset[self.native_name(field)] = ""
            else:
                to_set[self.native_name(field)] = self.encode_value(field, value)

        update: dict[str, dict[str, Any]] = {}
        if to_set:
            update["$set"] = to_set
        if to_unset:
            update["$unset"] = to_unset
        return update

    def _decode_value(self, field: str, value: Any) -> Any:
        if value is None:
            return None
        if field == "id" or field in self._reference_fields:
            return self._ids.from_native(value)
        if field in self._enums:
            try:
                return self._enums[field](value)
            except ValueError as e:
                raise MalformedRecordError(self._name, str(e)) from e
        if isinstance(value, datetime):
            return ensure_tz_aware(value)
        return value
