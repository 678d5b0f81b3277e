"""Partial-update types.

A patch carries only the fields to change. Fields left at ``UNSET`` are
untouched when the patch is applied; an explicit ``None`` clears an
optional field.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Final

from authstore.domain.entities import Session, User


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Final = _Unset()


def _present(patch: object, key_field: str) -> dict[str, Any]:
    return {
        f.name: getattr(patch, f.name)
        for f in fields(patch)  # type: ignore[arg-type]
        if f.name != key_field and getattr(patch, f.name) is not UNSET
    }


@dataclass(frozen=True)
class UserPatch:
    """Changes to a User, addressed by ``id``."""

    id: str
    name: str | None | _Unset = UNSET
    email: str | None | _Unset = UNSET
    email_verified: datetime | None | _Unset = UNSET
    image: str | None | _Unset = UNSET

    def changes(self) -> dict[str, Any]:
        """Return only the fields present in the patch."""
        return _present(self, "id")

    def apply(self, user: User) -> User:
        return replace(user, **self.changes())

    @property
    def is_empty(self) -> bool:
        return not self.changes()


@dataclass(frozen=True)
class SessionPatch:
    """Changes to a Session, addressed by ``session_token``."""

    session_token: str
    expires: datetime | _Unset = UNSET
    user_id: str | _Unset = UNSET

    def changes(self) -> dict[str, Any]:
        """Return only the fields present in the patch."""
        return _present(self, "session_token")

    def apply(self, session: Session) -> Session:
        return replace(session, **self.changes())

    @property
    def is_empty(self) -> bool:
        return not self.changes()
