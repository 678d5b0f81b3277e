"""Canonical entities exchanged with the authentication core.

All four entities are backend-agnostic. Identifiers are opaque strings; the
shape a backend uses natively (ObjectId hex, UUID, prefixed key) is handled by
the identity codecs and never inspected here.

Each field carries its canonical wire name in ``metadata["alias"]`` when it
differs from the Python attribute name. Backends use these aliases as their
native field or column names.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any


def _alias(name: str) -> dict[str, Any]:
    return {"alias": name}


class AccountType(str, Enum):
    """How an Account authenticates its owner."""

    OAUTH = "oauth"
    OIDC = "oidc"
    EMAIL = "email"
    WEBAUTHN = "webauthn"


@dataclass(frozen=True)
class User:
    """A person known to the authentication core."""

    id: str | None = None
    name: str | None = None
    email: str | None = None
    email_verified: datetime | None = field(
        default=None,
        metadata=_alias("emailVerified"),
    )
    image: str | None = None


@dataclass(frozen=True)
class ProviderAccountKey:
    """Natural key of an Account: the (provider, providerAccountId) pair."""

    provider: str
    provider_account_id: str = field(metadata=_alias("providerAccountId"))

    def __str__(self) -> str:
        return f"{self.provider}:{self.provider_account_id}"


@dataclass(frozen=True)
class Account:
    """A provider identity linked to exactly one User.

    Token fields are stored verbatim and never interpreted.
    """

    user_id: str = field(metadata=_alias("userId"))
    type: AccountType
    provider: str
    provider_account_id: str = field(metadata=_alias("providerAccountId"))
    id: str | None = None
    refresh_token: str | None = None
    access_token: str | None = None
    expires_at: int | None = None
    token_type: str | None = None
    scope: str | None = None
    id_token: str | None = None
    session_state: str | None = None

    @property
    def key(self) -> ProviderAccountKey:
        return ProviderAccountKey(self.provider, self.provider_account_id)


@dataclass(frozen=True)
class Session:
    """A database session owned by one User."""

    session_token: str = field(metadata=_alias("sessionToken"))
    user_id: str = field(metadata=_alias("userId"))
    expires: datetime
    id: str | None = None


@dataclass(frozen=True)
class VerificationTokenKey:
    """Natural key of a VerificationToken."""

    identifier: str
    token: str

    def __str__(self) -> str:
        return f"{self.identifier}:{self.token}"


@dataclass(frozen=True)
class VerificationToken:
    """A single-use, time-bounded credential for passwordless flows."""

    identifier: str
    token: str
    expires: datetime

    @property
    def key(self) -> VerificationTokenKey:
        return VerificationTokenKey(self.identifier, self.token)


@dataclass(frozen=True)
class SessionAndUser:
    """Result of a session lookup: the session together with its owner."""

    session: Session
    user: User


Entity = User | Account | Session | VerificationToken


def field_aliases(entity_type: type) -> dict[str, str]:
    """Map attribute names to canonical wire names for a dataclass type."""
    return {f.name: f.metadata.get("alias", f.name) for f in fields(entity_type)}
