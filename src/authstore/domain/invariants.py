"""Boundary validation for the canonical entities.

Validators run before any write. They normalize what can be normalized
(naive timestamps are taken as UTC, account types coerced to the enum) and
raise ``InvalidEntityError`` for input that can never be stored.

Uniqueness is checked here only for backends that cannot enforce it
natively; backends with unique indexes translate their own constraint
signal instead.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from typing import TypeVar

from authstore.domain.entities import (
    Account,
    AccountType,
    ProviderAccountKey,
    Session,
    User,
    VerificationToken,
    VerificationTokenKey,
)
from authstore.domain.patches import UNSET, SessionPatch, UserPatch
from authstore.domain.time import ensure_tz_aware
from authstore.exceptions import (
    BackendIntegrityError,
    DuplicateEntityError,
    InvalidEntityError,
)

_M = TypeVar("_M")


def _require_text(entity: str, name: str, value: object) -> None:
    if not isinstance(value, str) or not value:
        raise InvalidEntityError(entity, f"{name} must be a non-empty string")


def _timestamp(entity: str, name: str, value: object) -> datetime:
    if not isinstance(value, datetime):
        raise InvalidEntityError(entity, f"{name} must be a datetime")
    return ensure_tz_aware(value)


def validate_user(user: User) -> User:
    if user.email is not None:
        _require_text("User", "email", user.email)
    if user.email_verified is not None:
        user = replace(
            user,
            email_verified=_timestamp("User", "email_verified", user.email_verified),
        )
    return user


def validate_user_patch(patch: UserPatch) -> UserPatch:
    _require_text("User", "id", patch.id)
    if patch.email is not UNSET and patch.email is not None:
        _require_text("User", "email", patch.email)
    if patch.email_verified is not UNSET and patch.email_verified is not None:
        patch = replace(
            patch,
            email_verified=_timestamp("User", "email_verified", patch.email_verified),
        )
    return patch


def validate_account(account: Account) -> Account:
    _require_text("Account", "user_id", account.user_id)
    _require_text("Account", "provider", account.provider)
    _require_text("Account", "provider_account_id", account.provider_account_id)
    try:
        account_type = AccountType(account.type)
    except ValueError:
        raise InvalidEntityError(
            "Account",
            f"unsupported account type {account.type!r}",
        ) from None
    if account.expires_at is not None and not isinstance(account.expires_at, int):
        raise InvalidEntityError("Account", "expires_at must be an integer")
    return replace(account, type=account_type)


def validate_account_key(key: ProviderAccountKey) -> ProviderAccountKey:
    _require_text("Account", "provider", key.provider)
    _require_text("Account", "provider_account_id", key.provider_account_id)
    return key


def validate_session(session: Session) -> Session:
    _require_text("Session", "session_token", session.session_token)
    _require_text("Session", "user_id", session.user_id)
    return replace(session, expires=_timestamp("Session", "expires", session.expires))


def validate_session_patch(patch: SessionPatch) -> SessionPatch:
    _require_text("Session", "session_token", patch.session_token)
    if patch.user_id is not UNSET:
        _require_text("Session", "user_id", patch.user_id)
    if patch.expires is not UNSET:
        patch = replace(patch, expires=_timestamp("Session", "expires", patch.expires))
    return patch


def validate_verification_token(token: VerificationToken) -> VerificationToken:
    _require_text("VerificationToken", "identifier", token.identifier)
    _require_text("VerificationToken", "token", token.token)
    return replace(
        token,
        expires=_timestamp("VerificationToken", "expires", token.expires),
    )


def validate_verification_token_key(key: VerificationTokenKey) -> VerificationTokenKey:
    _require_text("VerificationToken", "identifier", key.identifier)
    _require_text("VerificationToken", "token", key.token)
    return key


def reject_duplicate(taken: bool, entity: str, field: str, value: object) -> None:
    """Raise if a unique key is already taken by a live record."""
    if taken:
        raise DuplicateEntityError(entity, field, value)


def single_match(matches: Sequence[_M], entity: str, lookup: str) -> _M | None:
    """Return the only match, ``None`` for no match.

    More than one match means the backend already violates a uniqueness
    invariant; that is reported, never resolved by picking one.
    """
    if not matches:
        return None
    if len(matches) > 1:
        raise BackendIntegrityError(entity, lookup, len(matches))
    return matches[0]
