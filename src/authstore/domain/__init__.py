"""Canonical entities, patches and their invariants.

No backend dependency lives here.
"""

from authstore.domain.entities import (
    Account,
    AccountType,
    ProviderAccountKey,
    Session,
    SessionAndUser,
    User,
    VerificationToken,
    VerificationTokenKey,
    field_aliases,
)
from authstore.domain.patches import UNSET, SessionPatch, UserPatch
from authstore.domain.time import ensure_tz_aware, utc_now

__all__ = [
    "Account",
    "AccountType",
    "ProviderAccountKey",
    "Session",
    "SessionAndUser",
    "SessionPatch",
    "UNSET",
    "User",
    "UserPatch",
    "VerificationToken",
    "VerificationTokenKey",
    "ensure_tz_aware",
    "field_aliases",
    "utc_now",
]
