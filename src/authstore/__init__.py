"""authstore - persistence adapters for authentication data.

Users, provider accounts, database sessions and verification tokens are
exchanged with the authentication core through :class:`Adapter`. Concrete
backends live in :mod:`authstore.backends`; :func:`create_adapter` builds the
one selected by configuration.
"""

from authstore.adapter import Adapter
from authstore.domain import (
    UNSET,
    Account,
    AccountType,
    ProviderAccountKey,
    Session,
    SessionAndUser,
    SessionPatch,
    User,
    UserPatch,
    VerificationToken,
    VerificationTokenKey,
)
from authstore.exceptions import (
    AuthStoreError,
    BackendIntegrityError,
    BackendUnavailableError,
    CascadeDeleteError,
    ConcurrencyConflictError,
    ConstraintViolationError,
    DuplicateEntityError,
    ErrorCode,
    InvalidEntityError,
    MalformedRecordError,
    OperationFailure,
    RecordNotFoundError,
)
from authstore.factory import create_adapter

__all__ = [
    "UNSET",
    "Account",
    "AccountType",
    "Adapter",
    "AuthStoreError",
    "BackendIntegrityError",
    "BackendUnavailableError",
    "CascadeDeleteError",
    "ConcurrencyConflictError",
    "ConstraintViolationError",
    "DuplicateEntityError",
    "ErrorCode",
    "InvalidEntityError",
    "MalformedRecordError",
    "OperationFailure",
    "ProviderAccountKey",
    "RecordNotFoundError",
    "Session",
    "SessionAndUser",
    "SessionPatch",
    "User",
    "UserPatch",
    "VerificationToken",
    "VerificationTokenKey",
    "create_adapter",
]
