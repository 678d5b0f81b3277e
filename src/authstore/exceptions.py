"""Adapter error taxonomy.

"Not found" is never an exception: every lookup returns ``None`` for a
missing record. Everything else that goes wrong during a persistence call
is an ``OperationFailure`` and must reach the caller, which is expected to
fail the enclosing auth flow rather than treat the user as anonymous.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for programmatic handling."""

    # Write collisions
    DUPLICATE_ENTITY = "DUPLICATE_ENTITY"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # Input rejected at the adapter boundary
    INVALID_ENTITY = "INVALID_ENTITY"

    # Backend state
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    MALFORMED_RECORD = "MALFORMED_RECORD"
    BACKEND_INTEGRITY = "BACKEND_INTEGRITY"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"

    # Multi-record operations
    CASCADE_INCOMPLETE = "CASCADE_INCOMPLETE"


class AuthStoreError(Exception):
    """Base exception for all adapter errors.

    Attributes
    ----------
    message
        Human-readable error message
    code
        Stable error code for programmatic handling
    details
        Optional additional context (entity, field, backend operation)
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code.value!r}, "
            f"details={self.details!r})"
        )


class OperationFailure(AuthStoreError):
    """A persistence call failed for a reason other than "record absent"."""


class ConstraintViolationError(OperationFailure):
    """The backend rejected a write because of a constraint."""

    def __init__(
        self,
        entity: str,
        message: str | None = None,
        code: ErrorCode = ErrorCode.CONSTRAINT_VIOLATION,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.entity = entity
        super().__init__(
            message or f"Constraint violated while writing {entity}",
            code,
            {"entity": entity, **(details or {})},
        )


class DuplicateEntityError(ConstraintViolationError):
    """A write would duplicate a unique key (email, session token, ...)."""

    def __init__(self, entity: str, field: str, value: object = None) -> None:
        self.field = field
        self.value = value
        message = f"{entity} with this {field} already exists"
        if value is not None:
            message = f"{entity} with {field}={value!s} already exists"
        super().__init__(
            entity,
            message,
            ErrorCode.DUPLICATE_ENTITY,
            {"field": field},
        )


class InvalidEntityError(OperationFailure):
    """Input rejected at the adapter boundary before any write."""

    def __init__(self, entity: str, reason: str) -> None:
        self.entity = entity
        self.reason = reason
        super().__init__(
            f"Invalid {entity}: {reason}",
            ErrorCode.INVALID_ENTITY,
            {"entity": entity},
        )


class RecordNotFoundError(OperationFailure):
    """An update targeted a record that does not exist."""

    def __init__(self, entity: str, key: str) -> None:
        self.entity = entity
        self.key = key
        super().__init__(
            f"{entity} not found: {key}",
            ErrorCode.RECORD_NOT_FOUND,
            {"entity": entity, "key": key},
        )


class MalformedRecordError(OperationFailure):
    """A stored record could not be decoded into a canonical entity."""

    def __init__(self, entity: str, reason: str) -> None:
        self.entity = entity
        super().__init__(
            f"Malformed {entity} record: {reason}",
            ErrorCode.MALFORMED_RECORD,
            {"entity": entity},
        )


class BackendIntegrityError(OperationFailure):
    """The backend holds data that breaks a uniqueness invariant."""

    def __init__(self, entity: str, lookup: str, matches: int) -> None:
        self.entity = entity
        self.lookup = lookup
        self.matches = matches
        super().__init__(
            f"Expected at most one {entity} for {lookup}, found {matches}",
            ErrorCode.BACKEND_INTEGRITY,
            {"entity": entity, "lookup": lookup, "matches": matches},
        )


class BackendUnavailableError(OperationFailure):
    """The backend could not be reached or failed to execute a command."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        super().__init__(
            f"Backend failure during {operation}: {reason}",
            ErrorCode.BACKEND_UNAVAILABLE,
            {"operation": operation},
        )


class ConcurrencyConflictError(OperationFailure):
    """A conditional write kept losing to concurrent writers."""

    def __init__(self, operation: str, attempts: int) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} was modified concurrently ({attempts} attempts)",
            ErrorCode.CONCURRENCY_CONFLICT,
            {"operation": operation, "attempts": attempts},
        )


class CascadeDeleteError(OperationFailure):
    """One or more deletions of a cascade failed.

    Every planned deletion has been attempted when this is raised. The first
    failure is chained as ``__cause__``; all of them are in ``failures``.
    """

    def __init__(self, owner: str, failures: list[tuple[str, Exception]]) -> None:
        self.owner = owner
        self.failures = failures
        labels = ", ".join(label for label, _ in failures)
        super().__init__(
            f"Cascade delete of {owner} incomplete; failed steps: {labels}",
            ErrorCode.CASCADE_INCOMPLETE,
            {"owner": owner, "failed_steps": [label for label, _ in failures]},
        )
