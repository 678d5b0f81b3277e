"""Referential-integrity coordination for multi-record operations."""

from authstore.integrity.coordinator import (
    AccountStore,
    CascadePlan,
    CascadeStore,
    DeletionStep,
    IntegrityCoordinator,
    VerificationTokenStore,
)

__all__ = [
    "AccountStore",
    "CascadePlan",
    "CascadeStore",
    "DeletionStep",
    "IntegrityCoordinator",
    "VerificationTokenStore",
]
