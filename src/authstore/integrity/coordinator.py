"""Sequencing of multi-record effects.

None of the backends offers a cross-record transaction that covers every
verb, so the coordinator owns the rules for operations touching more than
one record:

- cascade delete attempts every planned deletion, owner last, and reports
  the first failure only after all attempts completed;
- unlinking an account that does not exist is a no-op;
- consuming a verification token is a read and a delete in one event.

Every constituent step must be idempotent. A cascade interrupted half-way
(crash, cancellation, failed step) converges when simply retried.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from authstore.domain.entities import (
    Account,
    ProviderAccountKey,
    VerificationToken,
    VerificationTokenKey,
)
from authstore.exceptions import CascadeDeleteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeletionStep:
    """One idempotent deletion, labelled for error reporting."""

    label: str
    action: Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class CascadePlan:
    """Deletions needed to remove an owner and everything it owns."""

    owner: DeletionStep
    children: list[DeletionStep] = field(default_factory=list)

    @property
    def steps(self) -> list[DeletionStep]:
        return [*self.children, self.owner]


@runtime_checkable
class CascadeStore(Protocol):
    async def plan_user_deletion(self, user_id: str) -> CascadePlan: ...


@runtime_checkable
class AccountStore(Protocol):
    async def find_account(self, key: ProviderAccountKey) -> Account | None: ...

    async def delete_account(self, account: Account) -> None: ...


@runtime_checkable
class VerificationTokenStore(Protocol):
    @property
    def supports_atomic_take(self) -> bool: ...

    async def take_verification_token(
        self, key: VerificationTokenKey
    ) -> VerificationToken | None: ...

    async def find_verification_token(
        self, key: VerificationTokenKey
    ) -> VerificationToken | None: ...

    async def delete_verification_token(self, key: VerificationTokenKey) -> bool:
        """Delete the token; return whether this call removed it."""
        ...


class IntegrityCoordinator:
    """Backend-agnostic orchestration of multi-record operations."""

    async def run_plan(self, owner: str, plan: CascadePlan) -> None:
        """Run every step of ``plan``; raise after all of them were tried."""
        failures: list[tuple[str, Exception]] = []

        for step in plan.steps:
            try:
                await step.action()
            except Exception as e:
                logger.warning("Cascade step failed for %s: %s (%s)", owner, step.label, e)
                failures.append((step.label, e))

        if failures:
            raise CascadeDeleteError(owner, failures) from failures[0][1]

        logger.debug("Cascade for %s completed (%d steps)", owner, len(plan.steps))

    async def cascade_delete_user(self, user_id: str, store: CascadeStore) -> None:
        plan = await store.plan_user_deletion(user_id)
        await self.run_plan(f"User {user_id}", plan)
        logger.info(
            "Deleted user %s with %d dependent record group(s)",
            user_id,
            len(plan.children),
        )

    async def unlink_account(
        self,
        key: ProviderAccountKey,
        store: AccountStore,
    ) -> Account | None:
        account = await store.find_account(key)
        if account is None:
            logger.debug("Nothing to unlink for %s", key)
            return None

        await store.delete_account(account)
        logger.info("Unlinked account %s from user %s", key, account.user_id)
        return account

    async def consume_verification_token(
        self,
        key: VerificationTokenKey,
        store: VerificationTokenStore,
    ) -> VerificationToken | None:
        if store.supports_atomic_take:
            return await store.take_verification_token(key)

        # Fetch, then delete guarded by existence: only the caller whose
        # delete actually removed the record gets the token.
        token = await store.find_verification_token(key)
        if token is None:
            return None

        if not await store.delete_verification_token(key):
            logger.debug("Verification token %s consumed concurrently", key.identifier)
            return None

        return token
