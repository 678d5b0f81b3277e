"""Adapter interface consumed by the authentication core."""

from abc import ABC, abstractmethod

from authstore.domain.entities import (
    Account,
    ProviderAccountKey,
    Session,
    SessionAndUser,
    User,
    VerificationToken,
    VerificationTokenKey,
)
from authstore.domain.patches import SessionPatch, UserPatch


class Adapter(ABC):
    """Fixed verb set over User, Account, Session and VerificationToken.

    Lookups return ``None`` when the record does not exist. Any other
    problem raises ``OperationFailure``; a lookup never hides a backend
    error behind ``None``. Backend-native types never cross this boundary.
    """

    async def initialize(self) -> None:
        """Prepare the backend (indexes, tables, connectivity check)."""

    async def close(self) -> None:
        """Release client resources held by the adapter."""

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Create a user; the returned entity carries the assigned id."""

    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        """Find a user by id."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User | None:
        """Find a user by email address (exact match)."""

    @abstractmethod
    async def get_user_by_account(self, key: ProviderAccountKey) -> User | None:
        """Find the owner of the account identified by provider and account id."""

    @abstractmethod
    async def update_user(self, patch: UserPatch) -> User:
        """Apply a partial update to a user.

        Parameters
        ----------
        patch
            Fields to change; fields left unset are untouched

        Returns
        -------
        The user after the update

        Raises
        ------
        RecordNotFoundError
            If no user has ``patch.id``
        DuplicateEntityError
            If the new email belongs to another user
        """

    @abstractmethod
    async def delete_user(self, user_id: str) -> None:
        """Delete a user together with all owned accounts and sessions.

        Deleting an absent user is not an error, so a failed cascade can be
        retried until it converges.
        """

    @abstractmethod
    async def link_account(self, account: Account) -> Account:
        """Link a provider account to its owning user."""

    @abstractmethod
    async def unlink_account(self, key: ProviderAccountKey) -> Account | None:
        """Remove the account with this key; no-op when absent.

        Returns
        -------
        The removed account, or None if there was nothing to remove
        """

    @abstractmethod
    async def create_session(self, session: Session) -> Session:
        """Create a session for an existing user."""

    @abstractmethod
    async def get_session_and_user(self, session_token: str) -> SessionAndUser | None:
        """Find a session and its owner; None if either is missing."""

    @abstractmethod
    async def update_session(self, patch: SessionPatch) -> Session | None:
        """Apply a partial update to a session; None if the session is gone."""

    @abstractmethod
    async def delete_session(self, session_token: str) -> Session | None:
        """Delete a session; returns the removed session if there was one."""

    @abstractmethod
    async def create_verification_token(
        self,
        token: VerificationToken,
    ) -> VerificationToken:
        """Store a new verification token."""

    @abstractmethod
    async def use_verification_token(
        self,
        key: VerificationTokenKey,
    ) -> VerificationToken | None:
        """Consume a verification token.

        The token is returned at most once; consumption and deletion are the
        same event.
        """
