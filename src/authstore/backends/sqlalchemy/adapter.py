"""SQLAlchemy implementation of the Adapter interface.

Every verb runs in its own transaction. Uniqueness and ownership are
enforced by the schema (unique constraints, foreign keys with
``ON DELETE CASCADE``); the adapter only translates the database's
``IntegrityError`` into the matching ``OperationFailure``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from functools import partial
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from authstore.adapter import Adapter
from authstore.backends.sqlalchemy.base import AuthStoreBase
from authstore.backends.sqlalchemy.models import (
    AccountModel,
    SessionModel,
    UserModel,
    VerificationTokenModel,
)
from authstore.codec.identifiers import UuidCodec
from authstore.domain.entities import (
    Account,
    AccountType,
    ProviderAccountKey,
    Session,
    SessionAndUser,
    User,
    VerificationToken,
    VerificationTokenKey,
)
from authstore.domain.invariants import (
    single_match,
    validate_account,
    validate_account_key,
    validate_session,
    validate_session_patch,
    validate_user,
    validate_user_patch,
    validate_verification_token,
    validate_verification_token_key,
)
from authstore.domain.patches import SessionPatch, UserPatch
from authstore.domain.time import ensure_tz_aware
from authstore.exceptions import (
    BackendUnavailableError,
    ConstraintViolationError,
    DuplicateEntityError,
    InvalidEntityError,
    MalformedRecordError,
    RecordNotFoundError,
)
from authstore.integrity import CascadePlan, DeletionStep, IntegrityCoordinator

logger = logging.getLogger(__name__)


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops the offset on write, so store every instant as UTC.
    if value is None:
        return None
    return ensure_tz_aware(value).astimezone(timezone.utc)


def _read_time(value: datetime | None) -> datetime | None:
    return ensure_tz_aware(value) if value is not None else None


class SQLAlchemyAdapter(Adapter):
    """Adapter over an async SQLAlchemy engine (PostgreSQL, SQLite)."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        """Initialize the adapter.

        Parameters
        ----------
        engine
            Async engine used for schema creation and disposal
        session_maker
            Optional session factory; one bound to ``engine`` is created
            when omitted
        """
        self._engine = engine
        self._session_maker = session_maker or async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._ids = UuidCodec()
        self._coordinator = IntegrityCoordinator()

    async def initialize(self) -> None:
        """Create missing tables (idempotent, existing tables are untouched)."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(AuthStoreBase.metadata.create_all)
        except SQLAlchemyError as e:
            raise BackendUnavailableError("initialize", str(e)) from e
        logger.info("Database schema is up to date")

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _transaction(
        self,
        operation: str,
        entity: str | None = None,
        unique_field: str | None = None,
    ) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session, session.begin():
                yield session
        except IntegrityError as e:
            if entity is None:
                raise ConstraintViolationError(operation, str(e.orig)) from e
            if unique_field is not None and "unique" in str(e.orig).lower():
                raise DuplicateEntityError(entity, unique_field) from e
            raise ConstraintViolationError(entity, str(e.orig)) from e
        except SQLAlchemyError as e:
            raise BackendUnavailableError(operation, str(e)) from e

    # Users

    async def create_user(self, user: User) -> User:
        user = validate_user(user)
        user_id = self._ids.new_id()

        async with self._transaction("create_user", "User", "email") as session:
            session.add(
                UserModel(
                    id=user_id,
                    name=user.name,
                    email=user.email,
                    email_verified=_utc(user.email_verified),
                    image=user.image,
                )
            )

        logger.info("Created user: %s", user_id)
        return replace(user, id=self._ids.from_native(user_id))

    async def get_user(self, user_id: str) -> User | None:
        uuid = self._ids.parse(user_id)
        if uuid is None:
            return None

        async with self._transaction("get_user") as session:
            model = await session.get(UserModel, uuid)

        return self._map_user(model) if model else None

    async def get_user_by_email(self, email: str) -> User | None:
        stmt = select(UserModel).where(UserModel.email == email).limit(2)

        async with self._transaction("get_user_by_email") as session:
            models = (await session.execute(stmt)).scalars().all()

        model = single_match(models, "User", "email")
        return self._map_user(model) if model else None

    async def get_user_by_account(self, key: ProviderAccountKey) -> User | None:
        key = validate_account_key(key)
        stmt = (
            select(UserModel)
            .join(AccountModel, AccountModel.user_id == UserModel.id)
            .where(
                AccountModel.provider == key.provider,
                AccountModel.provider_account_id == key.provider_account_id,
            )
            .limit(2)
        )

        async with self._transaction("get_user_by_account") as session:
            models = (await session.execute(stmt)).scalars().all()

        model = single_match(models, "Account", "provider+providerAccountId")
        return self._map_user(model) if model else None

    async def update_user(self, patch: UserPatch) -> User:
        patch = validate_user_patch(patch)
        uuid = self._ids.parse(patch.id)
        if uuid is None:
            raise RecordNotFoundError("User", patch.id)

        async with self._transaction("update_user", "User", "email") as session:
            model = await session.get(UserModel, uuid)
            if model is None:
                raise RecordNotFoundError("User", patch.id)

            for name, value in patch.changes().items():
                if name == "email_verified":
                    value = _utc(value)
                setattr(model, name, value)
            updated = self._map_user(model)

        logger.debug("Updated user: %s", patch.id)
        return updated

    async def delete_user(self, user_id: str) -> None:
        await self._coordinator.cascade_delete_user(user_id, self)

    async def plan_user_deletion(self, user_id: str) -> CascadePlan:
        # One step, one transaction: the database applies the whole cascade.
        return CascadePlan(
            owner=DeletionStep(
                f"user {user_id}",
                partial(self._delete_user_rows, user_id),
            ),
        )

    # Accounts

    async def link_account(self, account: Account) -> Account:
        account = validate_account(account)
        owner = self._ids.parse(account.user_id)
        if owner is None:
            raise InvalidEntityError("Account", "user_id is not a valid id")
        account_id = self._ids.new_id()

        async with self._transaction(
            "link_account",
            "Account",
            "provider_account_id",
        ) as session:
            session.add(
                AccountModel(
                    id=account_id,
                    user_id=owner,
                    type=account.type.value,
                    provider=account.provider,
                    provider_account_id=account.provider_account_id,
                    refresh_token=account.refresh_token,
                    access_token=account.access_token,
                    expires_at=account.expires_at,
                    token_type=account.token_type,
                    scope=account.scope,
                    id_token=account.id_token,
                    session_state=account.session_state,
                )
            )

        logger.info("Linked account %s to user %s", account.key, account.user_id)
        return replace(account, id=self._ids.from_native(account_id))

    async def unlink_account(self, key: ProviderAccountKey) -> Account | None:
        return await self._coordinator.unlink_account(validate_account_key(key), self)

    async def find_account(self, key: ProviderAccountKey) -> Account | None:
        stmt = (
            select(AccountModel)
            .where(
                AccountModel.provider == key.provider,
                AccountModel.provider_account_id == key.provider_account_id,
            )
            .limit(2)
        )

        async with self._transaction("find_account") as session:
            models = (await session.execute(stmt)).scalars().all()

        model = single_match(models, "Account", "provider+providerAccountId")
        return self._map_account(model) if model else None

    async def delete_account(self, account: Account) -> None:
        stmt = delete(AccountModel).where(
            AccountModel.provider == account.provider,
            AccountModel.provider_account_id == account.provider_account_id,
        )
        async with self._transaction("unlink_account") as session:
            await session.execute(stmt)

    # Sessions

    async def create_session(self, session: Session) -> Session:
        session = validate_session(session)
        owner = self._ids.parse(session.user_id)
        if owner is None:
            raise InvalidEntityError("Session", "user_id is not a valid id")
        session_id = self._ids.new_id()

        async with self._transaction("create_session", "Session", "session_token") as db:
            db.add(
                SessionModel(
                    id=session_id,
                    user_id=owner,
                    expires=_utc(session.expires),
                    session_token=session.session_token,
                )
            )

        logger.debug("Created session for user %s", session.user_id)
        return replace(session, id=self._ids.from_native(session_id))

    async def get_session_and_user(self, session_token: str) -> SessionAndUser | None:
        stmt = (
            select(SessionModel, UserModel)
            .join(UserModel, SessionModel.user_id == UserModel.id)
            .where(SessionModel.session_token == session_token)
            .limit(2)
        )

        async with self._transaction("get_session_and_user") as db:
            rows = (await db.execute(stmt)).all()

        row = single_match(rows, "Session", "sessionToken")
        if row is None:
            return None

        session_model, user_model = row
        return SessionAndUser(
            session=self._map_session(session_model),
            user=self._map_user(user_model),
        )

    async def update_session(self, patch: SessionPatch) -> Session | None:
        patch = validate_session_patch(patch)
        changes = patch.changes()
        if "user_id" in changes:
            owner = self._ids.parse(changes["user_id"])
            if owner is None:
                raise InvalidEntityError("Session", "user_id is not a valid id")
            changes["user_id"] = owner
        if "expires" in changes:
            changes["expires"] = _utc(changes["expires"])

        stmt = select(SessionModel).where(SessionModel.session_token == patch.session_token)

        async with self._transaction("update_session", "Session") as db:
            model = (await db.execute(stmt)).scalar_one_or_none()
            if model is None:
                return None

            for name, value in changes.items():
                setattr(model, name, value)
            updated = self._map_session(model)

        return updated

    async def delete_session(self, session_token: str) -> Session | None:
        stmt = (
            delete(SessionModel)
            .where(SessionModel.session_token == session_token)
            .returning(SessionModel)
            .execution_options(synchronize_session=False)
        )

        async with self._transaction("delete_session") as db:
            models = (await db.execute(stmt)).scalars().all()

        model = single_match(models, "Session", "sessionToken")
        return self._map_session(model) if model else None

    # Verification tokens

    async def create_verification_token(
        self,
        token: VerificationToken,
    ) -> VerificationToken:
        token = validate_verification_token(token)

        async with self._transaction(
            "create_verification_token",
            "VerificationToken",
            "token",
        ) as db:
            db.add(
                VerificationTokenModel(
                    identifier=token.identifier,
                    token=token.token,
                    expires=_utc(token.expires),
                )
            )

        return token

    async def use_verification_token(
        self,
        key: VerificationTokenKey,
    ) -> VerificationToken | None:
        return await self._coordinator.consume_verification_token(
            validate_verification_token_key(key),
            self,
        )

    @property
    def supports_atomic_take(self) -> bool:
        return True

    async def take_verification_token(
        self,
        key: VerificationTokenKey,
    ) -> VerificationToken | None:
        stmt = (
            delete(VerificationTokenModel)
            .where(
                VerificationTokenModel.identifier == key.identifier,
                VerificationTokenModel.token == key.token,
            )
            .returning(VerificationTokenModel)
            .execution_options(synchronize_session=False)
        )

        async with self._transaction("use_verification_token") as db:
            model = (await db.execute(stmt)).scalar_one_or_none()

        return self._map_token(model) if model else None

    async def find_verification_token(
        self,
        key: VerificationTokenKey,
    ) -> VerificationToken | None:
        async with self._transaction("find_verification_token") as db:
            model = await db.get(VerificationTokenModel, (key.identifier, key.token))

        return self._map_token(model) if model else None

    async def delete_verification_token(self, key: VerificationTokenKey) -> bool:
        stmt = delete(VerificationTokenModel).where(
            VerificationTokenModel.identifier == key.identifier,
            VerificationTokenModel.token == key.token,
        )
        async with self._transaction("delete_verification_token") as db:
            result: Any = await db.execute(stmt)
        return result.rowcount == 1

    # Mapping

    async def _delete_user_rows(self, user_id: str) -> None:
        uuid = self._ids.parse(user_id)
        if uuid is None:
            return

        async with self._transaction("delete_user") as db:
            await db.execute(delete(AccountModel).where(AccountModel.user_id == uuid))
            await db.execute(delete(SessionModel).where(SessionModel.user_id == uuid))
            await db.execute(delete(UserModel).where(UserModel.id == uuid))

    def _map_user(self, model: UserModel) -> User:
        return User(
            id=self._ids.from_native(model.id),
            name=model.name,
            email=model.email,
            email_verified=_read_time(model.email_verified),
            image=model.image,
        )

    def _map_account(self, model: AccountModel) -> Account:
        try:
            account_type = AccountType(model.type)
        except ValueError:
            raise MalformedRecordError(
                "Account",
                f"unknown account type {model.type!r}",
            ) from None

        return Account(
            id=self._ids.from_native(model.id),
            user_id=self._ids.from_native(model.user_id),
            type=account_type,
            provider=model.provider,
            provider_account_id=model.provider_account_id,
            refresh_token=model.refresh_token,
            access_token=model.access_token,
            expires_at=model.expires_at,
            token_type=model.token_type,
            scope=model.scope,
            id_token=model.id_token,
            session_state=model.session_state,
        )

    def _map_session(self, model: SessionModel) -> Session:
        return Session(
            id=self._ids.from_native(model.id),
            session_token=model.session_token,
            user_id=self._ids.from_native(model.user_id),
            expires=ensure_tz_aware(model.expires),
        )

    @staticmethod
    def _map_token(model: VerificationTokenModel) -> VerificationToken:
        return VerificationToken(
            identifier=model.identifier,
            token=model.token,
            expires=ensure_tz_aware(model.expires),
        )
