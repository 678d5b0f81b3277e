"""Redis implementation of the Adapter interface.

Redis only offers get/set/delete by exact key, so lookups by email and
owner are served by pointer records (see ``keys``). Writes touching a
primary record and its pointers run as one ``WATCH``/``MULTI`` transaction:
the unique key is watched, checked, and the primary record is queued before
its pointers. A transaction that loses a race is retried a bounded number
of times and then reported as ``ConcurrencyConflictError``.

Consistency caveat: on a single Redis node a ``MULTI`` block is applied
entirely or not at all. Data written by older versions, by clients that do
not use transactions, or partially replicated after a failover can still
leave a dangling pointer (target missing) or a stale one (target changed).
Readers treat both as a miss.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from functools import partial
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError, WatchError

from authstore.adapter import Adapter
from authstore.backends.redis.keys import RedisKeyspace
from authstore.backends.redis.records import (
    ACCOUNT_RECORDS,
    SESSION_RECORDS,
    USER_RECORDS,
    VERIFICATION_TOKEN_RECORDS,
)
from authstore.codec.identifiers import UuidCodec
from authstore.domain.entities import (
    Account,
    ProviderAccountKey,
    Session,
    SessionAndUser,
    User,
    VerificationToken,
    VerificationTokenKey,
)
from authstore.domain.invariants import (
    reject_duplicate,
    validate_account,
    validate_account_key,
    validate_session,
    validate_session_patch,
    validate_user,
    validate_user_patch,
    validate_verification_token,
    validate_verification_token_key,
)
from authstore.domain.patches import UNSET, SessionPatch, UserPatch
from authstore.exceptions import (
    BackendUnavailableError,
    ConcurrencyConflictError,
    InvalidEntityError,
    MalformedRecordError,
    RecordNotFoundError,
)
from authstore.integrity import CascadePlan, DeletionStep, IntegrityCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as e:
        raise BackendUnavailableError(operation, str(e)) from e


async def _nothing() -> None:
    return None


class RedisAdapter(Adapter):
    """Adapter over ``redis.asyncio.Redis`` created with ``decode_responses=True``."""

    def __init__(
        self,
        client: Redis,
        keys: RedisKeyspace | None = None,
        native_expiry: bool = True,
        use_getdel: bool = True,
        max_watch_retries: int = 3,
    ) -> None:
        if max_watch_retries < 1:
            raise ValueError("max_watch_retries must be at least 1")
        self._client = client
        self._keys = keys or RedisKeyspace()
        self._native_expiry = native_expiry
        self._use_getdel = use_getdel
        self._max_watch_retries = max_watch_retries
        self._ids = UuidCodec()
        self._coordinator = IntegrityCoordinator()

    async def initialize(self) -> None:
        with _redis_errors("initialize"):
            await self._client.ping()
        logger.info("Redis connection verified")

    async def close(self) -> None:
        await self._client.aclose()

    # Users

    async def create_user(self, user: User) -> User:
        stored = replace(validate_user(user), id=self._new_id())
        user_key = self._keys.user(stored.id)
        payload = USER_RECORDS.to_native(stored)

        async def write(pipe: Pipeline) -> None:
            if stored.email is not None:
                await self._ensure_email_free(pipe, stored.email, stored.id)
            pipe.multi()
            pipe.set(user_key, payload)
            if stored.email is not None:
                pipe.set(self._keys.email(stored.email), stored.id)

        watch = [self._keys.email(stored.email)] if stored.email is not None else []
        await self._transact("create_user", watch, write)

        logger.info("Created user: %s", stored.id)
        return stored

    async def get_user(self, user_id: str) -> User | None:
        user_key = self._user_key(user_id)
        if user_key is None:
            return None

        with _redis_errors("get_user"):
            raw = await self._client.get(user_key)

        if raw is None:
            return None
        return USER_RECORDS.from_native(raw)

    async def get_user_by_email(self, email: str) -> User | None:
        with _redis_errors("get_user_by_email"):
            user_id = await self._client.get(self._keys.email(email))

        if user_id is None:
            return None

        user = await self.get_user(user_id)
        if user is None or user.email != email:
            logger.debug("Ignoring stale email pointer %s -> %s", email, user_id)
            return None
        return user

    async def get_user_by_account(self, key: ProviderAccountKey) -> User | None:
        account = await self.find_account(validate_account_key(key))
        if account is None:
            return None
        return await self.get_user(account.user_id)

    async def update_user(self, patch: UserPatch) -> User:
        patch = validate_user_patch(patch)
        user_key = self._user_key(patch.id)
        if user_key is None:
            raise RecordNotFoundError("User", patch.id)

        async def write(pipe: Pipeline) -> User:
            raw = await pipe.get(user_key)
            if raw is None:
                raise RecordNotFoundError("User", patch.id)

            current = USER_RECORDS.from_native(raw)
            updated = patch.apply(current)
            email_changed = updated.email != current.email
            stale_key = None

            if email_changed:
                if updated.email is not None:
                    await self._ensure_email_free(pipe, updated.email, patch.id)
                if current.email is not None:
                    old_key = self._keys.email(current.email)
                    await pipe.watch(old_key)
                    if await pipe.get(old_key) == patch.id:
                        stale_key = old_key

            pipe.multi()
            pipe.set(user_key, USER_RECORDS.to_native(updated))
            if stale_key is not None:
                pipe.delete(stale_key)
            if email_changed and updated.email is not None:
                pipe.set(self._keys.email(updated.email), patch.id)
            return updated

        watch = [user_key]
        if patch.email is not UNSET and patch.email is not None:
            watch.append(self._keys.email(patch.email))

        updated = await self._transact("update_user", watch, write)
        logger.debug("Updated user: %s", patch.id)
        return updated

    async def delete_user(self, user_id: str) -> None:
        await self._coordinator.cascade_delete_user(user_id, self)

    async def plan_user_deletion(self, user_id: str) -> CascadePlan:
        if self._user_key(user_id) is None:
            return CascadePlan(owner=DeletionStep(f"user {user_id}", _nothing))

        accounts_index = self._keys.accounts_of(user_id)
        sessions_index = self._keys.sessions_of(user_id)

        with _redis_errors("delete_user"):
            account_keys = await self._client.smembers(accounts_index)
            session_keys = await self._client.smembers(sessions_index)

        children = [
            DeletionStep(
                f"account {key}",
                partial(self._delete_owned, "delete_account", key, accounts_index),
            )
            for key in sorted(account_keys)
        ]
        children += [
            DeletionStep(
                f"session {key}",
                partial(self._delete_owned, "delete_session", key, sessions_index),
            )
            for key in sorted(session_keys)
        ]
        return CascadePlan(
            children=children,
            owner=DeletionStep(
                f"user {user_id}",
                partial(self._delete_user_record, user_id),
            ),
        )

    # Accounts

    async def link_account(self, account: Account) -> Account:
        stored = replace(validate_account(account), id=self._new_id())
        self._require_user_id("Account", stored.user_id)
        account_key = self._keys.account(stored.key)

        async def write(pipe: Pipeline) -> None:
            reject_duplicate(
                bool(await pipe.exists(account_key)),
                "Account",
                "provider_account_id",
                stored.key,
            )
            pipe.multi()
            pipe.set(account_key, ACCOUNT_RECORDS.to_native(stored))
            pipe.sadd(self._keys.accounts_of(stored.user_id), account_key)

        await self._transact("link_account", [account_key], write)

        logger.info("Linked account %s to user %s", stored.key, stored.user_id)
        return stored

    async def unlink_account(self, key: ProviderAccountKey) -> Account | None:
        return await self._coordinator.unlink_account(validate_account_key(key), self)

    async def find_account(self, key: ProviderAccountKey) -> Account | None:
        with _redis_errors("find_account"):
            raw = await self._client.get(self._keys.account(key))

        if raw is None:
            return None

        account = ACCOUNT_RECORDS.from_native(raw)
        if account.key != key:
            logger.debug("Account record under %s belongs to %s", key, account.key)
            return None
        return account

    async def delete_account(self, account: Account) -> None:
        await self._delete_owned(
            "unlink_account",
            self._keys.account(account.key),
            self._keys.accounts_of(account.user_id),
        )

    # Sessions

    async def create_session(self, session: Session) -> Session:
        stored = replace(validate_session(session), id=self._new_id())
        self._require_user_id("Session", stored.user_id)
        session_key = self._keys.session(stored.session_token)
        owner_index = self._keys.sessions_of(stored.user_id)

        async def write(pipe: Pipeline) -> None:
            reject_duplicate(
                bool(await pipe.exists(session_key)),
                "Session",
                "session_token",
                None,
            )
            expired = await self._expired_members(pipe, owner_index)
            pipe.multi()
            pipe.set(session_key, SESSION_RECORDS.to_native(stored))
            if self._native_expiry:
                pipe.pexpireat(session_key, stored.expires)
            if expired:
                pipe.srem(owner_index, *expired)
            pipe.sadd(owner_index, session_key)

        await self._transact("create_session", [session_key], write)

        logger.debug("Created session for user %s", stored.user_id)
        return stored

    async def get_session_and_user(self, session_token: str) -> SessionAndUser | None:
        with _redis_errors("get_session_and_user"):
            raw = await self._client.get(self._keys.session(session_token))

        if raw is None:
            return None

        session = SESSION_RECORDS.from_native(raw)
        user = await self.get_user(session.user_id)
        if user is None:
            logger.debug("Session owner %s is missing", session.user_id)
            return None
        return SessionAndUser(session=session, user=user)

    async def update_session(self, patch: SessionPatch) -> Session | None:
        patch = validate_session_patch(patch)
        if patch.user_id is not UNSET:
            self._require_user_id("Session", patch.user_id)
        session_key = self._keys.session(patch.session_token)

        async def write(pipe: Pipeline) -> Session | None:
            raw = await pipe.get(session_key)
            if raw is None:
                return None

            current = SESSION_RECORDS.from_native(raw)
            updated = patch.apply(current)

            pipe.multi()
            pipe.set(session_key, SESSION_RECORDS.to_native(updated))
            if self._native_expiry:
                pipe.pexpireat(session_key, updated.expires)
            if updated.user_id != current.user_id:
                pipe.srem(self._keys.sessions_of(current.user_id), session_key)
                pipe.sadd(self._keys.sessions_of(updated.user_id), session_key)
            return updated

        return await self._transact("update_session", [session_key], write)

    async def delete_session(self, session_token: str) -> Session | None:
        session_key = self._keys.session(session_token)

        async def write(pipe: Pipeline) -> Session | None:
            raw = await pipe.get(session_key)
            if raw is None:
                return None

            session = SESSION_RECORDS.from_native(raw)
            pipe.multi()
            pipe.delete(session_key)
            pipe.srem(self._keys.sessions_of(session.user_id), session_key)
            return session

        return await self._transact("delete_session", [session_key], write)

    # Verification tokens

    async def create_verification_token(
        self,
        token: VerificationToken,
    ) -> VerificationToken:
        token = validate_verification_token(token)
        token_key = self._keys.verification_token(token.key)

        async def write(pipe: Pipeline) -> None:
            reject_duplicate(
                bool(await pipe.exists(token_key)),
                "VerificationToken",
                "token",
                None,
            )
            pipe.multi()
            pipe.set(token_key, VERIFICATION_TOKEN_RECORDS.to_native(token))
            if self._native_expiry:
                pipe.pexpireat(token_key, token.expires)

        await self._transact("create_verification_token", [token_key], write)
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
        return self._use_getdel

    async def take_verification_token(
        self,
        key: VerificationTokenKey,
    ) -> VerificationToken | None:
        with _redis_errors("use_verification_token"):
            raw = await self._client.getdel(self._keys.verification_token(key))

        if raw is None:
            return None
        return VERIFICATION_TOKEN_RECORDS.from_native(raw)

    async def find_verification_token(
        self,
        key: VerificationTokenKey,
    ) -> VerificationToken | None:
        with _redis_errors("find_verification_token"):
            raw = await self._client.get(self._keys.verification_token(key))

        if raw is None:
            return None
        return VERIFICATION_TOKEN_RECORDS.from_native(raw)

    async def delete_verification_token(self, key: VerificationTokenKey) -> bool:
        with _redis_errors("delete_verification_token"):
            removed = await self._client.delete(self._keys.verification_token(key))
        return removed == 1

    # Helpers

    async def _transact(
        self,
        operation: str,
        watch: Sequence[str],
        body: Callable[[Pipeline], Awaitable[T]],
    ) -> T:
        """Run ``body`` inside WATCH/MULTI/EXEC, retrying lost races.

        ``body`` may read through the pipeline while it is watching, must
        call ``pipe.multi()`` before queueing writes, and returns the value
        handed back to the caller once EXEC succeeded.
        """
        for attempt in range(1, self._max_watch_retries + 1):
            try:
                async with self._client.pipeline(transaction=True) as pipe:
                    if watch:
                        await pipe.watch(*watch)
                    result = await body(pipe)
                    await pipe.execute()
                    return result
            except WatchError:
                logger.debug("%s lost a race (attempt %d), retrying", operation, attempt)
            except RedisError as e:
                raise BackendUnavailableError(operation, str(e)) from e

        raise ConcurrencyConflictError(operation, self._max_watch_retries)

    def _new_id(self) -> str:
        return self._ids.from_native(self._ids.new_id())

    def _user_key(self, user_id: str) -> str | None:
        """Key of a user id this adapter could have assigned, else None."""
        if self._ids.parse(user_id) is None:
            return None
        return self._keys.user(user_id)

    def _require_user_id(self, entity: str, user_id: str) -> None:
        if self._ids.parse(user_id) is None:
            raise InvalidEntityError(entity, "user_id is not a valid id")

    async def _expired_members(self, pipe: Pipeline, index_key: str) -> list[str]:
        """Members of an owner set whose record is gone.

        Members are watched before they are checked, so a record written
        again before EXEC aborts the transaction instead of being unindexed.
        """
        members = sorted(await pipe.smembers(index_key))
        if not members:
            return []

        await pipe.watch(*members)
        return [member for member in members if not await pipe.exists(member)]

    async def _ensure_email_free(self, pipe: Pipeline, email: str, user_id: str) -> None:
        owner = await pipe.get(self._keys.email(email))
        if owner is None or owner == user_id:
            return

        owner_key = self._user_key(owner)
        raw = await pipe.get(owner_key) if owner_key is not None else None
        live = raw is not None and USER_RECORDS.from_native(raw).email == email
        if not live:
            logger.debug("Replacing dangling email pointer %s -> %s", email, owner)
        reject_duplicate(live, "User", "email", email)

    async def _delete_owned(self, operation: str, record_key: str, index_key: str) -> None:
        async def write(pipe: Pipeline) -> None:
            pipe.multi()
            pipe.delete(record_key)
            pipe.srem(index_key, record_key)

        await self._transact(operation, [], write)

    async def _delete_user_record(self, user_id: str) -> None:
        user_key = self._keys.user(user_id)

        async def write(pipe: Pipeline) -> Any:
            raw = await pipe.get(user_key)
            email_key = None
            if raw is not None:
                try:
                    email = USER_RECORDS.from_native(raw).email
                except MalformedRecordError:
                    logger.warning("Deleting malformed user record %s", user_key)
                    email = None
                if email is not None:
                    email_key = self._keys.email(email)
                    await pipe.watch(email_key)
                    if await pipe.get(email_key) != user_id:
                        email_key = None

            pipe.multi()
            pipe.delete(user_key)
            if email_key is not None:
                pipe.delete(email_key)

        await self._transact("delete_user", [user_key], write)
