"""MongoDB implementation of the Adapter interface.

Secondary lookups (email, session token, provider account) are native
filtered queries backed by unique indexes; no pointer records are kept.
Uniqueness is enforced by those indexes, so ``initialize()`` must run once
per database before the adapter is used for writes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, replace
from functools import partial
from typing import Any

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from authstore.adapter import Adapter
from authstore.backends.mongodb.codec import DocumentCodec, ObjectIdCodec
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
from authstore.exceptions import (
    BackendUnavailableError,
    DuplicateEntityError,
    InvalidEntityError,
    RecordNotFoundError,
)
from authstore.integrity import CascadePlan, DeletionStep, IntegrityCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MongoCollections:
    """Collection names used by the adapter."""

    users: str = "users"
    accounts: str = "accounts"
    sessions: str = "sessions"
    verification_tokens: str = "verification_tokens"


@contextmanager
def _mongo_errors(
    operation: str,
    entity: str | None = None,
    unique_field: str | None = None,
) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError as e:
        if entity is None or unique_field is None:
            raise BackendUnavailableError(operation, str(e)) from e
        raise DuplicateEntityError(entity, unique_field) from e
    except PyMongoError as e:
        raise BackendUnavailableError(operation, str(e)) from e


async def _nothing() -> None:
    return None


class MongoDBAdapter(Adapter):
    """Adapter over an async MongoDB database handle."""

    def __init__(
        self,
        database: Any,
        collections: MongoCollections | None = None,
        ttl_indexes: bool = True,
        client: Any = None,
    ) -> None:
        names = collections or MongoCollections()
        self._users = database[names.users]
        self._accounts = database[names.accounts]
        self._sessions = database[names.sessions]
        self._verification_tokens = database[names.verification_tokens]
        self._ttl_indexes = ttl_indexes
        self._client = client

        self._ids = ObjectIdCodec()
        self._user_codec = DocumentCodec(User, self._ids)
        self._account_codec = DocumentCodec(
            Account,
            self._ids,
            enums={"type": AccountType},
        )
        self._session_codec = DocumentCodec(Session, self._ids)
        self._token_codec = DocumentCodec(VerificationToken, self._ids)
        self._coordinator = IntegrityCoordinator()

    async def initialize(self) -> None:
        with _mongo_errors("initialize"):
            await self._users.create_index("email", unique=True, sparse=True)
            await self._accounts.create_index(
                [("provider", ASCENDING), ("providerAccountId", ASCENDING)],
                unique=True,
            )
            await self._accounts.create_index("userId")
            await self._sessions.create_index("sessionToken", unique=True)
            await self._sessions.create_index("userId")
            await self._verification_tokens.create_index(
                [("identifier", ASCENDING), ("token", ASCENDING)],
                unique=True,
            )
            if self._ttl_indexes:
                await self._sessions.create_index("expires", expireAfterSeconds=0)
                await self._verification_tokens.create_index(
                    "expires",
                    expireAfterSeconds=0,
                )
        logger.info("MongoDB indexes ensured")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    # Users

    async def create_user(self, user: User) -> User:
        stored = replace(validate_user(user), id=self._ids.new_id())
        document = self._user_codec.to_native(stored)

        with _mongo_errors("create_user", "User", "email"):
            await self._users.insert_one(document)

        logger.info("Created user: %s", stored.id)
        return stored

    async def get_user(self, user_id: str) -> User | None:
        object_id = self._ids.parse(user_id)
        if object_id is None:
            return None

        with _mongo_errors("get_user"):
            document = await self._users.find_one({"_id": object_id})

        if document is None:
            return None
        return self._user_codec.from_native(document)

    async def get_user_by_email(self, email: str) -> User | None:
        document = await self._find_single(
            self._users,
            {"email": email},
            "User",
            "email",
        )
        if document is None:
            return None
        return self._user_codec.from_native(document)

    async def get_user_by_account(self, key: ProviderAccountKey) -> User | None:
        document = await self._find_account_document(validate_account_key(key))
        if document is None:
            return None
        account = self._account_codec.from_native(document)
        owner_id = self._ids.parse(account.user_id)
        if owner_id is None:
            logger.debug("Account %s has a foreign user id", key)
            return None

        with _mongo_errors("get_user_by_account"):
            document = await self._users.find_one({"_id": owner_id})

        if document is None:
            logger.debug("Account %s points to a missing user", key)
            return None
        return self._user_codec.from_native(document)

    async def update_user(self, patch: UserPatch) -> User:
        patch = validate_user_patch(patch)
        object_id = self._ids.parse(patch.id)
        if object_id is None:
            raise RecordNotFoundError("User", patch.id)

        update = self._user_codec.patch_to_native(patch.changes())
        with _mongo_errors("update_user", "User", "email"):
            if update:
                document = await self._users.find_one_and_update(
                    {"_id": object_id},
                    update,
                    return_document=ReturnDocument.AFTER,
                )
            else:
                document = await self._users.find_one({"_id": object_id})

        if document is None:
            raise RecordNotFoundError("User", patch.id)

        logger.debug("Updated user: %s", patch.id)
        return self._user_codec.from_native(document)

    async def delete_user(self, user_id: str) -> None:
        await self._coordinator.cascade_delete_user(user_id, self)

    async def plan_user_deletion(self, user_id: str) -> CascadePlan:
        object_id = self._ids.parse(user_id)
        if object_id is None:
            return CascadePlan(owner=DeletionStep(f"user {user_id}", _nothing))

        owned = {"userId": object_id}
        return CascadePlan(
            children=[
                DeletionStep(
                    "accounts",
                    partial(self._delete_many, self._accounts, owned, "delete_accounts"),
                ),
                DeletionStep(
                    "sessions",
                    partial(self._delete_many, self._sessions, owned, "delete_sessions"),
                ),
            ],
            owner=DeletionStep(
                f"user {user_id}",
                partial(self._delete_many, self._users, {"_id": object_id}, "delete_user"),
            ),
        )

    # Accounts

    async def link_account(self, account: Account) -> Account:
        stored = replace(validate_account(account), id=self._ids.new_id())
        try:
            document = self._account_codec.to_native(stored)
        except ValueError:
            raise InvalidEntityError("Account", "user_id is not a valid id") from None

        with _mongo_errors("link_account", "Account", "provider_account_id"):
            await self._accounts.insert_one(document)

        logger.info("Linked account %s to user %s", stored.key, stored.user_id)
        return stored

    async def unlink_account(self, key: ProviderAccountKey) -> Account | None:
        return await self._coordinator.unlink_account(validate_account_key(key), self)

    async def find_account(self, key: ProviderAccountKey) -> Account | None:
        document = await self._find_account_document(key)
        if document is None:
            return None
        return self._account_codec.from_native(document)

    async def delete_account(self, account: Account) -> None:
        if account.id is None:
            return
        with _mongo_errors("delete_account"):
            await self._accounts.delete_one({"_id": self._ids.to_native(account.id)})

    # Sessions

    async def create_session(self, session: Session) -> Session:
        stored = replace(validate_session(session), id=self._ids.new_id())
        try:
            document = self._session_codec.to_native(stored)
        except ValueError:
            raise InvalidEntityError("Session", "user_id is not a valid id") from None

        with _mongo_errors("create_session", "Session", "session_token"):
            await self._sessions.insert_one(document)

        logger.debug("Created session for user %s", stored.user_id)
        return stored

    async def get_session_and_user(self, session_token: str) -> SessionAndUser | None:
        document = await self._find_single(
            self._sessions,
            {"sessionToken": session_token},
            "Session",
            "sessionToken",
        )
        if document is None:
            return None
        session = self._session_codec.from_native(document)
        owner_id = self._ids.parse(session.user_id)

        user = None
        if owner_id is not None:
            with _mongo_errors("get_session_and_user"):
                user = await self._users.find_one({"_id": owner_id})

        if user is None:
            logger.debug("Session owner %s is missing", session.user_id)
            return None

        return SessionAndUser(session=session, user=self._user_codec.from_native(user))

    async def update_session(self, patch: SessionPatch) -> Session | None:
        patch = validate_session_patch(patch)
        try:
            update = self._session_codec.patch_to_native(patch.changes())
        except ValueError:
            raise InvalidEntityError("Session", "user_id is not a valid id") from None

        query = {"sessionToken": patch.session_token}
        with _mongo_errors("update_session"):
            if update:
                document = await self._sessions.find_one_and_update(
                    query,
                    update,
                    return_document=ReturnDocument.AFTER,
                )
            else:
                document = await self._sessions.find_one(query)

        if document is None:
            return None
        return self._session_codec.from_native(document)

    async def delete_session(self, session_token: str) -> Session | None:
        with _mongo_errors("delete_session"):
            document = await self._sessions.find_one_and_delete(
                {"sessionToken": session_token},
            )

        if document is None:
            return None
        return self._session_codec.from_native(document)

    # Verification tokens

    async def create_verification_token(
        self,
        token: VerificationToken,
    ) -> VerificationToken:
        token = validate_verification_token(token)

        with _mongo_errors("create_verification_token", "VerificationToken", "token"):
            await self._verification_tokens.insert_one(self._token_codec.to_native(token))

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
        with _mongo_errors("use_verification_token"):
            document = await self._verification_tokens.find_one_and_delete(
                self._token_query(key),
            )

        if document is None:
            return None
        return self._token_codec.from_native(document)

    async def find_verification_token(
        self,
        key: VerificationTokenKey,
    ) -> VerificationToken | None:
        with _mongo_errors("find_verification_token"):
            document = await self._verification_tokens.find_one(self._token_query(key))

        if document is None:
            return None
        return self._token_codec.from_native(document)

    async def delete_verification_token(self, key: VerificationTokenKey) -> bool:
        with _mongo_errors("delete_verification_token"):
            result = await self._verification_tokens.delete_one(self._token_query(key))
        return result.deleted_count == 1

    # Helpers

    async def _find_single(
        self,
        collection: Any,
        query: Mapping[str, Any],
        entity: str,
        lookup: str,
    ) -> Mapping[str, Any] | None:
        with _mongo_errors(f"find {entity} by {lookup}"):
            documents = await collection.find(query).to_list(length=2)
        return single_match(documents, entity, lookup)

    async def _find_account_document(
        self,
        key: ProviderAccountKey,
    ) -> Mapping[str, Any] | None:
        return await self._find_single(
            self._accounts,
            {"provider": key.provider, "providerAccountId": key.provider_account_id},
            "Account",
            "provider+providerAccountId",
        )

    async def _delete_many(
        self,
        collection: Any,
        query: Mapping[str, Any],
        operation: str,
    ) -> int:
        with _mongo_errors(operation):
            result = await collection.delete_many(query)
        return result.deleted_count

    @staticmethod
    def _token_query(key: VerificationTokenKey) -> dict[str, str]:
        return {"identifier": key.identifier, "token": key.token}
