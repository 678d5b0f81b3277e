"""Redis-specific behavior beyond the shared contract."""

import json
from dataclasses import replace
from datetime import datetime, timezone
from uuid import UUID, uuid4

import fakeredis
import pytest

from authstore.backends.redis import RedisAdapter, RedisKeyOptions, RedisKeyspace
from authstore.domain import ProviderAccountKey, User, UserPatch
from authstore.exceptions import (
    BackendUnavailableError,
    ConcurrencyConflictError,
    DuplicateEntityError,
    InvalidEntityError,
    MalformedRecordError,
)
from tests.shared.fixtures.factories import TestEntityFactory as F

LONG_AGO = datetime(2001, 1, 1, tzinfo=timezone.utc)


def _client(server: fakeredis.FakeServer) -> fakeredis.FakeAsyncRedis:
    return fakeredis.FakeAsyncRedis(server=server, decode_responses=True)


class TestRedisKeyspace:
    def test_default_layout(self):
        keys = RedisKeyspace()

        assert keys.user("u1") == "user:u1"
        assert keys.email("a@b.com") == "user:email:a@b.com"
        assert keys.account(ProviderAccountKey("github", "42")) == "user:account:github:42"
        assert keys.accounts_of("u1") == "user:account-by-user-id:u1"
        assert keys.session("s1") == "user:session:s1"
        assert keys.sessions_of("u1") == "user:session-by-user-id:u1"
        assert keys.verification_token(F.TOKEN_KEY) == "user:token:a@b.com:tok1"
        assert keys.user_id("user:u1") == "u1"

    def test_base_prefix_applies_to_every_key(self):
        keys = RedisKeyspace(RedisKeyOptions(base_key_prefix="app1:"))

        assert keys.user("u1") == "app1:user:u1"
        assert keys.session("s1") == "app1:user:session:s1"

    def test_components_are_escaped(self):
        keys = RedisKeyspace()

        assert keys.account(ProviderAccountKey("a", "b:c")) == "user:account:a:b%3Ac"
        assert keys.account(ProviderAccountKey("a:b", "c")) == "user:account:a%3Ab:c"
        assert keys.session("50%:x") == "user:session:50%25%3Ax"
        assert keys.user_id(keys.user("a:b%")) == "a:b%"

    def test_families_do_not_overlap(self):
        """No value of one family spells a key of another."""
        keys = RedisKeyspace()
        user_id = str(uuid4())

        assert keys.user("session:s1") != keys.session("s1")
        assert keys.user("email:a@b.com") != keys.email("a@b.com")
        owner_like = ProviderAccountKey("by-user-id", user_id)

        assert keys.account(owner_like) != keys.accounts_of(user_id)
        assert keys.session(f"by-user-id:{user_id}") != keys.sessions_of(user_id)


class TestRedisRecords:
    """What the adapter writes."""

    @pytest.mark.asyncio
    async def test_user_and_email_pointer(self, redis_adapter, redis_server):
        user = await redis_adapter.create_user(F.alice())
        client = _client(redis_server)

        raw = json.loads(await client.get(f"user:{user.id}"))

        assert raw["email"] == F.ALICE_EMAIL
        assert raw["emailVerified"].endswith("+00:00")
        assert await client.get(f"user:email:{F.ALICE_EMAIL}") == user.id

    @pytest.mark.asyncio
    async def test_owner_sets_hold_every_account_and_session(
        self, redis_adapter, redis_server
    ):
        user = await redis_adapter.create_user(F.alice())
        await redis_adapter.link_account(F.github_account(user.id, "1"))
        await redis_adapter.link_account(F.github_account(user.id, "2"))
        await redis_adapter.create_session(F.session(user.id, "s1"))
        await redis_adapter.create_session(F.session(user.id, "s2"))
        client = _client(redis_server)

        accounts = await client.smembers(f"user:account-by-user-id:{user.id}")
        sessions = await client.smembers(f"user:session-by-user-id:{user.id}")

        assert accounts == {"user:account:github:1", "user:account:github:2"}
        assert sessions == {"user:session:s1", "user:session:s2"}

    @pytest.mark.asyncio
    async def test_cascade_clears_owner_sets(self, redis_adapter, redis_server):
        user = await redis_adapter.create_user(F.alice())
        await redis_adapter.link_account(F.github_account(user.id))
        await redis_adapter.create_session(F.session(user.id))

        await redis_adapter.delete_user(user.id)

        assert await _client(redis_server).keys("*") == []

    @pytest.mark.asyncio
    async def test_native_expiry_on_sessions_and_tokens(self, redis_adapter, redis_server):
        user = await redis_adapter.create_user(F.alice())
        await redis_adapter.create_session(F.session(user.id))
        await redis_adapter.create_verification_token(F.verification_token())
        client = _client(redis_server)

        assert await client.pttl("user:session:s1") > 0
        assert await client.pttl("user:token:a@b.com:tok1") > 0
        assert await client.pttl(f"user:{user.id}") == -1

    @pytest.mark.asyncio
    async def test_expired_sessions_leave_the_owner_set(self, redis_adapter, redis_server):
        """Creating a session prunes members whose key already expired."""
        user = await redis_adapter.create_user(F.alice())
        for token in ("s1", "s2", "s3", "s4", "s5"):
            await redis_adapter.create_session(
                replace(F.session(user.id, token), expires=LONG_AGO)
            )
        await redis_adapter.create_session(F.session(user.id, "live"))

        members = await _client(redis_server).smembers(
            f"user:session-by-user-id:{user.id}"
        )

        assert members == {"user:session:live"}

    @pytest.mark.asyncio
    async def test_native_expiry_can_be_disabled(self, redis_server):
        adapter = RedisAdapter(_client(redis_server), native_expiry=False)

        await adapter.create_verification_token(F.verification_token())

        assert await _client(redis_server).pttl("user:token:a@b.com:tok1") == -1


class TestRedisPointers:
    """Dangling and stale pointers are misses, never errors."""

    @pytest.mark.asyncio
    async def test_dangling_email_pointer_is_a_miss(self, redis_adapter, redis_server):
        await _client(redis_server).set(f"user:email:{F.ALICE_EMAIL}", "gone")

        assert await redis_adapter.get_user_by_email(F.ALICE_EMAIL) is None

    @pytest.mark.asyncio
    async def test_dangling_email_pointer_does_not_block_create(
        self, redis_adapter, redis_server
    ):
        await _client(redis_server).set(f"user:email:{F.ALICE_EMAIL}", "gone")

        user = await redis_adapter.create_user(F.alice())

        assert (await redis_adapter.get_user_by_email(F.ALICE_EMAIL)).id == user.id

    @pytest.mark.asyncio
    async def test_stale_email_pointer_is_a_miss(self, redis_adapter, redis_server):
        """A pointer whose user now has another email does not resolve."""
        user = await redis_adapter.create_user(F.alice())
        client = _client(redis_server)
        await client.set("user:email:old@example.com", user.id)

        assert await redis_adapter.get_user_by_email("old@example.com") is None

    @pytest.mark.asyncio
    async def test_email_change_removes_old_pointer(self, redis_adapter, redis_server):
        user = await redis_adapter.create_user(F.alice())

        await redis_adapter.update_user(UserPatch(id=user.id, email="new@example.com"))

        client = _client(redis_server)
        assert await client.exists(f"user:email:{F.ALICE_EMAIL}") == 0
        assert await client.get("user:email:new@example.com") == user.id

    @pytest.mark.asyncio
    async def test_foreign_pointer_survives_email_change(self, redis_adapter, redis_server):
        """Only a pointer that still names this user is removed."""
        user = await redis_adapter.create_user(F.alice())
        client = _client(redis_server)
        await client.set(f"user:email:{F.ALICE_EMAIL}", "someone-else")

        await redis_adapter.update_user(UserPatch(id=user.id, email="new@example.com"))

        assert await client.get(f"user:email:{F.ALICE_EMAIL}") == "someone-else"

    @pytest.mark.asyncio
    async def test_session_with_missing_owner_is_a_miss(self, redis_adapter, redis_server):
        user = await redis_adapter.create_user(F.alice())
        await redis_adapter.create_session(F.session(user.id))
        await _client(redis_server).delete(f"user:{user.id}")

        assert await redis_adapter.get_session_and_user("s1") is None

    @pytest.mark.asyncio
    async def test_malformed_record_is_an_error(self, redis_adapter, redis_server):
        await _client(redis_server).set("user:session:s1", "{not json")

        with pytest.raises(MalformedRecordError):
            await redis_adapter.get_session_and_user("s1")

    @pytest.mark.asyncio
    async def test_malformed_user_is_still_deletable(self, redis_adapter, redis_server):
        user_id = str(uuid4())
        client = _client(redis_server)
        await client.set(f"user:{user_id}", "{not json")

        await redis_adapter.delete_user(user_id)

        assert await client.exists(f"user:{user_id}") == 0

    @pytest.mark.asyncio
    async def test_account_stored_under_another_key_is_a_miss(
        self, redis_adapter, redis_server
    ):
        """A record is only returned for the key it carries."""
        user = await redis_adapter.create_user(F.alice())
        await redis_adapter.link_account(F.github_account(user.id))
        client = _client(redis_server)
        raw = await client.get("user:account:github:42")
        await client.set("user:account:github:43", raw)
        other = ProviderAccountKey("github", "43")

        assert await redis_adapter.get_user_by_account(other) is None
        assert await redis_adapter.unlink_account(other) is None
        assert (await redis_adapter.get_user_by_account(F.GITHUB_KEY)).id == user.id


class TestRedisIdentifiers:
    """User ids are UUIDs; anything else cannot name a stored user."""

    @pytest.mark.asyncio
    async def test_assigned_ids_are_uuids(self, redis_adapter):
        user = await redis_adapter.create_user(F.alice())

        assert str(UUID(user.id)) == user.id

    @pytest.mark.asyncio
    async def test_session_key_is_not_a_user(self, redis_adapter):
        user = await redis_adapter.create_user(F.alice())
        await redis_adapter.create_session(F.session(user.id))

        assert await redis_adapter.get_user("session:s1") is None

        await redis_adapter.delete_user("session:s1")

        assert (await redis_adapter.get_session_and_user("s1")).user.id == user.id

    @pytest.mark.asyncio
    async def test_email_pointer_survives_foreign_delete(self, redis_adapter, redis_server):
        user = await redis_adapter.create_user(F.alice())

        await redis_adapter.delete_user(f"email:{F.ALICE_EMAIL}")

        assert await _client(redis_server).get(f"user:email:{F.ALICE_EMAIL}") == user.id

    @pytest.mark.asyncio
    async def test_references_must_be_uuids(self, redis_adapter):
        with pytest.raises(InvalidEntityError):
            await redis_adapter.link_account(F.github_account("not-a-uuid"))

        with pytest.raises(InvalidEntityError):
            await redis_adapter.create_session(F.session("session:s1"))


class TestRedisVerificationTokens:
    @pytest.mark.asyncio
    async def test_fallback_without_getdel(self, redis_server):
        """Fetch then delete; the delete result decides who gets the token."""
        adapter = RedisAdapter(_client(redis_server), use_getdel=False)
        await adapter.create_verification_token(F.verification_token())

        assert not adapter.supports_atomic_take
        assert await adapter.use_verification_token(F.TOKEN_KEY) == F.verification_token()
        assert await adapter.use_verification_token(F.TOKEN_KEY) is None
        assert await adapter.delete_verification_token(F.TOKEN_KEY) is False


class TestRedisTransactions:
    @pytest.mark.asyncio
    async def test_retries_exhausted_raise_conflict(self, redis_server):
        """A watched key that keeps changing ends in ConcurrencyConflictError."""
        adapter = RedisAdapter(_client(redis_server), max_watch_retries=2)
        intruder = _client(redis_server)
        attempts = []

        async def body(pipe):
            attempts.append(await pipe.get("contested"))
            await intruder.incr("contested")
            pipe.multi()
            pipe.set("contested", "mine")

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await adapter._transact("test", ["contested"], body)

        assert exc_info.value.attempts == 2
        assert attempts == [None, "1"]
        assert await intruder.get("contested") == "2"

    @pytest.mark.asyncio
    async def test_duplicate_inside_transaction_writes_nothing(
        self, redis_adapter, redis_server
    ):
        await redis_adapter.create_user(F.alice())

        with pytest.raises(DuplicateEntityError):
            await redis_adapter.create_user(User(name="x", email=F.ALICE_EMAIL))

        assert len(await _client(redis_server).keys("user:*")) == 2

    def test_retry_count_must_be_positive(self):
        with pytest.raises(ValueError):
            RedisAdapter(_client(fakeredis.FakeServer()), max_watch_retries=0)


class TestRedisOutage:
    """Connection errors surface as BackendUnavailableError, never as a miss."""

    @pytest.mark.asyncio
    async def test_lookups_and_writes_fail_loudly(self):
        server = fakeredis.FakeServer()
        server.connected = False
        adapter = RedisAdapter(_client(server))

        with pytest.raises(BackendUnavailableError):
            await adapter.get_user(str(uuid4()))

        with pytest.raises(BackendUnavailableError):
            await adapter.create_user(F.alice())

        with pytest.raises(BackendUnavailableError):
            await adapter.use_verification_token(F.TOKEN_KEY)

        with pytest.raises(BackendUnavailableError):
            await adapter.initialize()
