"""SQLAlchemy-specific behavior beyond the shared contract (SQLite)."""

from uuid import uuid4

import pytest
from sqlalchemy import inspect, select, text, update
from sqlalchemy.ext.asyncio import create_async_engine

from authstore.backends.sqlalchemy import AccountModel, SQLAlchemyAdapter, UserModel
from authstore.exceptions import (
    BackendUnavailableError,
    ConstraintViolationError,
    DuplicateEntityError,
    InvalidEntityError,
    MalformedRecordError,
)
from tests.shared.fixtures.factories import TestEntityFactory as F


class TestSQLAlchemySchema:
    @pytest.mark.asyncio
    async def test_tables_use_canonical_column_names(self, sqlite_adapter):
        async with sqlite_adapter._engine.connect() as conn:
            columns = await conn.run_sync(
                lambda sync: {
                    table: {c["name"] for c in inspect(sync).get_columns(table)}
                    for table in ("users", "accounts", "sessions", "verification_token")
                }
            )

        assert {"id", "name", "email", "emailVerified", "image"} == columns["users"]
        assert {"userId", "providerAccountId"} <= columns["accounts"]
        assert {"id", "userId", "expires", "sessionToken"} == columns["sessions"]
        assert {"identifier", "token", "expires"} == columns["verification_token"]

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, sqlite_adapter):
        await sqlite_adapter.initialize()


class TestSQLAlchemyConstraints:
    @pytest.mark.asyncio
    async def test_link_to_missing_user_violates_foreign_key(self, sqlite_adapter):
        with pytest.raises(ConstraintViolationError) as exc_info:
            await sqlite_adapter.link_account(F.github_account(str(uuid4())))

        assert not isinstance(exc_info.value, DuplicateEntityError)

    @pytest.mark.asyncio
    async def test_session_for_missing_user_violates_foreign_key(self, sqlite_adapter):
        with pytest.raises(ConstraintViolationError):
            await sqlite_adapter.create_session(F.session(str(uuid4())))

    @pytest.mark.asyncio
    async def test_statement_parameters_do_not_decide_the_error(self, sqlite_adapter):
        """Only the driver's message classifies the violation."""
        with pytest.raises(ConstraintViolationError) as exc_info:
            await sqlite_adapter.create_session(F.session(str(uuid4()), "unique-token"))

        assert not isinstance(exc_info.value, DuplicateEntityError)

    @pytest.mark.asyncio
    async def test_foreign_id_shape_is_invalid_input(self, sqlite_adapter):
        with pytest.raises(InvalidEntityError):
            await sqlite_adapter.link_account(F.github_account("not-a-uuid"))

    @pytest.mark.asyncio
    async def test_database_cascade_removes_children(self, sqlite_adapter):
        """ON DELETE CASCADE is active on SQLite connections."""
        user = await sqlite_adapter.create_user(F.alice())
        await sqlite_adapter.link_account(F.github_account(user.id))

        async with sqlite_adapter._session_maker() as session, session.begin():
            await session.execute(text("DELETE FROM users"))

        async with sqlite_adapter._session_maker() as session:
            remaining = (await session.execute(select(AccountModel))).scalars().all()

        assert remaining == []


class TestSQLAlchemyRecords:
    @pytest.mark.asyncio
    async def test_unknown_account_type_is_malformed(self, sqlite_adapter):
        user = await sqlite_adapter.create_user(F.alice())
        await sqlite_adapter.link_account(F.github_account(user.id))

        async with sqlite_adapter._session_maker() as session, session.begin():
            await session.execute(update(AccountModel).values(type="saml"))

        with pytest.raises(MalformedRecordError):
            await sqlite_adapter.unlink_account(F.GITHUB_KEY)

    @pytest.mark.asyncio
    async def test_ids_are_uuid_strings(self, sqlite_adapter):
        user = await sqlite_adapter.create_user(F.alice())

        async with sqlite_adapter._session_maker() as session:
            model = await session.get(UserModel, sqlite_adapter._ids.to_native(user.id))

        assert str(model.id) == user.id


class TestSQLAlchemyOutage:
    @pytest.mark.asyncio
    async def test_unreachable_database(self, tmp_path):
        missing_dir = tmp_path / "does" / "not" / "exist"
        adapter = SQLAlchemyAdapter(
            create_async_engine(f"sqlite+aiosqlite:///{missing_dir / 'auth.db'}")
        )

        with pytest.raises(BackendUnavailableError):
            await adapter.get_user_by_email("a@b.com")

        with pytest.raises(BackendUnavailableError):
            await adapter.initialize()

        await adapter.close()
