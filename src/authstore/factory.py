"""Build the configured adapter from settings.

Driver imports are local to each branch so that only the selected backend's
client library has to be importable.
"""

from __future__ import annotations

import logging

from authstore.adapter import Adapter
from authstore_config import Settings, get_settings, redact_url

logger = logging.getLogger(__name__)


def create_mongodb_adapter(settings: Settings) -> Adapter:
    from pymongo import AsyncMongoClient

    from authstore.backends.mongodb import MongoCollections, MongoDBAdapter

    client: AsyncMongoClient = AsyncMongoClient(
        settings.mongodb_url.get_secret_value(),
        tz_aware=True,
    )
    return MongoDBAdapter(
        client[settings.mongodb_database],
        collections=MongoCollections(
            users=settings.mongodb_users_collection,
            accounts=settings.mongodb_accounts_collection,
            sessions=settings.mongodb_sessions_collection,
            verification_tokens=settings.mongodb_verification_tokens_collection,
        ),
        ttl_indexes=settings.mongodb_ttl_indexes,
        client=client,
    )


def create_redis_adapter(settings: Settings) -> Adapter:
    from redis.asyncio import Redis

    from authstore.backends.redis import RedisAdapter, RedisKeyOptions, RedisKeyspace

    keys = RedisKeyspace(
        RedisKeyOptions(
            base_key_prefix=settings.redis_base_key_prefix,
            account_key_prefix=settings.redis_account_key_prefix,
            account_by_user_id_prefix=settings.redis_account_by_user_id_prefix,
            email_key_prefix=settings.redis_email_key_prefix,
            session_key_prefix=settings.redis_session_key_prefix,
            session_by_user_id_key_prefix=settings.redis_session_by_user_id_key_prefix,
            user_key_prefix=settings.redis_user_key_prefix,
            verification_token_key_prefix=settings.redis_verification_token_key_prefix,
        )
    )
    return RedisAdapter(
        Redis.from_url(settings.redis_url.get_secret_value(), decode_responses=True),
        keys=keys,
        native_expiry=settings.redis_native_expiry,
        use_getdel=settings.redis_use_getdel,
        max_watch_retries=settings.redis_watch_retries,
    )


def create_sqlalchemy_adapter(settings: Settings) -> Adapter:
    from sqlalchemy.ext.asyncio import create_async_engine

    from authstore.backends.sqlalchemy import SQLAlchemyAdapter, enable_sqlite_foreign_keys

    engine = create_async_engine(
        settings.database_url,
        echo=settings.sqlalchemy_echo,
        pool_pre_ping=True,
    )
    enable_sqlite_foreign_keys(engine)
    return SQLAlchemyAdapter(engine)


_BUILDERS = {
    "mongodb": create_mongodb_adapter,
    "redis": create_redis_adapter,
    "sqlalchemy": create_sqlalchemy_adapter,
}


def describe_target(settings: Settings) -> str:
    """Return the configured connection URL without credentials."""
    urls = {
        "mongodb": settings.mongodb_url.get_secret_value(),
        "redis": settings.redis_url.get_secret_value(),
        "sqlalchemy": settings.database_url,
    }
    return redact_url(urls[settings.backend])


def create_adapter(settings: Settings | None = None) -> Adapter:
    """Create the adapter selected by ``settings.backend``.

    The adapter is not initialized; call ``await adapter.initialize()``
    before the first write.
    """
    settings = settings or get_settings()
    logger.info("Using %s backend at %s", settings.backend, describe_target(settings))
    return _BUILDERS[settings.backend](settings)
