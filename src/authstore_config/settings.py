"""Adapter settings loaded from environment variables.

Configuration file discovery (in priority order):
1. OS environment variables (always highest priority)
2. AUTHSTORE_ENV_FILE environment variable (path to .env file)
3. config/.env.dev - local development
4. config/.env - production/Docker

All variables carry the ``AUTHSTORE_`` prefix, e.g. ``AUTHSTORE_BACKEND=redis``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

BackendName = Literal["mongodb", "redis", "sqlalchemy"]


def _find_project_root() -> Path:
    """Find the project root directory."""
    current = Path(__file__).resolve().parent

    for parent in [current, *current.parents]:
        if (parent / "config").is_dir():
            return parent
        if (parent / ".git").is_dir():
            return parent

    return Path.cwd()


def get_config_dir() -> Path:
    return _find_project_root() / "config"


def _resolve_env_file_path() -> Path | None:
    """Resolve the .env file path.

    Priority:
    1. AUTHSTORE_ENV_FILE env var (relative paths resolve against the project root)
    2. config/.env.dev (local development)
    3. config/.env (production)
    """
    env_file_path = os.environ.get("AUTHSTORE_ENV_FILE")
    if env_file_path:
        path = Path(env_file_path)
        if not path.is_absolute():
            path = _find_project_root() / path
        if path.exists():
            return path

    config_dir = get_config_dir()

    dev_env = config_dir / ".env.dev"
    if dev_env.exists():
        return dev_env

    prod_env = config_dir / ".env"
    if prod_env.exists():
        return prod_env

    return None


class Settings(BaseSettings):
    """Adapter configuration.

    Values are loaded from:
    1. OS environment variables (highest priority)
    2. .env file (see module docstring)
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHSTORE_",
        env_file=_resolve_env_file_path(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: BackendName = "sqlalchemy"

    # MongoDB (MONGODB_ prefix)
    mongodb_url: SecretStr = SecretStr("mongodb://localhost:27017")
    mongodb_database: str = "authstore"
    mongodb_users_collection: str = "users"
    mongodb_accounts_collection: str = "accounts"
    mongodb_sessions_collection: str = "sessions"
    mongodb_verification_tokens_collection: str = "verification_tokens"
    mongodb_ttl_indexes: bool = True

    # Redis (REDIS_ prefix)
    redis_url: SecretStr = SecretStr("redis://localhost:6379/0")
    redis_base_key_prefix: str = ""
    redis_account_key_prefix: str = "user:account:"
    redis_account_by_user_id_prefix: str = "user:account-by-user-id:"
    redis_email_key_prefix: str = "user:email:"
    redis_session_key_prefix: str = "user:session:"
    redis_session_by_user_id_key_prefix: str = "user:session-by-user-id:"
    redis_user_key_prefix: str = "user:"
    redis_verification_token_key_prefix: str = "user:token:"
    redis_native_expiry: bool = True
    redis_use_getdel: bool = True
    redis_watch_retries: int = Field(default=3, ge=1)

    # Relational database (POSTGRES_ prefix, or an explicit SQLALCHEMY_URL)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: SecretStr = SecretStr("")
    postgres_db: str = "authstore"
    sqlalchemy_url: SecretStr | None = None
    sqlalchemy_echo: bool = False

    # Logging
    log_level: str = "INFO"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """SQLAlchemy URL: the explicit override, else built from components."""
        if self.sqlalchemy_url is not None:
            return self.sqlalchemy_url.get_secret_value()
        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password.get_secret_value()}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


def redact_url(url: str) -> str:
    """Drop credentials from a connection URL for display."""
    scheme, sep, rest = url.partition("://")
    if not sep:
        return url
    return f"{scheme}://{rest.split('@')[-1]}"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for tests)."""
    get_settings.cache_clear()
