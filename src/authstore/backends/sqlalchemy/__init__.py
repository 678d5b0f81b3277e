"""SQLAlchemy (relational) backend."""

from authstore.backends.sqlalchemy.adapter import SQLAlchemyAdapter
from authstore.backends.sqlalchemy.base import AuthStoreBase, enable_sqlite_foreign_keys
from authstore.backends.sqlalchemy.models import (
    AccountModel,
    SessionModel,
    UserModel,
    VerificationTokenModel,
)

__all__ = [
    "AccountModel",
    "AuthStoreBase",
    "SQLAlchemyAdapter",
    "SessionModel",
    "UserModel",
    "VerificationTokenModel",
    "enable_sqlite_foreign_keys",
]
