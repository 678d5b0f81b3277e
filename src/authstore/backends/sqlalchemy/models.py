"""SQLAlchemy models for the relational schema.

Column names use the canonical camelCase spelling so the tables are
interchangeable with schemas created by other adapters of the same family.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from authstore.backends.sqlalchemy.base import AuthStoreBase


class UserModel(AuthStoreBase):
    """
    SQLAlchemy model for persisting Users.

    ``email`` is optional but unique when present (NULLs never collide).

    Table: users
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    email_verified: Mapped[datetime | None] = mapped_column(
        "emailVerified",
        DateTime(timezone=True),
        nullable=True,
    )
    image: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<UserModel(id={self.id}, email={self.email})>"


class AccountModel(AuthStoreBase):
    """
    SQLAlchemy model for provider accounts linked to a user.

    Token columns are opaque text. Rows are removed with their owner.

    Table: accounts
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("provider", "providerAccountId", name="uq_accounts_provider"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        "userId",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    provider: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_account_id: Mapped[str] = mapped_column(
        "providerAccountId",
        String(255),
        nullable=False,
    )
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    token_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    id_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_state: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<AccountModel(provider={self.provider}, user_id={self.user_id})>"


class SessionModel(AuthStoreBase):
    __tablename__ = "sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        "userId",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    session_token: Mapped[str] = mapped_column(
        "sessionToken",
        String(255),
        unique=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SessionModel(id={self.id}, user_id={self.user_id})>"


class VerificationTokenModel(AuthStoreBase):
    __tablename__ = "verification_token"

    identifier: Mapped[str] = mapped_column(Text, primary_key=True)
    token: Mapped[str] = mapped_column(Text, primary_key=True)
    expires: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<VerificationTokenModel(identifier={self.identifier})>"
