"""JSON record codec for the Redis backend.

Redis only stores strings, so records are serialized as JSON with
ISO-8601 timestamps and parsed and validated on every read. A record that
does not validate surfaces as ``MalformedRecordError``; it is never
silently treated as missing.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Annotated, Any, Generic, TypeVar

from pydantic import (
    AwareDatetime,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError,
)

from authstore.codec.timestamps import ISO_TIMESTAMPS
from authstore.domain.entities import (
    Account,
    AccountType,
    Session,
    User,
    VerificationToken,
)
from authstore.exceptions import InvalidEntityError, MalformedRecordError


def _parse_timestamp(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    return ISO_TIMESTAMPS.from_native(value)


IsoTimestamp = Annotated[
    AwareDatetime,
    BeforeValidator(_parse_timestamp),
    PlainSerializer(ISO_TIMESTAMPS.to_native, return_type=str, when_used="json"),
]


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class UserRecord(_Record):
    id: str
    name: str | None = None
    email: str | None = None
    email_verified: IsoTimestamp | None = Field(default=None, alias="emailVerified")
    image: str | None = None


class AccountRecord(_Record):
    id: str
    user_id: str = Field(alias="userId")
    type: AccountType
    provider: str
    provider_account_id: str = Field(alias="providerAccountId")
    refresh_token: str | None = None
    access_token: str | None = None
    expires_at: int | None = None
    token_type: str | None = None
    scope: str | None = None
    id_token: str | None = None
    session_state: str | None = None


class SessionRecord(_Record):
    id: str
    session_token: str = Field(alias="sessionToken")
    user_id: str = Field(alias="userId")
    expires: IsoTimestamp


class VerificationTokenRecord(_Record):
    identifier: str
    token: str
    expires: IsoTimestamp


E = TypeVar("E")
R = TypeVar("R", bound=_Record)


class JsonRecordCodec(Generic[E, R]):
    """Entity <-> JSON string, validated through a pydantic record model."""

    def __init__(self, entity_type: type[E], record_type: type[R]) -> None:
        self._entity_type = entity_type
        self._record_type = record_type
        self._name = entity_type.__name__

    def to_native(self, entity: E) -> str:
        try:
            record = self._record_type.model_validate(asdict(entity))  # type: ignore[call-overload]
        except ValidationError as e:
            raise InvalidEntityError(self._name, str(e)) from e
        return record.model_dump_json(by_alias=True)

    def from_native(self, raw: str | bytes) -> E:
        try:
            record = self._record_type.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedRecordError(self._name, str(e)) from e
        return self._entity_type(**record.model_dump())


USER_RECORDS = JsonRecordCodec(User, UserRecord)
ACCOUNT_RECORDS = JsonRecordCodec(Account, AccountRecord)
SESSION_RECORDS = JsonRecordCodec(Session, SessionRecord)
VERIFICATION_TOKEN_RECORDS = JsonRecordCodec(VerificationToken, VerificationTokenRecord)
