"""Key layout of the Redis backend.

Primary records::

    user:<id>                                  -> User JSON
    user:account:<provider>:<providerAccountId> -> Account JSON
    user:session:<sessionToken>                -> Session JSON
    user:token:<identifier>:<token>            -> VerificationToken JSON

Pointer records simulating secondary indexes::

    user:email:<email>                         -> user id
    user:account-by-user-id:<userId>           -> set of account keys
    user:session-by-user-id:<userId>           -> set of session keys

Every variable component is escaped (``%`` and ``:``), so composite keys
never collide and a component cannot reach into another family. User ids
are UUIDs and never spell ``email:...`` or ``session:...``.

Pointers are written after (or in the same transaction as) the record they
point to. A pointer whose target is missing is a miss, never an error.
"""

from dataclasses import dataclass

from authstore.codec.identifiers import PrefixedIdCodec
from authstore.domain.entities import ProviderAccountKey, VerificationTokenKey


def escape_component(value: str) -> str:
    return value.replace("%", "%25").replace(":", "%3A")


def unescape_component(value: str) -> str:
    return value.replace("%3A", ":").replace("%25", "%")


@dataclass(frozen=True)
class RedisKeyOptions:
    """Key prefixes. Change ``base_key_prefix`` to share one Redis between apps.

    No prefix may extend another one by a literal component, otherwise two
    families share keys.
    """

    base_key_prefix: str = ""
    account_key_prefix: str = "user:account:"
    account_by_user_id_prefix: str = "user:account-by-user-id:"
    email_key_prefix: str = "user:email:"
    session_key_prefix: str = "user:session:"
    session_by_user_id_key_prefix: str = "user:session-by-user-id:"
    user_key_prefix: str = "user:"
    verification_token_key_prefix: str = "user:token:"


class RedisKeyspace:
    """Derives every primary and pointer key from canonical values."""

    def __init__(self, options: RedisKeyOptions | None = None) -> None:
        options = options or RedisKeyOptions()
        base = options.base_key_prefix
        self._users = PrefixedIdCodec(base + options.user_key_prefix)
        self._emails = PrefixedIdCodec(base + options.email_key_prefix)
        self._accounts = PrefixedIdCodec(base + options.account_key_prefix)
        self._accounts_by_user = PrefixedIdCodec(base + options.account_by_user_id_prefix)
        self._sessions = PrefixedIdCodec(base + options.session_key_prefix)
        self._sessions_by_user = PrefixedIdCodec(
            base + options.session_by_user_id_key_prefix
        )
        self._tokens = PrefixedIdCodec(base + options.verification_token_key_prefix)

    def user(self, user_id: str) -> str:
        return self._users.to_native(escape_component(user_id))

    def user_id(self, key: str) -> str:
        return unescape_component(self._users.from_native(key))

    def email(self, email: str) -> str:
        return self._emails.to_native(escape_component(email))

    def account(self, key: ProviderAccountKey) -> str:
        return self._accounts.to_native(
            _join(key.provider, key.provider_account_id)
        )

    def accounts_of(self, user_id: str) -> str:
        return self._accounts_by_user.to_native(escape_component(user_id))

    def session(self, session_token: str) -> str:
        return self._sessions.to_native(escape_component(session_token))

    def sessions_of(self, user_id: str) -> str:
        return self._sessions_by_user.to_native(escape_component(user_id))

    def verification_token(self, key: VerificationTokenKey) -> str:
        return self._tokens.to_native(_join(key.identifier, key.token))


def _join(*components: str) -> str:
    return ":".join(escape_component(c) for c in components)
