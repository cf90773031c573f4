# personal_tokens/core/encryption.py
"""
Symmetric, authenticated encryption for personal tokens.

- TokenCodec: turns (record id, plain secret) into the opaque string handed to
  clients, and back. Wire format: Fernet(key).encrypt("<id>|<secret>").
- EncryptedJSON: SQLAlchemy column type that stores JSON payloads encrypted at rest.

Both use the same key ring (PERSONAL_TOKEN_KEY + PERSONAL_TOKEN_PREVIOUS_KEYS).
"""
from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, NamedTuple, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from personal_tokens.core.config import require_token_key, settings
from personal_tokens.core.errors import ConfigurationError

TOKEN_DELIMITER = "|"


def build_cipher(keys: Sequence[str | bytes]) -> MultiFernet:
    """
    First key encrypts; every key is tried on decrypt (key rotation).
    """
    if not keys:
        raise ConfigurationError("At least one encryption key is required")
    try:
        return MultiFernet([Fernet(k) for k in keys])
    except (ValueError, TypeError) as exc:
        raise ConfigurationError("Encryption keys must be 32-byte url-safe base64 Fernet keys") from exc


@lru_cache(maxsize=4)
def _cipher_for(keys: tuple[str, ...]) -> MultiFernet:
    return build_cipher(keys)


def default_cipher() -> MultiFernet:
    """Key ring from settings, built once per distinct set of keys."""
    require_token_key()
    return _cipher_for(tuple(settings.token_keys))


class DecodedToken(NamedTuple):
    id: str
    secret: str


class TokenCodec:
    def __init__(self, cipher: MultiFernet | Fernet) -> None:
        self._cipher = cipher

    @classmethod
    def from_keys(cls, *keys: str | bytes) -> "TokenCodec":
        return cls(build_cipher(keys))

    @classmethod
    def from_settings(cls) -> "TokenCodec":
        return cls(default_cipher())

    def encode(self, token_id: str, secret: str) -> str:
        plain = f"{token_id}{TOKEN_DELIMITER}{secret}"
        return self._cipher.encrypt(plain.encode("utf-8")).decode("ascii")

    def decode(self, opaque: Any) -> DecodedToken | None:
        """
        Returns None for anything that is not a token we produced: bad base64,
        failed authentication, bad utf-8, missing delimiter. Callers cannot tell
        those apart.
        """
        if not isinstance(opaque, str) or not opaque:
            return None

        try:
            plain = self._cipher.decrypt(opaque.encode("utf-8")).decode("utf-8")
        except (InvalidToken, ValueError, TypeError):
            return None

        token_id, sep, secret = plain.partition(TOKEN_DELIMITER)
        if not sep or not token_id:
            return None
        return DecodedToken(id=token_id, secret=secret)

    def rotate(self, opaque: str) -> str:
        """
        Re-encrypt a token under the active key. Raises InvalidToken if no key
        in the ring can decrypt it.
        """
        if not isinstance(self._cipher, MultiFernet):
            raise ConfigurationError("Key rotation requires a MultiFernet key ring")
        return self._cipher.rotate(opaque.encode("utf-8")).decode("ascii")


class EncryptedJSON(TypeDecorator):
    """
    JSON value encrypted at rest, decrypted transparently on load.

    Decryption failures here are not attacker input (the ciphertext came from our
    own database), so they surface as ConfigurationError instead of being hidden.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        raw = json.dumps(value, separators=(",", ":"), sort_keys=True)
        return default_cipher().encrypt(raw.encode("utf-8")).decode("ascii")

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        try:
            raw = default_cipher().decrypt(value.encode("utf-8"))
        except InvalidToken as exc:
            raise ConfigurationError("Stored payload could not be decrypted with the configured keys") from exc
        return json.loads(raw.decode("utf-8"))
