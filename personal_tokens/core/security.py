# personal_tokens/core/security.py
from __future__ import annotations

import secrets
import string
from typing import Any

from passlib.context import CryptContext

from personal_tokens.core.config import settings

pwd_context = CryptContext(schemes=[settings.PERSONAL_TOKEN_HASH_SCHEME], deprecated="auto")

_TOKEN_ALPHABET = string.ascii_letters + string.digits


# -------------------------
# Secret hashing
# -------------------------
def hash_secret(secret: str) -> str:
    return pwd_context.hash(secret)


def verify_secret(secret: Any, secret_hash: str | None) -> bool:
    """
    Never raises: a missing or unparseable hash is simply a mismatch.
    """
    if not secret_hash or not isinstance(secret, str):
        return False
    try:
        return pwd_context.verify(secret, secret_hash)
    except (ValueError, TypeError):
        return False


# -------------------------
# Plain text token helpers
# -------------------------
def generate_plain_text_token(length: int | None = None) -> str:
    """
    Cryptographically random alphanumeric secret.
    This raw value is ONLY handed out inside the encrypted token.
    Backend stores ONLY a hash.
    """
    size = length if length is not None else settings.PERSONAL_TOKEN_LENGTH
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(size))
