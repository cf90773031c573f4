# personal_tokens/core/errors.py
"""
Error taxonomy for the personal token engine.

InvalidTokenError subclasses are attacker-reachable outcomes. They are raised
internally by TokenValidator.check() and collapse to a single "invalid" result
(None / HTTP 401) at every public boundary.

ConfigurationError and StoreIOError are programmer/infrastructure failures and
always propagate with full detail.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


class PersonalTokenError(Exception):
    pass


class InvalidTokenError(PersonalTokenError):
    reason = "invalid"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.reason)


class DecodeError(InvalidTokenError):
    reason = "decode_failed"


class TokenNotFoundError(InvalidTokenError):
    reason = "not_found"


class SecretMismatchError(InvalidTokenError):
    reason = "secret_mismatch"


class TypeMismatchError(InvalidTokenError):
    reason = "type_mismatch"


class ExpiredTokenError(InvalidTokenError):
    reason = "expired"


class AlreadyUsedError(InvalidTokenError):
    reason = "already_used"


class ConfigurationError(PersonalTokenError):
    """Misconfiguration detected at runtime (bad key, bad generator, bad model binding)."""


class StoreIOError(PersonalTokenError):
    """Persistence failure while inserting, loading or updating a token record."""


@contextmanager
def store_errors(db: Session, action: str) -> Iterator[None]:
    """
    Roll back and re-raise SQLAlchemy failures as StoreIOError.

    Our own errors raised inside a column type (bind/result processing) come back
    wrapped in StatementError; those are re-raised as themselves.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        orig = getattr(exc, "orig", None)
        if isinstance(orig, PersonalTokenError):
            raise orig from exc
        raise StoreIOError(f"Personal token store failed during {action}") from exc
