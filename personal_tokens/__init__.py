"""
Personal tokens: single-use, typed, expiring opaque tokens.

This package contains:
- core/: settings, encryption (wire codec + payload cipher), secret hashing, owner refs, errors
- models/: the PersonalToken record and the TokenOwnerMixin for owner models
- services/: TokenIssuer, TokenValidator, the SQLAlchemy store and session-level helpers
- dependencies/: FastAPI dependency that gates routes on a valid token
"""
from personal_tokens.core.encryption import TokenCodec
from personal_tokens.core.errors import (
    ConfigurationError,
    InvalidTokenError,
    PersonalTokenError,
    StoreIOError,
)
from personal_tokens.core.owners import OwnerRef, OwnerRegistry
from personal_tokens.dependencies.personal_token import require_personal_token
from personal_tokens.models.personal_token import PersonalToken
from personal_tokens.models.token_owner import TokenOwnerMixin
from personal_tokens.services.personal_tokens import (
    create_personal_token,
    purge_expired_personal_tokens,
    redeem_personal_token,
    validate_personal_token,
)
from personal_tokens.services.token_config import TokenConfig
from personal_tokens.services.token_creator import TokenIssuer
from personal_tokens.services.token_validator import TokenValidator

__all__ = [
    "ConfigurationError",
    "InvalidTokenError",
    "OwnerRef",
    "OwnerRegistry",
    "PersonalToken",
    "PersonalTokenError",
    "StoreIOError",
    "TokenCodec",
    "TokenConfig",
    "TokenIssuer",
    "TokenOwnerMixin",
    "TokenValidator",
    "create_personal_token",
    "purge_expired_personal_tokens",
    "redeem_personal_token",
    "require_personal_token",
    "validate_personal_token",
]
