# personal_tokens/services/token_config.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from personal_tokens.core.clock import Clock, as_utc, utc_now
from personal_tokens.core.config import settings
from personal_tokens.core.errors import ConfigurationError
from personal_tokens.core.security import generate_plain_text_token
from personal_tokens.models.personal_token import PersonalToken

DEFAULT_EXPIRES_MINUTES = 1440
DEFAULT_TOKEN_LENGTH = 40


@dataclass(frozen=True)
class TokenConfig:
    """
    Issuer/validator configuration. Built once at startup and passed in explicitly;
    use dataclasses.replace() to derive variants (tests, per-route overrides).

    Attributes:
        expires_minutes: default lifetime when create() gets no expires_at
        token_length: length of the default random secret
        plain_text_token_factory: optional zero-arg callable producing the secret
        model: PersonalToken subclass used for persistence
        clock: returns "now"; injectable for tests
    """

    expires_minutes: int = DEFAULT_EXPIRES_MINUTES
    token_length: int = DEFAULT_TOKEN_LENGTH
    plain_text_token_factory: Callable[[], Any] | None = None
    model: type[PersonalToken] = PersonalToken
    clock: Clock = utc_now

    def __post_init__(self) -> None:
        if not isinstance(self.model, type) or not issubclass(self.model, PersonalToken):
            raise ConfigurationError("Personal token model must be a PersonalToken subclass")
        if self.expires_minutes <= 0:
            raise ConfigurationError("expires_minutes must be positive")
        if self.token_length <= 0:
            raise ConfigurationError("token_length must be positive")

    @classmethod
    def from_settings(cls, **overrides: Any) -> "TokenConfig":
        values: dict[str, Any] = {
            "expires_minutes": settings.PERSONAL_TOKEN_EXPIRE_MINUTES,
            "token_length": settings.PERSONAL_TOKEN_LENGTH,
        }
        values.update(overrides)
        return cls(**values)

    def now(self) -> datetime:
        return as_utc(self.clock())

    def default_expires_at(self) -> datetime:
        return self.now() + timedelta(minutes=self.expires_minutes)

    def create_plain_text_token(self) -> str:
        if self.plain_text_token_factory is None:
            return generate_plain_text_token(self.token_length)

        # Exceptions from a custom generator propagate unchanged.
        value = self.plain_text_token_factory()
        if not isinstance(value, str):
            raise ConfigurationError("Custom token generator returned non-string value")
        return value
