# personal_tokens/services/token_validator.py
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from personal_tokens.core.encryption import TokenCodec
from personal_tokens.core.errors import (
    AlreadyUsedError,
    DecodeError,
    ExpiredTokenError,
    InvalidTokenError,
    SecretMismatchError,
    TokenNotFoundError,
    TypeMismatchError,
)
from personal_tokens.core.security import verify_secret
from personal_tokens.models.personal_token import PersonalToken, token_type_value
from personal_tokens.services.token_config import TokenConfig
from personal_tokens.services.token_store import SqlAlchemyTokenStore, TokenStore

logger = logging.getLogger(__name__)


class TokenValidator:
    def __init__(self, store: TokenStore, codec: TokenCodec, config: TokenConfig | None = None) -> None:
        self.store = store
        self.codec = codec
        self.config = config or TokenConfig()

    @classmethod
    def for_session(
        cls,
        db: Session,
        config: TokenConfig | None = None,
        codec: TokenCodec | None = None,
    ) -> "TokenValidator":
        config = config or TokenConfig.from_settings()
        return cls(
            store=SqlAlchemyTokenStore(db, model=config.model),
            codec=codec or TokenCodec.from_settings(),
            config=config,
        )

    def check(self, opaque: Any, type: Any = None) -> PersonalToken:
        """
        Resolve an opaque token to its record or raise the specific InvalidTokenError.

        For trusted callers (tests, audit tooling). Anything facing a client must use
        validate(), which hides the reason.
        """
        decoded = self.codec.decode(opaque)
        if decoded is None:
            raise DecodeError()

        record = self.store.find_by_id(decoded.id)
        if record is None:
            raise TokenNotFoundError()

        if not verify_secret(decoded.secret, record.token):
            raise SecretMismatchError()

        if type is not None and token_type_value(type) != record.type:
            raise TypeMismatchError()

        if record.is_used():
            raise AlreadyUsedError()
        if record.is_expired(self.config.now()):
            raise ExpiredTokenError()

        return record

    def validate(self, opaque: Any, type: Any = None) -> PersonalToken | None:
        """Return the record if the token is usable right now, else None (reason is never exposed)."""
        try:
            return self.check(opaque, type)
        except InvalidTokenError as exc:
            logger.debug("Personal token rejected: reason=%s", exc.reason)
            return None

    def consume(self, record: PersonalToken) -> bool:
        """
        Mark the record used with a conditional write.
        Returns False when another request consumed it first.
        """
        used_at = self.config.now()
        count = self.store.update_used_at(record.id, used_at)
        if not count:
            logger.info("Personal token already consumed id=%s", record.id)
            return False
        record.sync_used_at(used_at)
        return True

    def redeem(self, opaque: Any, type: Any = None) -> PersonalToken | None:
        """Validate and consume in one step; single-shot redemption."""
        record = self.validate(opaque, type)
        if record is None:
            return None
        if not self.consume(record):
            return None
        return record
