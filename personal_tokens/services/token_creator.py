# personal_tokens/services/token_creator.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from personal_tokens.core.clock import as_utc
from personal_tokens.core.config import require_token_key
from personal_tokens.core.encryption import TokenCodec
from personal_tokens.core.owners import OwnerRef
from personal_tokens.core.security import hash_secret
from personal_tokens.models.personal_token import token_type_value
from personal_tokens.services.token_config import TokenConfig
from personal_tokens.services.token_store import SqlAlchemyTokenStore, TokenStore

logger = logging.getLogger(__name__)


class TokenIssuer:
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
    ) -> "TokenIssuer":
        config = config or TokenConfig.from_settings()
        return cls(
            store=SqlAlchemyTokenStore(db, model=config.model),
            codec=codec or TokenCodec.from_settings(),
            config=config,
        )

    def create(
        self,
        type: Any,
        owner: Any = None,
        payload: Any = None,
        expires_at: datetime | None = None,
        plain_text_token: str | None = None,
    ) -> str:
        """
        Persist a new personal token and return the opaque string for the client.

        The plain secret only ever leaves this method inside the encrypted token;
        the record stores its hash.

        Raises:
            ValueError: type is None
            ConfigurationError: custom secret generator returned a non-string,
                or a payload was given without a usable PERSONAL_TOKEN_KEY
            StoreIOError: the insert failed
        """
        token_type = token_type_value(type)

        # The payload column encrypts with the settings key ring at flush time.
        if payload is not None:
            require_token_key()

        if plain_text_token is None:
            plain_text_token = self.config.create_plain_text_token()

        if expires_at is None:
            expires_at = self.config.default_expires_at()

        owner_ref = OwnerRef.of(owner) if owner is not None else None
        token_id = str(uuid.uuid4())

        record = self.config.model(
            id=token_id,
            owner_type=owner_ref.type_tag if owner_ref else None,
            owner_id=owner_ref.id if owner_ref else None,
            token=hash_secret(plain_text_token),
            type=token_type,
            payload=payload,
            expires_at=as_utc(expires_at),
            used_at=None,
        )
        self.store.insert(record)

        logger.info(
            "Issued personal token id=%s type=%s owner_type=%s",
            token_id,
            token_type,
            owner_ref.type_tag if owner_ref else None,
        )
        return self.codec.encode(token_id, plain_text_token)
