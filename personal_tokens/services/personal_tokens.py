# personal_tokens/services/personal_tokens.py
"""
Session-level helpers for the common flows.

Responsibilities:
- Issue a token for an optional owner (invites, password resets, device pairing)
- Validate a presented token without consuming it
- Redeem (validate + consume) a token exactly once
- Purge old expired/used rows when the host decides to
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from personal_tokens.models.personal_token import PersonalToken
from personal_tokens.services.token_config import TokenConfig
from personal_tokens.services.token_creator import TokenIssuer
from personal_tokens.services.token_store import SqlAlchemyTokenStore
from personal_tokens.services.token_validator import TokenValidator

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


def create_personal_token(
    db: Session,
    type: Any,
    owner: Any = None,
    payload: Any = None,
    expires_at: datetime | None = None,
    plain_text_token: str | None = None,
    *,
    config: TokenConfig | None = None,
) -> str:
    """Create and persist a personal token, returning the opaque string."""
    issuer = TokenIssuer.for_session(db, config=config)
    return issuer.create(
        type,
        owner=owner,
        payload=payload,
        expires_at=expires_at,
        plain_text_token=plain_text_token,
    )


def validate_personal_token(
    db: Session,
    token: Any,
    type: Any = None,
    *,
    config: TokenConfig | None = None,
) -> PersonalToken | None:
    return TokenValidator.for_session(db, config=config).validate(token, type)


def redeem_personal_token(
    db: Session,
    token: Any,
    type: Any = None,
    *,
    config: TokenConfig | None = None,
) -> PersonalToken | None:
    return TokenValidator.for_session(db, config=config).redeem(token, type)


def purge_expired_personal_tokens(
    db: Session,
    before: datetime | None = None,
    *,
    config: TokenConfig | None = None,
) -> int:
    """
    Delete tokens that expired or were used before `before`
    (default: DEFAULT_RETENTION_DAYS ago). Returns the number of rows removed.
    """
    config = config or TokenConfig.from_settings()
    cutoff = before or (config.now() - timedelta(days=DEFAULT_RETENTION_DAYS))
    removed = SqlAlchemyTokenStore(db, model=config.model).purge(cutoff)
    logger.info("Purged %s personal tokens older than %s", removed, cutoff.isoformat())
    return removed
