# personal_tokens/models/token_owner.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Query, Session

from personal_tokens.core.owners import OwnerRef
from personal_tokens.models.personal_token import PersonalToken

if TYPE_CHECKING:
    from personal_tokens.services.token_creator import TokenIssuer


class TokenOwnerMixin:
    """
    Mixin for models that personal tokens can be issued for (users, teams, devices...).

    Tokens reference the owner by exact class tag + primary key, so the mixin needs
    no relationship() or foreign key on either side.
    """

    _current_personal_token = None

    def tokens(self, db: Session, model: type[PersonalToken] = PersonalToken) -> Query:
        ref = OwnerRef.of(self)
        return db.query(model).filter(model.owner_type == ref.type_tag, model.owner_id == ref.id)

    def create_token(
        self,
        issuer: "TokenIssuer",
        type: Any,
        payload: Any = None,
        expires_at: datetime | None = None,
        plain_text_token: str | None = None,
    ) -> str:
        return issuer.create(
            type,
            owner=self,
            payload=payload,
            expires_at=expires_at,
            plain_text_token=plain_text_token,
        )

    def with_token(self, token: PersonalToken) -> "TokenOwnerMixin":
        # Request-scoped: the token this owner authenticated with.
        self._current_personal_token = token
        return self

    def current_token(self) -> PersonalToken | None:
        return self._current_personal_token
