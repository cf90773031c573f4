# personal_tokens/services/token_store.py
from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sqlalchemy import or_
from sqlalchemy.orm import Session

from personal_tokens.core.errors import store_errors
from personal_tokens.models.personal_token import PersonalToken


class TokenStore(Protocol):
    def insert(self, record: PersonalToken) -> None: ...

    def find_by_id(self, token_id: str) -> PersonalToken | None: ...

    def update_used_at(self, token_id: str, used_at: datetime) -> int: ...


class SqlAlchemyTokenStore:
    """TokenStore backed by a SQLAlchemy Session and a (configurable) PersonalToken model."""

    def __init__(self, db: Session, model: type[PersonalToken] = PersonalToken) -> None:
        self.db = db
        self.model = model

    def insert(self, record: PersonalToken) -> None:
        with store_errors(self.db, "insert"):
            self.db.add(record)
            self.db.commit()

    def find_by_id(self, token_id: str) -> PersonalToken | None:
        with store_errors(self.db, "find_by_id"):
            return self.db.get(self.model, token_id)

    def update_used_at(self, token_id: str, used_at: datetime) -> int:
        return self.model.update_used_at(self.db, token_id, used_at)

    def purge(self, before: datetime) -> int:
        """
        Delete tokens that expired or were used before the cutoff.
        Retention is the host's call; nothing in the lifecycle invokes this.
        """
        model = self.model
        with store_errors(self.db, "purge"):
            count = (
                self.db.query(model)
                .filter(or_(model.expires_at < before, model.used_at < before))
                .delete(synchronize_session=False)
            )
            self.db.commit()
        return int(count or 0)
