# personal_tokens/models/personal_token.py
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, Index, String, Text, func
from sqlalchemy.orm import Session, validates
from sqlalchemy.orm.attributes import set_committed_value

from personal_tokens.core.base import Base
from personal_tokens.core.clock import as_utc, utc_now
from personal_tokens.core.encryption import EncryptedJSON
from personal_tokens.core.errors import store_errors
from personal_tokens.core.owners import OwnerRef


def _new_id() -> str:
    return str(uuid.uuid4())


def token_type_value(value: Any) -> str:
    """Enum members compare by their value; everything else by its string form."""
    if value is None:
        raise ValueError("Personal token type is required")
    if isinstance(value, Enum):
        value = value.value
    return str(value)


class PersonalToken(Base):
    __tablename__ = "personal_tokens"
    __table_args__ = (Index("ix_personal_tokens_owner", "owner_type", "owner_id"),)

    # Never serialized (see to_dict / __repr__)
    HIDDEN_FIELDS = frozenset({"token"})

    id = Column(String(36), primary_key=True, default=_new_id)

    # Polymorphic owner: exact class tag + primary key as text, no FK.
    owner_type = Column(String(255), nullable=True)
    owner_id = Column(String(255), nullable=True)

    # Store ONLY a hash of the plain secret
    token = Column(Text, nullable=False)

    type = Column(String(255), nullable=False, index=True)

    # Encrypted at rest, JSON on read
    payload = Column(EncryptedJSON, nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)

    # If set, token has been redeemed and is no longer valid
    used_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @validates("token")
    def _validate_token(self, key: str, value: str) -> str:
        if self.token is not None and value != self.token:
            raise ValueError("Personal token secret hash cannot be changed")
        return value

    @validates("used_at")
    def _validate_used_at(self, key: str, value: datetime | None) -> datetime | None:
        if self.used_at is not None and value != self.used_at:
            raise ValueError("Personal token used_at can only be set once")
        return value

    # -----------------------------
    # Owner
    # -----------------------------
    @property
    def owner_ref(self) -> OwnerRef | None:
        if self.owner_type is None or self.owner_id is None:
            return None
        return OwnerRef(type_tag=self.owner_type, id=self.owner_id)

    def belongs_to_owner(self, owner: Any) -> bool:
        """Exact (class, primary key) match; subclasses of the owner class do not match."""
        ref = self.owner_ref
        if ref is None or owner is None:
            return False
        return ref.matches(owner)

    # -----------------------------
    # Validity
    # -----------------------------
    def is_used(self) -> bool:
        return self.used_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        current = as_utc(now) if now is not None else utc_now()
        return current >= as_utc(self.expires_at)

    def is_valid(self, type: Any = None, now: datetime | None = None) -> bool:
        type_ok = type is None or token_type_value(type) == self.type
        return type_ok and not self.is_used() and not self.is_expired(now)

    # -----------------------------
    # Consumption
    # -----------------------------
    @classmethod
    def update_used_at(cls, db: Session, token_id: str, used_at: datetime) -> int:
        """
        Conditional write: only flips used_at when it is still NULL.
        Returns the affected row count (0 means someone else already consumed it).
        """
        with store_errors(db, "update_used_at"):
            count = (
                db.query(cls)
                .filter(cls.id == token_id, cls.used_at.is_(None))
                .update({cls.used_at: used_at, cls.updated_at: used_at}, synchronize_session=False)
            )
            db.commit()
        return int(count or 0)

    def mark_as_used(self, db: Session, now: datetime | None = None) -> int:
        used_at = as_utc(now) if now is not None else utc_now()
        count = type(self).update_used_at(db, self.id, used_at)
        if count:
            self.sync_used_at(used_at)
        return count

    def sync_used_at(self, used_at: datetime) -> None:
        # Reflect a conditional UPDATE on the loaded instance without dirtying it.
        set_committed_value(self, "used_at", used_at)

    # -----------------------------
    # Serialization
    # -----------------------------
    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for column in self.__table__.columns:
            if column.key in self.HIDDEN_FIELDS:
                continue
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                value = as_utc(value).isoformat()
            out[column.key] = value
        return out

    def __repr__(self) -> str:
        return f"<PersonalToken id={self.id!r} type={self.type!r} used={self.is_used()}>"
