# personal_tokens/core/owners.py
"""
Polymorphic owner references.

A token's owner is stored as a (type_tag, id) pair with no foreign key. The type
tag is the owner's exact runtime class ("module.QualName"), so a subclass never
matches tokens issued for its parent. Loading the owner entity back is done
through an OwnerRegistry that maps type tags to loaders.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from personal_tokens.core.errors import ConfigurationError

if TYPE_CHECKING:
    from personal_tokens.models.personal_token import PersonalToken

OwnerLoader = Callable[[Session, str], Any]


def owner_type_tag(owner: Any) -> str:
    cls = owner if isinstance(owner, type) else type(owner)
    return f"{cls.__module__}.{cls.__qualname__}"


def owner_key(owner: Any) -> str:
    state = sa_inspect(owner, raiseerr=False)
    identity = getattr(state, "identity", None)
    if identity:
        if len(identity) != 1:
            raise ValueError("Owners with composite primary keys are not supported")
        return str(identity[0])

    key = getattr(owner, "id", None)
    if key is None:
        raise ValueError(f"{type(owner).__name__} has no primary key; persist it before issuing tokens")
    return str(key)


@dataclass(frozen=True)
class OwnerRef:
    type_tag: str
    id: str

    @classmethod
    def of(cls, owner: Any) -> "OwnerRef":
        if isinstance(owner, OwnerRef):
            return owner
        return cls(type_tag=owner_type_tag(owner), id=owner_key(owner))

    def matches(self, owner: Any) -> bool:
        try:
            other = OwnerRef.of(owner)
        except ValueError:
            # Unsaved owners have no key and own nothing.
            return False
        return self == other


def _coerce_key(model: type, key: str) -> Any:
    mapper = sa_inspect(model)
    pk = mapper.primary_key
    if len(pk) != 1:
        return key
    try:
        return pk[0].type.python_type(key)
    except (NotImplementedError, ValueError, TypeError):
        return key


def _default_loader(model: type) -> OwnerLoader:
    def load(db: Session, key: str) -> Any:
        return db.get(model, _coerce_key(model, key))

    return load


class OwnerRegistry:
    """Maps owner type tags to loaders (the morph map)."""

    def __init__(self) -> None:
        self._loaders: dict[str, OwnerLoader] = {}

    def register(self, model: type, loader: OwnerLoader | None = None) -> None:
        self._loaders[owner_type_tag(model)] = loader or _default_loader(model)

    def is_registered(self, type_tag: str) -> bool:
        return type_tag in self._loaders

    def resolve(self, db: Session, record: "PersonalToken") -> Any | None:
        ref = record.owner_ref
        if ref is None:
            return None

        loader = self._loaders.get(ref.type_tag)
        if loader is None:
            raise ConfigurationError(f"No owner loader registered for type {ref.type_tag!r}")
        return loader(db, ref.id)
