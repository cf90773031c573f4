import os
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet

# Settings are read at import time: make sure a key exists before importing personal_tokens.
os.environ.setdefault("PERSONAL_TOKEN_KEY", Fernet.generate_key().decode("ascii"))
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi import Depends, FastAPI, Request
from sqlalchemy import Column, Integer, String, create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from personal_tokens.core.base import Base
from personal_tokens.core.database import get_db
from personal_tokens.core.encryption import TokenCodec
from personal_tokens.core.security import generate_plain_text_token, hash_secret
from personal_tokens.dependencies.personal_token import require_personal_token
from personal_tokens.models.personal_token import PersonalToken
from personal_tokens.models.token_owner import TokenOwnerMixin
from personal_tokens.services.token_config import TokenConfig
from personal_tokens.services.token_creator import TokenIssuer
from personal_tokens.services.token_validator import TokenValidator


# Owner models used by the tests. Registered on the same metadata as PersonalToken.
class User(TokenOwnerMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)


class Team(TokenOwnerMixin, Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests (StaticPool); reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture()
def token_config(clock):
    return TokenConfig(clock=clock)


@pytest.fixture()
def codec():
    return TokenCodec.from_settings()


@pytest.fixture()
def issuer(db_session, token_config, codec):
    return TokenIssuer.for_session(db_session, config=token_config, codec=codec)


@pytest.fixture()
def validator(db_session, token_config, codec):
    return TokenValidator.for_session(db_session, config=token_config, codec=codec)


@pytest.fixture()
def users(db_session):
    """
    Two users plus a team that shares user_a's primary key (for ownership checks).
    """
    user_a = User(id=1, email="test@example.com")
    user_b = User(id=2, email="other@example.com")
    team = Team(id=1, name="Same Id Team")
    db_session.add_all([user_a, user_b, team])
    db_session.commit()
    db_session.refresh(user_a)
    db_session.refresh(user_b)
    db_session.refresh(team)
    return user_a, user_b, team


@pytest.fixture()
def make_token(db_session, codec, clock):
    """
    Insert a PersonalToken row directly (bypassing the issuer) and return
    (record, opaque_token).

    Usage:
        record, opaque = make_token(type="type-1", used_at=clock())
    """

    def _make(**overrides):
        plain = overrides.pop("plain_text_token", None)
        if plain is None:
            plain = generate_plain_text_token()
        values = {
            "type": "type-1",
            "token": hash_secret(plain),
            "expires_at": clock() + timedelta(hours=1),
            "used_at": None,
        }
        values.update(overrides)
        record = PersonalToken(**values)
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record, codec.encode(record.id, plain)

    return _make


@pytest.fixture()
def app(db_session, token_config):
    fastapi_app = FastAPI()

    @fastapi_app.post("/invites/accept")
    def accept_invite(record: PersonalToken = Depends(require_personal_token("invite_user", config=token_config))):
        return {"id": record.id, "type": record.type}

    @fastapi_app.get("/tokens/inspect")
    def inspect_token(request: Request, record: PersonalToken = Depends(require_personal_token(config=token_config))):
        return {"id": record.id, "state_id": request.state.personal_token.id}

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
