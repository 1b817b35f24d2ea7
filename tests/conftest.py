import pathlib
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from brokerhub.core.config import reset_messaging_settings_cache
from brokerhub.messaging.directory import InMemoryParticipantDirectory
from brokerhub.messaging.repository import InMemoryMessageRepository
from brokerhub.models import Base, User
from brokerhub.models.session import get_sessionmaker, session_scope

TOKEN_SECRET = "super-secret-key"
TOKEN_AUDIENCE = "brokerhub"
TOKEN_ISSUER = "auth.brokerhub"


def issue_token(
    user_id: str | None,
    *,
    secret: str = TOKEN_SECRET,
    audience: str = TOKEN_AUDIENCE,
    issuer: str = TOKEN_ISSUER,
    expires_in: timedelta = timedelta(minutes=5),
    **extra_claims: object,
) -> str:
    """Sign an access token the way the account service does."""

    payload: dict[str, object] = {
        "aud": audience,
        "iss": issuer,
        "exp": datetime.now(timezone.utc) + expires_in,
        "type": "access",
    }
    if user_id is not None:
        payload["user_id"] = user_id
    payload.update(extra_claims)
    return jwt.encode(payload, secret, algorithm="HS256")


class RecordingSubscriber:
    """Stand-in for a WebSocket that records every pushed payload."""

    def __init__(self, *, fail: bool = False) -> None:
        self.payloads: list[dict] = []
        self.fail = fail

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.payloads.append(data)

    def types(self) -> list[str]:
        return [payload["type"] for payload in self.payloads]


@dataclass
class MessagingDatabase:
    session_factory: sessionmaker[Session]

    def header(self, user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(user_id)}"}


@pytest.fixture(autouse=True)
def messaging_env(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path):
    monkeypatch.setenv("AUTH_TOKEN_SECRET", TOKEN_SECRET)
    monkeypatch.setenv("AUTH_TOKEN_AUDIENCE", TOKEN_AUDIENCE)
    monkeypatch.setenv("AUTH_TOKEN_ISSUER", TOKEN_ISSUER)
    monkeypatch.setenv("AUTH_TOKEN_ALGORITHM", "HS256")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("MESSAGE_SEND_RATE_LIMIT", "1000/minute")
    monkeypatch.setenv("METRICS_ENABLED", "false")
    monkeypatch.delenv("CONVERSATION_PREFIX", raising=False)
    reset_messaging_settings_cache()
    yield
    reset_messaging_settings_cache()


@pytest.fixture
def db(tmp_path: pathlib.Path) -> MessagingDatabase:
    """SQLite database seeded with users u1 and u2, admin a1 and inactive u3."""

    factory = get_sessionmaker(f"sqlite+pysqlite:///{tmp_path / 'messages.db'}")
    engine = factory.kw["bind"]
    Base.metadata.create_all(engine)
    with session_scope(factory) as session:
        session.add_all(
            [
                User(id="a1", email="admin@example.com", first_name="Ada", last_name="Admin", role="admin"),
                User(id="u1", email="uma@example.com", first_name="Uma", last_name="One"),
                User(id="u2", email="ugo@example.com", first_name="Ugo", last_name="Two"),
                User(id="u3", email="gone@example.com", first_name="Gone", is_active=False),
            ]
        )

    yield MessagingDatabase(session_factory=factory)

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def directory() -> InMemoryParticipantDirectory:
    directory = InMemoryParticipantDirectory()
    directory.add("a1", role="admin", first_name="Ada", last_name="Admin")
    directory.add("u1", first_name="Uma", last_name="One")
    directory.add("u2", first_name="Ugo", last_name="Two")
    return directory


@pytest.fixture
def memory_repository() -> InMemoryMessageRepository:
    return InMemoryMessageRepository()
