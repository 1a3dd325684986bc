"""Shared fixtures: temporary SQLite database, fake Redis, fake upstream providers."""
import json
import os
import tempfile

_db_dir = tempfile.mkdtemp(prefix="rocode-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BASIC_PROVIDER"] = "gemini"
os.environ["MAX_PROVIDER"] = "deepseek"

import fakeredis
import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from database import SessionLocal, engine
from main import app
from models import Base, User
from services.auth import AuthService
from services.counters import UsageCounters
from services.credentials import CredentialPool
from services.relay import ChatRelay


def gemini_chunk(text: str) -> bytes:
    payload = {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}
    return f"data: {json.dumps(payload)}\r\n\r\n".encode()


def openai_chunk(text: str) -> bytes:
    payload = {"choices": [{"index": 0, "delta": {"content": text}}]}
    return f"data: {json.dumps(payload)}\n\n".encode()


async def chunked(*chunks: bytes):
    for chunk in chunks:
        yield chunk


class FakeUpstream:
    """httpx MockTransport handler that records requests and replays a canned reply."""

    def __init__(self):
        self.requests = []
        self.reply = lambda request: httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=gemini_chunk("Hello") + gemini_chunk(" world"),
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.reply(request)


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def counters(redis_client):
    return UsageCounters(redis_client)


@pytest.fixture
def pools(counters):
    return {
        "gemini": CredentialPool("gemini", ["gem-key-1", "gem-key-2"], counters, daily_cap=50),
        "deepseek": CredentialPool("deepseek", ["ds-key-1"], counters, daily_cap=50),
    }


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
async def http_client(upstream):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    yield client
    await client.aclose()


@pytest.fixture
def relay(counters, http_client, pools):
    return ChatRelay(
        session_factory=SessionLocal,
        counters=counters,
        http_client=http_client,
        pools=pools,
    )


@pytest.fixture
async def client(redis_client, http_client, pools):
    app.state.session_factory = SessionLocal
    app.state.redis = redis_client
    app.state.http_client = http_client
    app.state.pools = pools

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as api:
        yield api


@pytest.fixture
def make_user():
    """Create a user directly in the database and return it with auth headers."""
    def _make(username: str = "builder", plan: str = "free"):
        with SessionLocal() as db:
            user = User(
                username=username,
                hashed_password=AuthService.hash_password("secret-pass"),
                plan=plan,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
        token = AuthService.create_access_token(user.id)
        return user, {"Authorization": f"Bearer {token}"}

    return _make
