"""Tests for the auth, thread, status and health endpoints."""
import pytest

from services.counters import credential_usage_key, user_usage_key
from services.threads import ThreadService
from database import SessionLocal


async def signup_and_login(client, username="scripter", password="hunter22"):
    await client.post("/auth/signup", json={"username": username, "password": password})
    response = await client.post("/auth/login", data={"username": username, "password": password})
    return response.json()


@pytest.mark.asyncio
async def test_signup_login_and_me(client):
    response = await client.post("/auth/signup", json={"username": "Scripter", "password": "hunter22"})
    assert response.status_code == 201
    assert response.json()["username"] == "scripter"
    assert response.json()["plan"] == "free"

    tokens = (await client.post(
        "/auth/login", data={"username": "scripter", "password": "hunter22"}
    )).json()
    assert tokens["token_type"] == "bearer"

    me = await client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.status_code == 200
    assert me.json()["username"] == "scripter"


@pytest.mark.asyncio
async def test_signup_validation(client):
    await client.post("/auth/signup", json={"username": "taken", "password": "hunter22"})

    duplicate = await client.post("/auth/signup", json={"username": "TAKEN", "password": "hunter22"})
    assert duplicate.status_code == 400
    assert duplicate.json() == {"error": "Username already taken"}

    short = await client.post("/auth/signup", json={"username": "ab", "password": "hunter22"})
    assert short.json() == {"error": "Username must be at least 3 characters."}

    bad_chars = await client.post("/auth/signup", json={"username": "no spaces", "password": "hunter22"})
    assert bad_chars.status_code == 400


@pytest.mark.asyncio
async def test_login_with_wrong_password(client):
    await client.post("/auth/signup", json={"username": "scripter", "password": "hunter22"})

    response = await client.post("/auth/login", data={"username": "scripter", "password": "wrong"})

    assert response.status_code == 401
    assert response.json() == {"error": "Incorrect username or password"}


@pytest.mark.asyncio
async def test_refresh_token(client):
    tokens = await signup_and_login(client)

    refreshed = await client.post("/auth/refresh", params={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200

    rejected = await client.post("/auth/refresh", params={"refresh_token": tokens["access_token"]})
    assert rejected.status_code == 401


@pytest.mark.asyncio
async def test_refresh_token_cannot_authenticate_requests(client):
    tokens = await signup_and_login(client)

    response = await client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_thread_crud(client, make_user):
    user, headers = make_user()

    created = await client.post("/threads", headers=headers)
    assert created.status_code == 200
    thread = created.json()
    assert thread["title"] == "New Chat"
    assert thread["messages"] == []

    with SessionLocal() as db:
        ThreadService.append_message(db, thread["id"], "user", "a" * 60)

    listed = (await client.get("/threads", headers=headers)).json()
    assert [t["id"] for t in listed] == [thread["id"]]
    assert listed[0]["title"] == "a" * 40 + "…"

    deleted = await client.delete(f"/threads/{thread['id']}", headers=headers)
    assert deleted.json() == {"ok": True}

    missing = await client.get(f"/threads/{thread['id']}", headers=headers)
    assert missing.status_code == 404
    assert missing.json() == {"error": "Chat not found"}


@pytest.mark.asyncio
async def test_threads_are_private(client, make_user):
    owner, owner_headers = make_user("owner")
    _, other_headers = make_user("other")
    thread_id = (await client.post("/threads", headers=owner_headers)).json()["id"]

    assert (await client.get(f"/threads/{thread_id}", headers=other_headers)).status_code == 404
    assert (await client.delete(f"/threads/{thread_id}", headers=other_headers)).status_code == 404
    assert (await client.get("/threads", headers=other_headers)).json() == []
    assert (await client.get(f"/threads/{thread_id}", headers=owner_headers)).status_code == 200


@pytest.mark.asyncio
async def test_threads_require_auth(client):
    response = await client.get("/threads")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


@pytest.mark.asyncio
async def test_status_reports_usage_and_pools(client, redis_client, make_user):
    user, headers = make_user(plan="pro")
    await redis_client.set(user_usage_key(user.id, "max"), 2)
    await redis_client.set(user_usage_key(user.id, "basic"), 40)
    await redis_client.set(credential_usage_key("gemini", 1), 30)

    response = await client.get("/status", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["plan"] == "pro"
    assert body["plan_label"] == "Pro"
    assert body["usage"]["max"] == {"used": 2, "limit": 5, "remaining": 3}
    assert body["usage"]["basic"] == {"used": 40, "limit": -1, "remaining": -1}
    assert body["pools"]["basic"] == {"total": 100, "remaining": 70}
    assert body["pools"]["max"] == {"total": 50, "remaining": 50}


@pytest.mark.asyncio
async def test_status_for_unknown_plan_uses_free_limits(client, make_user):
    _, headers = make_user(plan="legacy")

    body = (await client.get("/status", headers=headers)).json()

    assert body["plan"] == "free"
    assert body["usage"]["basic"]["limit"] == 10
    assert body["usage"]["max"]["limit"] == 0


@pytest.mark.asyncio
async def test_health(client):
    assert (await client.get("/health")).json()["status"] == "healthy"

    detailed = (await client.get("/health/detailed")).json()
    assert detailed["checks"]["database"]["status"] == "healthy"
    assert detailed["checks"]["redis"]["status"] == "healthy"
    assert "gemini" in detailed["checks"]
