"""
tests/conftest.py
Shared fixtures: per-test SQLite database, in-memory Redis stand-in, a fixed clock,
a scripted Daily.co transport, users and sessions.
"""

import json
import os
from datetime import datetime
from typing import Optional

# Must be set before any application module reads settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["DAILY_API_KEY"] = ""
os.environ["DAILY_DOMAIN_URL"] = "https://coaching.daily.co"
os.environ["APP_ENV"] = "test"

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.database import Base, get_db
from config.redis_client import get_redis
from main import app
from services.video.daily import DailyClient, get_video_client
from shared.models.models import CoachingSession, SessionStatus, User, UserRole
from shared.utils.security import create_access_token
from shared.utils.timeutils import get_now

# 49 hours before the default session below
NOW = datetime(2025, 3, 8, 9, 0)
SESSION_AT = datetime(2025, 3, 10, 10, 0)


# ── Test doubles ──────────────────────────────────────────────

class FakeRedis:
    """The subset of redis.asyncio.Redis the app touches, backed by a dict."""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    async def delete(self, *keys):
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def ping(self):
        return True


class FakeDaily:
    """Scripted Daily.co REST API served through httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.rooms = {}
        self.unreachable = False
        self.room_error_status: Optional[int] = None
        self.token_error_status: Optional[int] = None
        # Canned 2xx replies for misbehaving gateways
        self.room_reply: Optional[httpx.Response] = None
        self.token_reply: Optional[httpx.Response] = None
        self._tokens = 0

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if request.method == "POST" and path.endswith("/rooms"):
            if self.room_error_status:
                return httpx.Response(self.room_error_status, json={"error": "server-error"})
            if self.room_reply is not None:
                return self.room_reply
            body = json.loads(request.content)
            name = body["name"]
            if name in self.rooms:
                return httpx.Response(
                    400,
                    json={"error": "invalid-request-error", "info": f"a room named {name} already exists"},
                )
            self.rooms[name] = body
            return httpx.Response(
                200,
                json={
                    "name": name,
                    "url": f"https://coaching.daily.co/{name}",
                    "created_at": "2025-03-10T09:50:00.000Z",
                    "config": body["properties"],
                },
            )

        if request.method == "POST" and path.endswith("/meeting-tokens"):
            if self.token_error_status:
                return httpx.Response(self.token_error_status, json={"error": "server-error"})
            if self.token_reply is not None:
                return self.token_reply
            self._tokens += 1
            return httpx.Response(200, json={"token": f"daily-token-{self._tokens}"})

        if "/rooms/" in path:
            name = path.rsplit("/", 1)[1]
            if request.method == "GET" and name in self.rooms:
                return httpx.Response(200, json={"name": name, "url": f"https://coaching.daily.co/{name}"})
            if request.method == "DELETE" and self.rooms.pop(name, None) is not None:
                return httpx.Response(200, json={"deleted": True, "name": name})
            return httpx.Response(404, json={"error": "not-found"})

        return httpx.Response(404, json={"error": "not-found"})

    def calls(self, method: str, suffix: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path.endswith(suffix))

    def client(self) -> DailyClient:
        return DailyClient(
            api_key="test-key",
            api_url="https://api.daily.co/v1",
            transport=httpx.MockTransport(self.handle),
        )


# ── Helpers ───────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


async def create_session(
    db: AsyncSession,
    client_user: User,
    consultant: User,
    session_date: datetime = SESSION_AT,
    start_time: str = "10:00",
    end_time: str = "11:00",
    **fields,
) -> CoachingSession:
    session = CoachingSession(
        client_id=client_user.id,
        consultant_id=consultant.id,
        session_date=session_date,
        start_time=start_time,
        end_time=end_time,
        status=fields.pop("status", SessionStatus.CONFIRMED),
        **fields,
    )
    db.add(session)
    await db.commit()
    return session


# ── Fixtures ──────────────────────────────────────────────────

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def daily():
    return FakeDaily()


@pytest.fixture
def clock():
    """Mutable request clock: tests move it with clock["now"] = ..."""
    return {"now": NOW}


@pytest.fixture
async def client(session_factory, fake_redis, daily, clock):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_now] = lambda: clock["now"]
    app.dependency_overrides[get_video_client] = daily.client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, email: str, role: UserRole, first: str, last: str) -> User:
    user = User(email=email, first_name=first, last_name=last, role=role, is_active=True)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def user(db) -> User:
    """The client side of the default session."""
    return await _make_user(db, "ayse@example.com", UserRole.CLIENT, "Ayşe", "Yılmaz")


@pytest.fixture
async def consultant(db) -> User:
    return await _make_user(db, "coach@example.com", UserRole.CONSULTANT, "Deniz", "Kaya")


@pytest.fixture
async def other_user(db) -> User:
    return await _make_user(db, "stranger@example.com", UserRole.CLIENT, "Can", "Demir")


@pytest.fixture
async def coaching_session(db, user, consultant) -> CoachingSession:
    """Confirmed session on 2025-03-10 10:00-11:00, never rescheduled."""
    return await create_session(db, user, consultant)
