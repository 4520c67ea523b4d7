import os

# Settings are read at import time; point them at test backends first.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SESSION_BACKEND", "memory")
os.environ.setdefault("HOUSEKEEPING_ENABLED", "false")

from datetime import datetime, timedelta
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.deps import get_clock
from app.core.errors import UploadFailedError
from app.core.sessions import ExpiryPolicy, InMemorySessionStore
from app.infra.db import get_db
from app.infra.storage import StoredMedia, media_kind
from app.main import create_app
from app.models import Base
from app.models.post import Post
from app.models.user import User
from app.services.dm import DmService
from app.services.follow import FollowService
from app.services.notifications import NotificationService
from app.services.reactions import ReactionService
from tests.helpers import make_user

START = datetime(2026, 1, 1, 12, 0, 0)


class FakeClock:
    """Manually advanced clock for expiry tests"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMediaStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: List[StoredMedia] = []
        self.deleted: List[str] = []

    async def upload(self, data: bytes, filename: str, content_type: Optional[str]) -> StoredMedia:
        if self.fail:
            raise UploadFailedError(details={"filename": filename})
        key = f"test/{len(self.uploads)}-{filename}"
        stored = StoredMedia(url=f"https://media.test/{key}", key=key, kind=media_kind(content_type))
        self.uploads.append(stored)
        return stored

    async def delete(self, key: str) -> None:
        self.deleted.append(key)


# Database fixtures
@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=pool.NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# Service fixtures
@pytest.fixture
def dm_service(db: AsyncSession, clock: FakeClock) -> DmService:
    return DmService(db, clock=clock, dismiss_cooldown=72 * 3600)


@pytest.fixture
def reaction_service(db: AsyncSession, clock: FakeClock) -> ReactionService:
    return ReactionService(db, clock=clock)


@pytest.fixture
def follow_service(db: AsyncSession, clock: FakeClock) -> FollowService:
    return FollowService(db, clock=clock)


@pytest.fixture
def notification_service(db: AsyncSession, clock: FakeClock) -> NotificationService:
    return NotificationService(db, clock=clock)


# Test data fixtures
@pytest_asyncio.fixture
async def alice(db: AsyncSession) -> User:
    return await make_user(db, "tp-alice")


@pytest_asyncio.fixture
async def bob(db: AsyncSession) -> User:
    return await make_user(db, "tp-bob")


@pytest_asyncio.fixture
async def carol(db: AsyncSession) -> User:
    return await make_user(db, "tp-carol")


@pytest_asyncio.fixture
async def post(db: AsyncSession, alice: User) -> Post:
    post = Post(user_id=alice.id, caption="trend of the day")
    db.add(post)
    await db.commit()
    return post


# App fixtures
@pytest.fixture
def media_store() -> FakeMediaStore:
    return FakeMediaStore()


@pytest.fixture
def session_store(clock: FakeClock) -> InMemorySessionStore:
    return InMemorySessionStore(ExpiryPolicy(ttl=3600, sliding=True), clock=clock)


@pytest.fixture
def app(session_factory, clock, media_store, session_store):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.state.session_store = session_store
    app.state.media_store = media_store
    return app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
