"""
Shared fixtures: in-memory async database and seed helpers
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from models.records import Base, Member, Video

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine():
    """Fresh in-memory database per test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def video(db) -> Video:
    video = Video(id="vid-1", title="Arena Run #42", stream_uid="stream-abc", views=0)
    db.add(video)
    await db.commit()
    return video


@pytest.fixture
async def member(db) -> Member:
    member = Member(
        discord_id="100",
        discord_username="runner",
        discord_avatar="avatar-hash",
        game_id="G-1",
        role="member",
        is_admin=False,
        is_active=True,
    )
    db.add(member)
    await db.commit()
    return member
