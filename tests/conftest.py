# tests/conftest.py

import pytest
from httpx import AsyncClient, ASGITransport
from main import app
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from fastapi_cache import FastAPICache
from database import get_session_maker
from models import Base
from links.exceptions import TitleFetchError
from links.models import metadata as links_metadata
from links.titles import get_title_fetcher
from fastapi_cache.backends.inmemory import InMemoryBackend

TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"
engine = create_async_engine(TEST_DATABASE_URL, connect_args={"timeout": 30})
TestSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


class FakeTitleFetcher:
    """Stands in for the network: returns canned titles, fails for chosen urls."""

    def __init__(self):
        self.titles = {}
        self.failing = set()
        self.calls = []

    async def __call__(self, url):
        self.calls.append(url)
        if url in self.failing:
            raise TitleFetchError(url, "unreachable")
        return self.titles.get(url, "Example Domain")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_maker():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(links_metadata.create_all)
    FastAPICache.init(InMemoryBackend(), prefix="test-cache")
    yield TestSessionLocal
    async with engine.begin() as conn:
        await conn.run_sync(links_metadata.drop_all)
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def fetch_title():
    return FakeTitleFetcher()


@pytest.fixture
async def client(session_maker, fetch_title):
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_title_fetcher] = lambda: fetch_title
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


async def signup(client, username="alice", password="pw"):
    return await client.post(
        "/signup", data={"username": username, "password": password}
    )


async def login(client, username="alice", password="pw"):
    return await client.post(
        "/login", data={"username": username, "password": password}
    )
