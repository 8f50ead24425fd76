"""
Pytest configuration and fixtures
"""

import os
from typing import Any, AsyncGenerator, Dict, List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from core.database import create_session_maker
from models.base import Base
import models  # noqa: F401  registers every table on Base.metadata
from ingestion.extractors.api_extractor import RateLimitedFetcher
from ingestion.proxy_pool import ProxyPool

# Set TEST_DATABASE_URL to run the storage tests against PostgreSQL
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

API_BASE_URL = "https://kz.test/api/v2"

REAL_STEAMID64 = "76561198000000001"


class SleepRecorder:
    """Stands in for asyncio.sleep; remembers every requested delay"""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeGlobalAPI:
    """
    In-memory GlobalKZ API served through httpx.MockTransport.

    - records: GET /records/{id} returns the payload or 404
    - listings: GET /{resource}?limit=&offset= returns a slice
    - script(): queue responses for a path, served before the defaults
    """

    def __init__(self):
        self.records: Dict[int, Any] = {}
        self.listings: Dict[str, List[Any]] = {}
        self.scripted: Dict[str, List[httpx.Response]] = {}
        self.requests: List[httpx.Request] = []
        self.routes: List[Any] = []

    def script(self, path: str, *responses: httpx.Response) -> None:
        self.scripted.setdefault(path, []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len(httpx.URL(API_BASE_URL).path):].strip("/")

        queue = self.scripted.get(path)
        if queue:
            return queue.pop(0)

        resource, _, element = path.partition("/")
        if resource == "records" and element:
            payload = self.records.get(int(element))
            if payload is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=payload)

        if resource in self.listings:
            limit = int(request.url.params.get("limit", 1000))
            offset = int(request.url.params.get("offset", 0))
            return httpx.Response(200, json=self.listings[resource][offset:offset + limit])

        return httpx.Response(404, json={"message": "Not Found"})

    def client_factory(self, route, timeout: float) -> httpx.AsyncClient:
        def handle(request: httpx.Request) -> httpx.Response:
            self.routes.append(route)
            return self.handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(handle), timeout=timeout)


def make_record_payload(record_id: int, **overrides) -> Dict[str, Any]:
    """A well-formed /records payload"""
    payload = {
        "id": record_id,
        "steamid64": REAL_STEAMID64,
        "player_name": "bill",
        "steam_id": "STEAM_1:1:19867136",
        "server_id": 1279,
        "server_name": "Test Server",
        "map_id": 200,
        "map_name": "kz_beginnerblock_go",
        "stage": 0,
        "mode": "kz_timer",
        "tickrate": 128,
        "time": 25.0,
        "teleports": 0,
        "points": 900,
        "record_filter_id": 0,
        "replay_id": 0,
        "updated_by": 0,
        "created_on": "2024-03-01T12:00:00",
        "updated_on": "2024-03-01T12:00:00",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def api_base_url() -> str:
    return API_BASE_URL


@pytest.fixture
def record_payload():
    return make_record_payload


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_api() -> FakeGlobalAPI:
    return FakeGlobalAPI()


@pytest.fixture
def make_fetcher(fake_api, sleeps):
    """Build a RateLimitedFetcher wired to the fake API and the sleep recorder"""

    def _make(proxies=None, **overrides) -> RateLimitedFetcher:
        options = {
            "base_url": API_BASE_URL,
            "timeout": 5.0,
            "max_attempts": 3,
            "retry_delay": 1.0,
            "rate_limit_cooldown": 60.0,
            "request_delay": 0.0,
            "client_factory": fake_api.client_factory,
            "sleep": sleeps,
        }
        options.update(overrides)
        return RateLimitedFetcher(ProxyPool(proxies), **options)

    return _make


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'kz_test.db'}",
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return create_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()
