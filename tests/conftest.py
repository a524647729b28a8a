"""Shared fixtures for tests."""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from bookmarker.cache import TagCache
from bookmarker.storage import KeyValueStore


SAMPLE_TAGS = ["python", "asyncio", "Testing", "sqlite"]

SAMPLE_FOLDERS = {
    "status": "success",
    "data": [
        {
            "id": 2,
            "title": "Work",
            "children": [
                {"id": 4, "title": "reports", "children": []},
                {"id": 3, "title": "Meetings"},
            ],
        },
        {"id": 1, "title": "Archive"},
    ],
}

SAMPLE_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Async Python with SQLite</title>
    <meta name="description" content="
A practical guide to asyncio and sqlite.
">
    <meta property="og:description" content="Async Python, the practical way.">
</head>
<body>
    <h1>Async Python</h1>
    <h2>Working with sqlite</h2>
    <p>Body text.</p>
    <a href="/tag/python" rel="tag">python</a>
    <a href="/tag/asyncio" rel="tag">asyncio</a>
</body>
</html>
"""


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db_path(tmp_path):
    """Return path for a temporary key/value database."""
    return tmp_path / "test_bookmarker.db"


@pytest.fixture
def cache_db_path(tmp_path):
    """Return path for a temporary cache database."""
    return tmp_path / "test_cache.db"


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def store(db_path):
    """Create and initialize a test key/value store."""
    s = KeyValueStore(db_path)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def fake_api():
    """API client double answering tag and folder requests."""
    api = AsyncMock()

    async def call(endpoint, method="GET", data="", cancel_event=None):
        if endpoint.endswith("/tag"):
            return list(SAMPLE_TAGS)
        if endpoint.endswith("/folder"):
            return SAMPLE_FOLDERS
        return {"status": "success", "data": []}

    api.call.side_effect = call
    return api


@pytest_asyncio.fixture
async def tag_cache(store, fake_api, cache_db_path, clock):
    """Create a tag cache backed by the fake API."""
    cache = TagCache(store, fake_api, db_path=cache_db_path, clock=clock)
    yield cache
    await cache.close()


@pytest.fixture
def sample_tags():
    return list(SAMPLE_TAGS)


@pytest.fixture
def sample_folders():
    return SAMPLE_FOLDERS


@pytest.fixture
def sample_html():
    return SAMPLE_HTML
