"""Shared test fixtures."""

import asyncio
from typing import Dict, List

import pytest

from darkjs.analyzers.detectors import DetectorCatalog
from darkjs.collectors.source_fetcher import FetchError, FetchErrorKind, FetchResult
from darkjs.core.config import Config, CrawlConfig, Settings, SettingsManager
from darkjs.models import ScriptReference
from darkjs.services.datastore import AggregationStore, MemoryStore, SettingsStore


class FakeFetcher:
    """Serves script bodies from a dict and records every fetch in order."""

    def __init__(self, bodies: Dict[str, str] = None, errors: Dict[str, FetchErrorKind] = None):
        self.bodies = bodies or {}
        self.errors = errors or {}
        self.fetched: List[str] = []

    async def fetch(self, reference: ScriptReference) -> FetchResult:
        self.fetched.append(reference.key)
        if reference.is_inline:
            return FetchResult(reference=reference, text=reference.inline_text)
        if reference.url in self.errors:
            return FetchResult(reference=reference, error=FetchError(self.errors[reference.url]))
        if reference.url not in self.bodies:
            return FetchResult(reference=reference, error=FetchError(FetchErrorKind.HTTP_STATUS, "HTTP 404"))
        return FetchResult(reference=reference, text=self.bodies[reference.url])


class FakeContent:

    def __init__(self, body: bytes, chunk: int = 4):
        self.body = body
        self.chunk = chunk

    async def iter_chunked(self, size):
        for i in range(0, len(self.body), self.chunk):
            yield self.body[i:i + self.chunk]


class FakeResponse:
    """The slice of aiohttp.ClientResponse the fetchers read."""

    def __init__(self, body: bytes = b"", status: int = 200, content_type: str = "application/javascript",
                 content_length=None, charset=None, url: str = "", cookies=None):
        self.status = status
        self.headers = {"Content-Type": content_type} if content_type else {}
        self.content_length = content_length
        self.charset = charset
        self.content = FakeContent(body)
        self.url = url
        self.cookies = cookies or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:

    def __init__(self, response=None, raises=None):
        self.response = response
        self.raises = raises
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.raises is not None:
            raise self.raises
        return self.response


class SlowMemoryStore(MemoryStore):
    """Yields to the event loop inside every read and write."""

    async def get(self, key):
        await asyncio.sleep(0)
        value = await super().get(key)
        await asyncio.sleep(0)
        return value

    async def set(self, key, value):
        await asyncio.sleep(0)
        await super().set(key, value)


@pytest.fixture
def catalog():
    return DetectorCatalog()


@pytest.fixture
def crawl_config():
    return CrawlConfig()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def kv():
    return MemoryStore()


@pytest.fixture
def store(kv):
    return AggregationStore(kv, max_findings=5000)


@pytest.fixture
def settings_manager(kv):
    return SettingsManager(SettingsStore(kv))


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()
