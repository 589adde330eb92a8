"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import fnmatch
import time
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from quizarena.config import Settings
from quizarena.container import ServiceContainer, assemble_container
from quizarena.seed import seed_reference_data
from quizarena.store.memory import MemoryStore

# Wednesday, mid-afternoon UTC
FIXED_NOW = datetime(2024, 5, 15, 14, 30, tzinfo=timezone.utc)


class FakeRedis:
    """Dict-backed stand-in for the redis.asyncio calls the cache tier makes.

    ``failing`` makes every call raise a connection error; ``delay`` makes
    every call sleep first, for timeout tests.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expiry: dict[str, float] = {}
        self.failing = False
        self.delay = 0.0
        self.calls: list[str] = []

    async def _enter(self, op: str) -> None:
        self.calls.append(op)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failing:
            raise RedisConnectionError("redis is down")

    def _live(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.time():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    async def get(self, key: str) -> str | None:
        await self._enter("get")
        return self.data[key] if self._live(key) else None

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        await self._enter("set")
        self.data[key] = value
        if ex:
            self.expiry[key] = time.time() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        await self._enter("delete")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def mget(self, keys: list[str]) -> list[str | None]:
        await self._enter("mget")
        return [self.data[k] if self._live(k) else None for k in keys]

    async def scan_iter(self, match: str = "*", count: int | None = None):  # noqa: ARG002
        await self._enter("scan")
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self) -> bool:
        await self._enter("ping")
        return True

    async def aclose(self) -> None:
        return None


def make_settings(**overrides: object) -> Settings:
    """Settings for tests: in-memory store, no timers, no .env."""
    values: dict[str, object] = {
        "storage_backend": "memory",
        "redis_url": "",
        "sync_enabled": False,
        "cache_warm_enabled": False,
        "log_format": "console",
        "cache_op_timeout_seconds": 0.05,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def store() -> MemoryStore:
    """Memory store seeded with the default level bands and catalog."""
    memory = MemoryStore()
    await seed_reference_data(memory)
    return memory


@pytest_asyncio.fixture
async def container(settings: Settings, store: MemoryStore, fake_redis: FakeRedis) -> AsyncGenerator[
    ServiceContainer, None
]:
    """Fully wired services over the memory store and the fake shared tier."""
    services = assemble_container(settings, store, primary=fake_redis, clock=lambda: FIXED_NOW)
    yield services
    await services.stop_background()
    await services.cache.aclose()


@pytest_asyncio.fixture
async def client(container: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app, with the test container installed."""
    from quizarena.main import create_app

    app = create_app()
    app.state.container = container
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
