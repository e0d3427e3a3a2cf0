"""
Shared fixtures and fakes for the LibroVision tests.
"""

import asyncio
import fnmatch
import itertools
from collections.abc import Callable
from typing import Any

import pytest
import redis

from librovision.entities import ResourceDescriptor, StoreResult
from librovision.exceptions import NotFoundError
from librovision.services import CacheContext, RetryPolicy


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """The subset of redis.Redis used by RedisCacheRepository."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def set(self, key: str, value: str, px: int | None = None) -> bool:
        self._check()
        self.data[key] = value
        if px is not None:
            self.ttls[key] = px
        return True

    def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    def scan_iter(self, match: str = "*"):
        self._check()
        return iter([k for k in list(self.data) if fnmatch.fnmatchcase(k, match)])

    def ping(self) -> bool:
        self._check()
        return True


Handler = Callable[[ResourceDescriptor, Any], Any]


class FakeDataStore:
    """In-memory DataStore with per-table handlers and call recording.

    A read handler receives the descriptor and returns rows (a list), one row
    (a dict), a StoreResult, or raises. Unhandled tables read as empty and
    writes echo their payload back with a generated id.
    """

    def __init__(self) -> None:
        self.reads: list[ResourceDescriptor] = []
        self.writes: list[tuple[ResourceDescriptor, Any]] = []
        self.read_handlers: dict[str, Callable[[ResourceDescriptor], Any]] = {}
        self.write_handlers: dict[str, Handler] = {}
        self.read_delay = 0.0
        self._ids = itertools.count(1)

    def on_read(self, table: str, handler: Callable[[ResourceDescriptor], Any]) -> None:
        self.read_handlers[table] = handler

    def on_write(self, table: str, handler: Handler) -> None:
        self.write_handlers[table] = handler

    def reads_of(self, table: str) -> list[ResourceDescriptor]:
        return [d for d in self.reads if d.table == table]

    def writes_to(self, table: str) -> list[tuple[ResourceDescriptor, Any]]:
        return [(d, p) for d, p in self.writes if d.table == table]

    @staticmethod
    def _result(descriptor: ResourceDescriptor, value: Any) -> StoreResult:
        if isinstance(value, StoreResult):
            return value
        if descriptor.single:
            row = value[0] if isinstance(value, list) and value else value
            if not row:
                raise NotFoundError(f"No {descriptor.table} row matched")
            return StoreResult(data=row)
        rows = value if isinstance(value, list) else ([value] if value else [])
        return StoreResult(data=rows, count=len(rows) if descriptor.count else None)

    async def read(self, descriptor: ResourceDescriptor) -> StoreResult:
        self.reads.append(descriptor)
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        handler = self.read_handlers.get(descriptor.table)
        return self._result(descriptor, handler(descriptor) if handler else [])

    async def write(self, descriptor: ResourceDescriptor, payload: Any = None) -> StoreResult:
        self.writes.append((descriptor, payload))
        handler = self.write_handlers.get(descriptor.table)
        if handler is not None:
            return self._result(descriptor, handler(descriptor, payload))
        if isinstance(payload, dict):
            return self._result(descriptor, {"id": f"{descriptor.table}-{next(self._ids)}", **payload})
        return StoreResult(data=payload)

    async def health_check(self) -> bool:
        return True


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store() -> FakeDataStore:
    return FakeDataStore()


@pytest.fixture
def mutation_errors() -> list[tuple[str, BaseException]]:
    """Everything the mutation error sink (the toast) received."""
    return []


@pytest.fixture
def context(clock, mutation_errors) -> CacheContext:
    """Cache context without Redis, with instant retries."""
    return CacheContext.create(
        persistent=False,
        clock=clock,
        on_error=lambda name, error: mutation_errors.append((name, error)),
        retry_policy=RetryPolicy(retries=3, sleep=no_sleep),
        mutation_retry_policy=RetryPolicy(retries=1, sleep=no_sleep),
    )
