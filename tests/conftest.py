"""Shared fixtures: in-memory Redis double, SQLite-backed relational store, clock."""

import asyncio
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from factiony.services.coordinator import Coordinator
from factiony.stores.documents import DocumentAdapter
from factiony.stores.postgres import PostgresStore
from factiony.stores.relational import RelationalAdapter


class MutableClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


def _bound(value: Any) -> tuple[float, bool]:
    """Parse a ZRANGEBYSCORE bound into (score, exclusive)."""
    if isinstance(value, (int, float)):
        return float(value), False
    text = str(value)
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    if text in ("-inf", "+inf", "inf"):
        return float(text), exclusive
    return float(text), exclusive


class FakePipeline:
    """Queues commands and applies them all-or-nothing on execute()."""

    def __init__(self, redis: "FakeRedis", transaction: bool) -> None:
        self._redis = redis
        self.transaction = transaction
        self._queue: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._queue.clear()

    def __getattr__(self, name: str):
        if name not in FakeRedis.COMMANDS:
            raise AttributeError(name)

        def queue(*args: Any, **kwargs: Any) -> "FakePipeline":
            self._queue.append((name, args, kwargs))
            return self

        return queue

    async def execute(self) -> list[Any]:
        await self._redis._tick()
        for name, _, _ in self._queue:
            self._redis._check(name)
        results = [getattr(self._redis, f"_{name}")(*args, **kwargs) for name, args, kwargs in self._queue]
        self._queue.clear()
        return results


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the document adapter.

    Values are stored as strings (decode_responses=True). Failures can be
    injected per command name, or for every command with "*".
    """

    COMMANDS = {"get", "set", "delete", "mget", "zadd", "zrem", "zcard", "zrange", "zrangebyscore", "ping"}

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.failures: dict[str, BaseException] = {}
        self.calls: list[str] = []
        self.interleave = False
        self.closed = False

    def fail(self, exc: BaseException, *commands: str) -> None:
        for name in commands or ("*",):
            self.failures[name] = exc

    def heal(self) -> None:
        self.failures.clear()

    def _check(self, name: str) -> None:
        self.calls.append(name)
        exc = self.failures.get(name) or self.failures.get("*")
        if exc is not None:
            raise exc

    async def _tick(self) -> None:
        if self.interleave:
            await asyncio.sleep(0)

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self, transaction)

    def __getattr__(self, name: str):
        if name not in self.COMMANDS:
            raise AttributeError(name)
        impl = getattr(self, f"_{name}")

        async def command(*args: Any, **kwargs: Any) -> Any:
            await self._tick()
            self._check(name)
            return impl(*args, **kwargs)

        return command

    async def aclose(self) -> None:
        self.closed = True

    # Command implementations

    def _ping(self) -> bool:
        return True

    def _get(self, key: str) -> str | None:
        return self.strings.get(key)

    def _set(self, key: str, value: str) -> bool:
        self.strings[key] = value
        return True

    def _delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None:
                removed += 1
            elif self.zsets.pop(key, None) is not None:
                removed += 1
        return removed

    def _mget(self, keys: Iterable[str]) -> list[str | None]:
        return [self.strings.get(key) for key in keys]

    def _zadd(self, key: str, mapping: dict[str, float]) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update({member: float(score) for member, score in mapping.items()})
        return added

    def _zrem(self, key: str, *members: str) -> int:
        zset = self.zsets.get(key, {})
        removed = 0
        for member in members:
            if zset.pop(member, None) is not None:
                removed += 1
        if key in self.zsets and not zset:
            del self.zsets[key]
        return removed

    def _zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    def _sorted(self, key: str, desc: bool = False) -> list[str]:
        items = sorted(self.zsets.get(key, {}).items(), key=lambda item: (item[1], item[0]), reverse=desc)
        return [member for member, _ in items]

    def _zrange(self, key: str, start: int, end: int, desc: bool = False) -> list[str]:
        members = self._sorted(key, desc)
        if end < 0:
            end = len(members) + end
        return members[start : end + 1]

    def _zrangebyscore(self, key: str, min: Any, max: Any) -> list[str]:
        low, low_exclusive = _bound(min)
        high, high_exclusive = _bound(max)
        out = []
        for member in self._sorted(key):
            score = self.zsets[key][member]
            if score < low or (low_exclusive and score == low):
                continue
            if score > high or (high_exclusive and score == high):
                continue
            out.append(member)
        return out


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def documents(fake_redis: FakeRedis, clock: MutableClock) -> DocumentAdapter:
    return DocumentAdapter(fake_redis, clock=clock)


@pytest.fixture
async def sql_store(tmp_path):
    """Relational store on a throwaway SQLite file (FKs enforced)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'factiony.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    store = PostgresStore(engine)
    await store.create_tables()
    yield store
    await store.dispose()


@pytest.fixture
def relational(sql_store: PostgresStore) -> RelationalAdapter:
    return RelationalAdapter(sql_store)


@pytest.fixture
def coordinator(relational: RelationalAdapter, documents: DocumentAdapter, clock: MutableClock) -> Coordinator:
    return Coordinator(relational, documents, clock=clock)


@pytest.fixture
async def make_user(relational: RelationalAdapter):
    """Factory inserting a user row with a predictable id."""

    async def _make(user_id: str, **profile: Any):
        return await relational.create_user(f"{user_id}@example.com", user_id=user_id, username=user_id, **profile)

    return _make
