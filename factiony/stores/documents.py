"""Document adapter: likes, comments, lists, API cache and activity logs.

Every public call first checks the adapter's disabled flag and returns an
empty result without touching the network when it is set. The flag is set
once, either at construction (no Redis URL configured) or on the first
authorization/configuration failure reported by Redis, and is never
cleared: a fresh process picks up corrected configuration.

Other failures (connection refused, timeouts, unexpected replies) are
raised as typed `StoreError`s and leave the adapter enabled.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
import functools
import json
import logging
from typing import Any
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError

from factiony.settings import Settings
from factiony.stores.errors import (
    TRANSPORT_ERRORS,
    AuthorizationError,
    StoreError,
    UnknownStoreError,
    classify_redis_error,
)
from factiony.stores.redis import (
    COLLECTION_CACHE,
    COLLECTION_COMMENTS,
    COLLECTION_LIKES,
    COLLECTION_LISTS,
    COLLECTION_LOGS,
    USER_COLLECTIONS,
    cache_doc_id,
    create_redis_client,
    doc_key,
    game_index_key,
    index_key,
    user_index_key,
)

logger = logging.getLogger("uvicorn.error")

Clock = Callable[[], datetime]

# Documents deleted per MULTI/EXEC round-trip
DELETE_BATCH_SIZE = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityKind(str, Enum):
    VIEW = "view_game"
    ADD_TO_LIST = "add_to_list"
    RATE = "rate_game"
    COMMENT = "comment"
    SEARCH = "search"
    LIKE = "like"
    FOLLOW = "follow"
    REGISTER = "register"
    LOGIN = "login"


class CacheSource(str, Enum):
    RAWG = "rawg"
    IGDB = "igdb"


# ============================================================
# Records
# ============================================================


def _ts(value: Any) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _encode(body: dict[str, Any]) -> str:
    return json.dumps(body, default=_json_default)


@dataclass(frozen=True)
class LikeRecord:
    id: str
    user_id: str
    game_id: str
    created_at: datetime

    @classmethod
    def from_doc(cls, doc_id: str, data: dict[str, Any]) -> "LikeRecord":
        return cls(
            id=doc_id,
            user_id=data["user_id"],
            game_id=data["game_id"],
            created_at=_ts(data["created_at"]),
        )


@dataclass(frozen=True)
class CommentRecord:
    id: str
    user_id: str
    game_id: str
    content: str
    created_at: datetime
    updated_at: datetime
    rating: float | None = None
    is_spoiler: bool = False
    likes: int = 0
    replies: list[str] = field(default_factory=list)

    @classmethod
    def from_doc(cls, doc_id: str, data: dict[str, Any]) -> "CommentRecord":
        return cls(
            id=doc_id,
            user_id=data["user_id"],
            game_id=data["game_id"],
            content=data["content"],
            created_at=_ts(data["created_at"]),
            updated_at=_ts(data["updated_at"]),
            rating=data.get("rating"),
            is_spoiler=bool(data.get("is_spoiler", False)),
            likes=int(data.get("likes", 0)),
            replies=list(data.get("replies") or []),
        )


@dataclass(frozen=True)
class UserListRecord:
    id: str
    user_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    games: list[str] = field(default_factory=list)
    is_public: bool = False

    @classmethod
    def from_doc(cls, doc_id: str, data: dict[str, Any]) -> "UserListRecord":
        return cls(
            id=doc_id,
            user_id=data["user_id"],
            name=data["name"],
            created_at=_ts(data["created_at"]),
            updated_at=_ts(data["updated_at"]),
            description=data.get("description"),
            games=list(data.get("games") or []),
            is_public=bool(data.get("is_public", False)),
        )


@dataclass(frozen=True)
class CacheEntry:
    game_id: str
    source: CacheSource
    payload: Any
    last_updated: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @classmethod
    def from_doc(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            game_id=data["game_id"],
            source=CacheSource(data["api_source"]),
            payload=data.get("data_json"),
            last_updated=_ts(data["last_updated"]),
            expires_at=_ts(data["expires_at"]),
        )


@dataclass(frozen=True)
class ActivityLogEntry:
    id: str
    user_id: str
    kind: ActivityKind
    timestamp: datetime
    resource_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_doc(cls, doc_id: str, data: dict[str, Any]) -> "ActivityLogEntry":
        return cls(
            id=doc_id,
            user_id=data["user_id"],
            kind=ActivityKind(data["action_type"]),
            timestamp=_ts(data["timestamp"]),
            resource_id=data.get("resource_id"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class DocumentStats:
    total_likes: int = 0
    total_comments: int = 0
    total_lists: int = 0
    cache_size: int = 0
    total_logs: int = 0


# ============================================================
# Adapter
# ============================================================


def _fallback_value(fallback: Any) -> Any:
    return fallback() if callable(fallback) else fallback


def _guarded(fallback: Any) -> Callable:
    """Wrap a public adapter method with the disabled-flag policy.

    - disabled: return `fallback` (a value, or a factory such as `list`)
    - authorization failure: disable the adapter, return `fallback`
    - any other Redis/transport failure: raise it as a StoreError
    - a document body that does not decode: raise UnknownStoreError
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self: "DocumentAdapter", *args: Any, **kwargs: Any) -> Any:
            if self.disabled:
                return _fallback_value(fallback)
            try:
                return await func(self, *args, **kwargs)
            except (RedisError, *TRANSPORT_ERRORS) as exc:
                error = self._classify(exc, func.__name__.lstrip("_"))
                if not isinstance(error, AuthorizationError):
                    raise error from exc
            except json.JSONDecodeError as exc:
                operation = func.__name__.lstrip("_")
                logger.error(f"Document store {operation} read a corrupt document: {exc}")
                raise UnknownStoreError(
                    f"Corrupt document: {exc}", store="document", operation=operation
                ) from exc
            return _fallback_value(fallback)

        return wrapper

    return decorator


def _secondary_indexes(collection: str, body: dict[str, Any]) -> list[str]:
    keys: list[str] = []
    if body.get("user_id"):
        keys.append(user_index_key(collection, body["user_id"]))
    if collection == COLLECTION_COMMENTS and body.get("game_id"):
        keys.append(game_index_key(collection, body["game_id"]))
    return keys


class DocumentAdapter:
    """High-volume, loosely structured data kept in Redis."""

    def __init__(self, client: redis.Redis | None, *, clock: Clock = utcnow) -> None:
        self._client = client
        self._clock = clock
        self._disabled = False
        self._disabled_logged = False
        if client is None:
            self._disable("REDIS_URL not configured")

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Clock = utcnow) -> "DocumentAdapter":
        if not settings.document_configured:
            return cls(None, clock=clock)
        return cls(create_redis_client(settings), clock=clock)

    @property
    def disabled(self) -> bool:
        return self._disabled

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    def _disable(self, cause: str) -> None:
        self._disabled = True
        if not self._disabled_logged:
            self._disabled_logged = True
            logger.warning(
                f"Document store disabled for the rest of this process ({cause}); "
                "continuing with the relational store only"
            )

    def _classify(self, exc: BaseException, operation: str) -> StoreError:
        error = classify_redis_error(exc, operation=operation)
        if isinstance(error, AuthorizationError):
            self._disable(f"{operation}: {error}")
        else:
            logger.error(f"Document store {operation} failed: {error}")
        return error

    @property
    def _redis(self) -> redis.Redis:
        assert self._client is not None
        return self._client

    # ============================================================
    # Low-level document helpers (raise native Redis errors)
    # ============================================================

    async def _insert(self, collection: str, doc_id: str, body: dict[str, Any], score: float) -> None:
        """Write (or overwrite) a document and its index entries atomically."""
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(doc_key(collection, doc_id), _encode(body))
            pipe.zadd(index_key(collection), {doc_id: score})
            for key in _secondary_indexes(collection, body):
                pipe.zadd(key, {doc_id: score})
            await pipe.execute()

    async def _load(self, collection: str, doc_ids: Sequence[str]) -> list[tuple[str, dict[str, Any]]]:
        """Fetch documents in index order, skipping ids whose body is gone."""
        if not doc_ids:
            return []
        raws = await self._redis.mget([doc_key(collection, doc_id) for doc_id in doc_ids])
        return [(doc_id, json.loads(raw)) for doc_id, raw in zip(doc_ids, raws) if raw is not None]

    async def _remove(self, collection: str, doc_ids: Sequence[str]) -> int:
        """Delete documents and every index entry pointing at them.

        Returns how many ids were removed from the collection index, so two
        concurrent removals of the same ids count each id once.
        """
        removed = 0
        for start in range(0, len(doc_ids), DELETE_BATCH_SIZE):
            batch = list(doc_ids[start : start + DELETE_BATCH_SIZE])
            raws = await self._redis.mget([doc_key(collection, doc_id) for doc_id in batch])

            counted: list[int] = []
            queued = 0
            async with self._redis.pipeline(transaction=True) as pipe:
                for doc_id, raw in zip(batch, raws):
                    body = json.loads(raw) if raw is not None else {}
                    pipe.delete(doc_key(collection, doc_id))
                    pipe.zrem(index_key(collection), doc_id)
                    counted.append(queued + 1)
                    queued += 2
                    for key in _secondary_indexes(collection, body):
                        pipe.zrem(key, doc_id)
                        queued += 1
                results = await pipe.execute()
            removed += sum(int(results[position]) for position in counted)
        return removed

    async def _newest(self, key: str, limit: int | None = None) -> list[str]:
        if limit is not None and limit <= 0:
            return []
        end = -1 if limit is None else limit - 1
        return await self._redis.zrange(key, 0, end, desc=True)

    # ============================================================
    # Health
    # ============================================================

    @_guarded(False)
    async def _health_probe(self) -> bool:
        return bool(await self._redis.ping())

    async def health_check(self) -> bool:
        """Round-trip to Redis. Never raises."""
        try:
            return await self._health_probe()
        except StoreError:
            return False

    # ============================================================
    # Likes
    # ============================================================

    @_guarded(None)
    async def add_like(self, user_id: str, game_id: str) -> str | None:
        """Record a like. Returns the new like id."""
        now = self._clock()
        like_id = uuid4().hex
        body = {"user_id": user_id, "game_id": game_id, "created_at": now}
        await self._insert(COLLECTION_LIKES, like_id, body, now.timestamp())
        return like_id

    @_guarded(False)
    async def remove_like(self, user_id: str, game_id: str) -> bool:
        """Delete every like for the (user, game) pair, duplicates included."""
        ids = await self._newest(user_index_key(COLLECTION_LIKES, user_id))
        docs = await self._load(COLLECTION_LIKES, ids)
        matching = [doc_id for doc_id, body in docs if body.get("game_id") == game_id]
        await self._remove(COLLECTION_LIKES, matching)
        return True

    @_guarded(list)
    async def get_user_likes(self, user_id: str, limit: int = 50) -> list[LikeRecord]:
        ids = await self._newest(user_index_key(COLLECTION_LIKES, user_id), limit)
        return [LikeRecord.from_doc(doc_id, body) for doc_id, body in await self._load(COLLECTION_LIKES, ids)]

    # ============================================================
    # Comments
    # ============================================================

    @_guarded(None)
    async def create_comment(
        self,
        user_id: str,
        game_id: str,
        content: str,
        rating: float | None = None,
        is_spoiler: bool = False,
    ) -> str | None:
        now = self._clock()
        comment_id = uuid4().hex
        body = {
            "user_id": user_id,
            "game_id": game_id,
            "content": content,
            "rating": rating,
            "is_spoiler": is_spoiler,
            "likes": 0,
            "replies": [],
            "created_at": now,
            "updated_at": now,
        }
        await self._insert(COLLECTION_COMMENTS, comment_id, body, now.timestamp())
        return comment_id

    @_guarded(list)
    async def get_game_comments(self, game_id: str, limit: int = 20) -> list[CommentRecord]:
        """Newest first."""
        ids = await self._newest(game_index_key(COLLECTION_COMMENTS, game_id), limit)
        docs = await self._load(COLLECTION_COMMENTS, ids)
        return [CommentRecord.from_doc(doc_id, body) for doc_id, body in docs]

    @_guarded(list)
    async def get_user_comments(self, user_id: str, limit: int = 50) -> list[CommentRecord]:
        ids = await self._newest(user_index_key(COLLECTION_COMMENTS, user_id), limit)
        docs = await self._load(COLLECTION_COMMENTS, ids)
        return [CommentRecord.from_doc(doc_id, body) for doc_id, body in docs]

    # ============================================================
    # User lists
    # ============================================================

    @_guarded(None)
    async def create_user_list(
        self,
        user_id: str,
        name: str,
        description: str | None = None,
        is_public: bool = False,
    ) -> str | None:
        now = self._clock()
        list_id = uuid4().hex
        body = {
            "user_id": user_id,
            "name": name,
            "description": description,
            "games": [],
            "is_public": is_public,
            "created_at": now,
            "updated_at": now,
        }
        await self._insert(COLLECTION_LISTS, list_id, body, now.timestamp())
        return list_id

    @_guarded(list)
    async def get_user_lists(self, user_id: str) -> list[UserListRecord]:
        ids = await self._newest(user_index_key(COLLECTION_LISTS, user_id))
        docs = await self._load(COLLECTION_LISTS, ids)
        return [UserListRecord.from_doc(doc_id, body) for doc_id, body in docs]

    @_guarded(None)
    async def get_list(self, list_id: str) -> UserListRecord | None:
        docs = await self._load(COLLECTION_LISTS, [list_id])
        if not docs:
            return None
        return UserListRecord.from_doc(*docs[0])

    @_guarded(False)
    async def add_game_to_list(self, list_id: str, game_id: str) -> bool:
        """Append a game to a list.

        Adding a game already on the list is a no-op that still returns True.
        Returns False when the list does not exist.
        """
        key = doc_key(COLLECTION_LISTS, list_id)
        raw = await self._redis.get(key)
        if raw is None:
            return False
        body = json.loads(raw)
        games = list(body.get("games") or [])
        if game_id in games:
            return True
        body["games"] = [*games, game_id]
        body["updated_at"] = self._clock()
        await self._redis.set(key, _encode(body))
        return True

    # ============================================================
    # External API cache
    # ============================================================

    @_guarded(False)
    async def cache_game_data(
        self,
        game_id: str,
        source: CacheSource | str,
        payload: Any,
        ttl_hours: float = 24.0,
    ) -> bool:
        """Upsert the cached payload for (game_id, source)."""
        source = CacheSource(source)
        now = self._clock()
        expires_at = now + timedelta(hours=ttl_hours)
        body = {
            "game_id": game_id,
            "api_source": source,
            "data_json": payload,
            "last_updated": now,
            "expires_at": expires_at,
        }
        await self._insert(COLLECTION_CACHE, cache_doc_id(game_id, source.value), body, expires_at.timestamp())
        return True

    @_guarded(None)
    async def get_cached_game_data(self, game_id: str, source: CacheSource | str) -> CacheEntry | None:
        """Return the live entry, or None on a miss.

        An expired entry is deleted on read and reported as a miss.
        """
        source = CacheSource(source)
        doc_id = cache_doc_id(game_id, source.value)
        raw = await self._redis.get(doc_key(COLLECTION_CACHE, doc_id))
        if raw is None:
            return None
        entry = CacheEntry.from_doc(json.loads(raw))
        if entry.is_expired(self._clock()):
            await self._remove(COLLECTION_CACHE, [doc_id])
            logger.info(f"Cache entry {doc_id} expired at {entry.expires_at.isoformat()}, evicted")
            return None
        return entry

    # ============================================================
    # Activity log
    # ============================================================

    @_guarded(False)
    async def log_activity(
        self,
        user_id: str,
        kind: ActivityKind | str,
        resource_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Append an activity entry. Entries are never updated."""
        kind = ActivityKind(kind)
        now = self._clock()
        body = {
            "user_id": user_id,
            "action_type": kind,
            "resource_id": resource_id,
            "metadata": metadata or {},
            "timestamp": now,
        }
        await self._insert(COLLECTION_LOGS, uuid4().hex, body, now.timestamp())
        return True

    @_guarded(list)
    async def get_user_activity(self, user_id: str, limit: int = 50) -> list[ActivityLogEntry]:
        ids = await self._newest(user_index_key(COLLECTION_LOGS, user_id), limit)
        docs = await self._load(COLLECTION_LOGS, ids)
        return [ActivityLogEntry.from_doc(doc_id, body) for doc_id, body in docs]

    # ============================================================
    # Erasure
    # ============================================================

    async def _delete_user_collection(self, collection: str, user_id: str) -> int:
        key = user_index_key(collection, user_id)
        ids = await self._redis.zrange(key, 0, -1)
        removed = await self._remove(collection, ids)
        await self._redis.delete(key)
        return removed

    @_guarded(False)
    async def delete_user_data(self, user_id: str) -> bool:
        """Delete every document owned by a user.

        Collections are processed independently: a failure in one does not
        stop the others. Returns True when all collections were cleared,
        False when the adapter is (or becomes) disabled. Any other failure
        is raised after every collection has been attempted.
        """
        failures: list[tuple[str, StoreError]] = []
        for collection in USER_COLLECTIONS:
            if self.disabled:
                return False
            try:
                removed = await self._delete_user_collection(collection, user_id)
            except (RedisError, *TRANSPORT_ERRORS) as exc:
                failures.append((collection, self._classify(exc, f"delete_user_data[{collection}]")))
                continue
            logger.info(f"Document erasure for {user_id}: {collection} removed={removed}")

        if self.disabled:
            return False
        if failures:
            names = ", ".join(name for name, _ in failures)
            first = failures[0][1]
            raise type(first)(
                f"Erasure incomplete for {user_id}; failed collections: {names} ({first})",
                store="document",
                operation="delete_user_data",
            )
        return True

    # ============================================================
    # Stats & maintenance
    # ============================================================

    @_guarded(DocumentStats)
    async def get_stats(self) -> DocumentStats:
        async with self._redis.pipeline(transaction=False) as pipe:
            for collection in (COLLECTION_LIKES, COLLECTION_COMMENTS, COLLECTION_LISTS, COLLECTION_CACHE, COLLECTION_LOGS):
                pipe.zcard(index_key(collection))
            likes, comments, lists, cache, logs = await pipe.execute()
        return DocumentStats(
            total_likes=int(likes),
            total_comments=int(comments),
            total_lists=int(lists),
            cache_size=int(cache),
            total_logs=int(logs),
        )

    @_guarded(0)
    async def clear_expired_cache(self) -> int:
        """Delete cache entries with expires_at < now. Returns the count removed."""
        now = self._clock()
        ids = await self._redis.zrangebyscore(index_key(COLLECTION_CACHE), "-inf", f"({now.timestamp()}")
        removed = await self._remove(COLLECTION_CACHE, ids)
        if removed:
            logger.info(f"Cleared {removed} expired cache entr{'y' if removed == 1 else 'ies'}")
        return removed

    @_guarded(0)
    async def archive_old_logs(self, days_old: int = 90) -> int:
        """Delete activity entries older than `days_old` days. Returns the count removed."""
        cutoff = self._clock() - timedelta(days=days_old)
        ids = await self._redis.zrangebyscore(index_key(COLLECTION_LOGS), "-inf", f"({cutoff.timestamp()}")
        removed = await self._remove(COLLECTION_LOGS, ids)
        if removed:
            logger.info(f"Archived {removed} activity log entr{'y' if removed == 1 else 'ies'} older than {days_old}d")
        return removed
