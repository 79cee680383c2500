"""Redis client and key layout for the document store.

Documents are JSON strings; sorted sets index them:

- doc:{collection}:{id}                  document body
- idx:{collection}                       every document in the collection
- idx:{collection}:user:{user_id}        documents owned by a user
- idx:comments:game:{game_id}            comments on a game

Index scores are creation timestamps (epoch seconds), except:
- idx:games_api_cache is scored by expires_at (drives the expiry sweep)
- idx:logs is scored by the entry timestamp (drives log archival)

TTL policies:
- External game payloads: 24 hours by default (settings.cache_ttl_hours)
- Activity logs: archived after settings.log_archive_days
"""

import redis.asyncio as redis

from factiony.settings import Settings

# Collections
COLLECTION_LIKES = "user_likes"
COLLECTION_COMMENTS = "comments"
COLLECTION_LISTS = "user_lists"
COLLECTION_CACHE = "games_api_cache"
COLLECTION_LOGS = "logs"

# Collections holding per-user documents (erasure scope)
USER_COLLECTIONS = (COLLECTION_LIKES, COLLECTION_COMMENTS, COLLECTION_LISTS, COLLECTION_LOGS)

# Key prefixes
PREFIX_DOC = "doc:"
PREFIX_INDEX = "idx:"


def doc_key(collection: str, doc_id: str) -> str:
    return f"{PREFIX_DOC}{collection}:{doc_id}"


def index_key(collection: str) -> str:
    return f"{PREFIX_INDEX}{collection}"


def user_index_key(collection: str, user_id: str) -> str:
    return f"{PREFIX_INDEX}{collection}:user:{user_id}"


def game_index_key(collection: str, game_id: str) -> str:
    return f"{PREFIX_INDEX}{collection}:game:{game_id}"


def cache_doc_id(game_id: str, source: str) -> str:
    return f"{game_id}_{source}"


def create_redis_client(settings: Settings) -> redis.Redis:
    """Build a client from settings. Requires `redis_url` to be set.

    No I/O happens here; the first command opens the connection.
    """
    if not settings.redis_url:
        raise ValueError("redis_url is not configured")
    return redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=settings.store_timeout_seconds,
        socket_timeout=settings.store_timeout_seconds,
    )
