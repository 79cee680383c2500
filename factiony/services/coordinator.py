"""Coordinator: domain operations spanning the relational and document stores.

There is no transaction across the two stores. Each operation runs its
steps in a fixed order and reports a single verdict:

- follow / unfollow: relational edge first (authoritative), then a
  best-effort activity entry. A rejected edge writes no log entry.
- toggle_like: read a bounded page of the user's likes, then remove or add.
  Two concurrent toggles for the same pair can both read "not liked"; this
  race is accepted, not locked away.
- add_game_to_user_list: user must exist relationally before any document
  is created for them.
- delete_all_user_data: documents first, then relational rows. Both steps
  always run and the result reports each side. Both sides are idempotent
  and the whole operation is safe to retry.
- get_global_stats: both sides read concurrently; a failing side reports
  zeros instead of aborting the call.

Activity logging is a side effect: its failures are logged and dropped and
can never fail the primary operation. Nothing here retries automatically.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, TypeVar

from factiony.models import Follow, SubscriptionPlan, User
from factiony.settings import Settings
from factiony.stores.documents import (
    ActivityKind,
    CacheSource,
    DocumentAdapter,
    DocumentStats,
)
from factiony.stores.errors import ConflictError, StoreError
from factiony.stores.relational import RelationalAdapter, RelationalStats

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

# Machine-readable failure reasons (conflict reasons come from ConflictError)
REASON_USER_NOT_FOUND = "user_not_found"
REASON_NOT_FOLLOWING = "not_following"
REASON_LIST_MISSING = "list_missing"
REASON_RELATIONAL_DISABLED = "relational_store_disabled"
REASON_DOCUMENT_DISABLED = "document_store_disabled"

GameFetcher = Callable[[str], Awaitable[Any]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OperationResult:
    """Verdict of one coordinator operation."""

    ok: bool
    status: str
    reason: str | None = None
    value: Any = None
    error: StoreError | None = None

    @classmethod
    def success(cls, status: str, value: Any = None) -> "OperationResult":
        return cls(ok=True, status=status, value=value)

    @classmethod
    def failure(cls, status: str, reason: str) -> "OperationResult":
        return cls(ok=False, status=status, reason=reason)

    @classmethod
    def from_error(cls, error: StoreError, action: str) -> "OperationResult":
        reason = error.reason if isinstance(error, ConflictError) else error.kind.value
        return cls(ok=False, status=f"{action} failed: {error}", reason=reason, error=error)

    def raise_for_error(self) -> None:
        """Re-raise the underlying store failure, if there was one."""
        if self.error is not None:
            raise self.error


@dataclass(frozen=True)
class SideStatus:
    ok: bool
    status: str
    error: StoreError | None = None


@dataclass(frozen=True)
class ErasureResult:
    user_id: str
    document: SideStatus
    relational: SideStatus

    @property
    def ok(self) -> bool:
        return self.document.ok and self.relational.ok

    @property
    def failed_sides(self) -> list[str]:
        return [name for name, side in (("document", self.document), ("relational", self.relational)) if not side.ok]

    @property
    def status(self) -> str:
        if self.ok:
            return f"All data for {self.user_id} erased"
        return f"Erasure for {self.user_id} incomplete: {', '.join(self.failed_sides)} failed"


@dataclass(frozen=True)
class HealthStatus:
    relational: bool
    document: bool

    @property
    def overall(self) -> bool:
        # Document data is supplementary: one answering store keeps us up.
        return self.relational or self.document

    def as_dict(self) -> dict[str, bool]:
        return {"relational": self.relational, "document": self.document, "overall": self.overall}


@dataclass(frozen=True)
class GlobalStats:
    relational: RelationalStats
    document: DocumentStats
    timestamp: datetime


@dataclass(frozen=True)
class MaintenanceReport:
    cleared_cache: int = 0
    archived_logs: int = 0
    skipped: bool = False
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class UserProfile:
    user: User
    followers: list[User] = field(default_factory=list)
    following: list[User] = field(default_factory=list)


class Coordinator:
    """Public facade over both adapters."""

    def __init__(
        self,
        relational: RelationalAdapter,
        document: DocumentAdapter,
        *,
        like_scan_limit: int = 1000,
        cache_ttl_hours: float = 24.0,
        log_archive_days: int = 90,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._relational = relational
        self._document = document
        self._like_scan_limit = like_scan_limit
        self._cache_ttl_hours = cache_ttl_hours
        self._log_archive_days = log_archive_days
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "Coordinator":
        return cls(
            RelationalAdapter.from_settings(settings),
            DocumentAdapter.from_settings(settings),
            like_scan_limit=settings.like_scan_limit,
            cache_ttl_hours=settings.cache_ttl_hours,
            log_archive_days=settings.log_archive_days,
        )

    @property
    def relational(self) -> RelationalAdapter:
        return self._relational

    @property
    def document(self) -> DocumentAdapter:
        return self._document

    async def aclose(self) -> None:
        await self._document.aclose()
        await self._relational.aclose()

    async def _log_activity(
        self,
        user_id: str,
        kind: ActivityKind,
        resource_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Best-effort activity append; every failure is logged and dropped."""
        try:
            await self._document.log_activity(user_id, kind, resource_id, metadata)
        except Exception:
            logger.warning(f"Activity log write failed ({kind.value} by {user_id}), ignored", exc_info=True)

    # ============================================================
    # Health & stats
    # ============================================================

    async def health_check(self) -> HealthStatus:
        """Probe both stores concurrently; one failing probe never hides the other."""
        relational_ok, document_ok = await asyncio.gather(
            self._relational.health_check(),
            self._document.health_check(),
            return_exceptions=True,
        )
        status = HealthStatus(
            relational=relational_ok is True,
            document=document_ok is True,
        )
        logger.info(f"Store health: {status.as_dict()}")
        return status

    async def get_global_stats(self) -> GlobalStats:
        relational, document = await asyncio.gather(
            self._relational.get_stats(),
            self._document.get_stats(),
            return_exceptions=True,
        )
        return GlobalStats(
            relational=_or_default(relational, RelationalStats(), "relational"),
            document=_or_default(document, DocumentStats(), "document"),
            timestamp=self._clock(),
        )

    async def health_report(self) -> str:
        """Human-readable health and statistics summary."""
        health = await self.health_check()
        stats = await self.get_global_stats()

        def mark(ok: bool) -> str:
            return "OK" if ok else "FAILED"

        lines = [
            "=== FACTIONY HEALTH REPORT ===",
            f"Timestamp: {stats.timestamp.isoformat()}",
            "",
            "Connections:",
            f"  - Relational store: {mark(health.relational)}",
            f"  - Document store: {mark(health.document)}",
            "",
            "Statistics:",
            f"  - Users: {stats.relational.total_users} ({stats.relational.premium_users} premium)",
            f"  - Subscriptions: {stats.relational.total_subscriptions}",
            f"  - Follows: {stats.relational.total_follows}",
            f"  - Likes: {stats.document.total_likes}",
            f"  - Comments: {stats.document.total_comments}",
            f"  - Lists: {stats.document.total_lists}",
            f"  - API cache entries: {stats.document.cache_size}",
            f"  - Activity logs: {stats.document.total_logs}",
            "",
            f"Overall: {mark(health.overall)}",
        ]
        return "\n".join(lines)

    # ============================================================
    # Accounts
    # ============================================================

    async def register_user(self, user_id: str, email: str, username: str | None = None) -> OperationResult:
        """Provision a freshly signed-up identity: user row + free plan.

        Steps already done on a previous attempt are skipped, so a retry
        after a partial failure completes the registration.
        """
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            user = await self._relational.get_user_by_id(user_id)
            if user is None:
                user = await self._relational.create_user(email, user_id=user_id, username=username)
            if await self._relational.get_user_subscription(user_id) is None:
                await self._relational.create_subscription(user_id, SubscriptionPlan.FREE)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Registration")

        await self._log_activity(user_id, ActivityKind.REGISTER, user_id, {"email": email})
        return OperationResult.success(f"User {user_id} registered", value=user)

    async def load_session_user(self, user_id: str) -> OperationResult:
        """Resolve the identifier from a signed-in event to its user record."""
        try:
            user = await self._relational.get_user_by_id(user_id)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Session load")
        if user is None:
            if not self._relational.enabled:
                return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
            return OperationResult.failure(f"User {user_id} not found", REASON_USER_NOT_FOUND)

        await self._log_activity(user_id, ActivityKind.LOGIN)
        return OperationResult.success(f"Session user {user_id} loaded", value=user)

    async def find_user_by_email(self, email: str) -> OperationResult:
        """Lookup used by the sign-in collaborator before it has a user id."""
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            user = await self._relational.get_user_by_email(email)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Email lookup")
        if user is None:
            return OperationResult.failure(f"No user with email {email}", REASON_USER_NOT_FOUND)
        return OperationResult.success(f"User {user.id} found", value=user)

    async def check_username_availability(self, username: str) -> OperationResult:
        """`value` is True when nobody holds `username` yet."""
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            available = await self._relational.check_username_availability(username)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Username check")
        return OperationResult.success(f"Username {username} {'free' if available else 'taken'}", value=available)

    async def search_users(self, query: str, limit: int = 20) -> OperationResult:
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            users = await self._relational.search_users(query, limit)
        except StoreError as exc:
            return OperationResult.from_error(exc, "User search")
        return OperationResult.success(f"{len(users)} users match {query!r}", value=users)

    async def load_user_profile(self, user_id: str) -> OperationResult:
        """Profile with followers and following, the two lists read concurrently."""
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            user = await self._relational.get_user_by_id(user_id)
            if user is None:
                return OperationResult.failure(f"User {user_id} not found", REASON_USER_NOT_FOUND)
            followers, following = await asyncio.gather(
                self._relational.get_user_followers(user_id),
                self._relational.get_user_following(user_id),
            )
        except StoreError as exc:
            return OperationResult.from_error(exc, "Profile load")
        profile = UserProfile(user=user, followers=followers, following=following)
        return OperationResult.success(f"Profile {user_id} loaded", value=profile)

    async def update_profile(self, user_id: str, **fields: Any) -> OperationResult:
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            user = await self._relational.update_user(user_id, **fields)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Profile update")
        if user is None:
            return OperationResult.failure(f"User {user_id} not found", REASON_USER_NOT_FOUND)
        return OperationResult.success(f"Profile {user_id} updated", value=user)

    async def upgrade_to_premium(self, user_id: str, billing_ref: str) -> OperationResult:
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            subscription = await self._relational.upgrade_subscription(user_id, billing_ref)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Premium upgrade")
        if subscription is None:
            return OperationResult.failure(f"User {user_id} not found", REASON_USER_NOT_FOUND)
        return OperationResult.success(f"User {user_id} upgraded to premium", value=subscription)

    # ============================================================
    # Social graph
    # ============================================================

    async def follow(self, user_id: str, target_id: str) -> OperationResult:
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            edge: Follow | None = await self._relational.follow_user(user_id, target_id)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Follow")

        await self._log_activity(user_id, ActivityKind.FOLLOW, target_id, {"action": "follow_user"})
        return OperationResult.success(f"{user_id} now follows {target_id}", value=edge)

    async def unfollow(self, user_id: str, target_id: str) -> OperationResult:
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            removed = await self._relational.unfollow_user(user_id, target_id)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Unfollow")
        if not removed:
            return OperationResult.failure(f"{user_id} does not follow {target_id}", REASON_NOT_FOLLOWING)

        await self._log_activity(user_id, ActivityKind.FOLLOW, target_id, {"action": "unfollow_user"})
        return OperationResult.success(f"{user_id} unfollowed {target_id}")

    # ============================================================
    # Likes, lists, comments
    # ============================================================

    async def toggle_like(self, user_id: str, game_id: str) -> OperationResult:
        """Like the game if not liked yet, otherwise unlike it.

        `value` is the resulting state: True = liked, False = not liked.
        """
        if self._document.disabled:
            return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)
        try:
            likes = await self._document.get_user_likes(user_id, self._like_scan_limit)
            if any(like.game_id == game_id for like in likes):
                if not await self._document.remove_like(user_id, game_id):
                    return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)
                await self._log_activity(user_id, ActivityKind.LIKE, game_id, {"action": "unlike"})
                return OperationResult.success(f"{user_id} unliked {game_id}", value=False)

            if await self._document.add_like(user_id, game_id) is None:
                return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Like toggle")

        await self._log_activity(user_id, ActivityKind.LIKE, game_id, {"action": "like"})
        return OperationResult.success(f"{user_id} liked {game_id}", value=True)

    async def _read_documents(self, label: str, read: Coroutine[Any, Any, list[Any]]) -> OperationResult:
        if self._document.disabled:
            read.close()
            return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)
        try:
            items = await read
        except StoreError as exc:
            return OperationResult.from_error(exc, f"{label} read")
        return OperationResult.success(f"{len(items)} {label.lower()}", value=items)

    async def get_user_likes(self, user_id: str, limit: int = 50) -> OperationResult:
        """Newest likes first. `value` is a list of LikeRecord."""
        return await self._read_documents("Likes", self._document.get_user_likes(user_id, limit))

    async def get_user_lists(self, user_id: str) -> OperationResult:
        return await self._read_documents("Lists", self._document.get_user_lists(user_id))

    async def get_user_list(self, user_id: str, list_id: str) -> OperationResult:
        """One list, only if `user_id` owns it."""
        if self._document.disabled:
            return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)
        try:
            user_list = await self._document.get_list(list_id)
        except StoreError as exc:
            return OperationResult.from_error(exc, "List read")
        if user_list is None or user_list.user_id != user_id:
            return OperationResult.failure(f"List {list_id} not found", REASON_LIST_MISSING)
        return OperationResult.success(f"List {list_id} loaded", value=user_list)

    async def get_game_comments(self, game_id: str, limit: int = 20) -> OperationResult:
        """Newest comments on a game first. `value` is a list of CommentRecord."""
        return await self._read_documents("Comments", self._document.get_game_comments(game_id, limit))

    async def get_user_comments(self, user_id: str, limit: int = 50) -> OperationResult:
        return await self._read_documents("Comments", self._document.get_user_comments(user_id, limit))

    async def get_user_activity(self, user_id: str, limit: int = 50) -> OperationResult:
        return await self._read_documents("Activity entries", self._document.get_user_activity(user_id, limit))

    async def _require_user(self, user_id: str) -> OperationResult | None:
        """Failure result unless the user exists in the authoritative store."""
        if not self._relational.enabled:
            return OperationResult.failure("Relational store unavailable", REASON_RELATIONAL_DISABLED)
        try:
            user = await self._relational.get_user_by_id(user_id)
        except StoreError as exc:
            return OperationResult.from_error(exc, "User lookup")
        if user is None:
            return OperationResult.failure(f"User {user_id} not found", REASON_USER_NOT_FOUND)
        return None

    async def add_game_to_user_list(self, user_id: str, game_id: str, list_name: str) -> OperationResult:
        """Append a game to the user's list named `list_name`, creating the list on first use.

        `value` is the list id.
        """
        missing = await self._require_user(user_id)
        if missing is not None:
            return missing
        if self._document.disabled:
            return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)

        try:
            lists = await self._document.get_user_lists(user_id)
            target = next((user_list for user_list in lists if user_list.name == list_name), None)
            list_id = target.id if target is not None else await self._document.create_user_list(user_id, list_name)
            if list_id is None:
                return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)
            if not await self._document.add_game_to_list(list_id, game_id):
                if self._document.disabled:
                    return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)
                return OperationResult.failure(f"List {list_id} disappeared", REASON_LIST_MISSING)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Add to list")

        await self._log_activity(
            user_id,
            ActivityKind.ADD_TO_LIST,
            game_id,
            {"list_name": list_name, "timestamp": self._clock().isoformat()},
        )
        return OperationResult.success(f"{game_id} added to {list_name!r}", value=list_id)

    async def post_comment(
        self,
        user_id: str,
        game_id: str,
        content: str,
        rating: float | None = None,
        is_spoiler: bool = False,
    ) -> OperationResult:
        """Create a comment for an existing user. `value` is the comment id."""
        missing = await self._require_user(user_id)
        if missing is not None:
            return missing
        try:
            comment_id = await self._document.create_comment(user_id, game_id, content, rating, is_spoiler)
        except StoreError as exc:
            return OperationResult.from_error(exc, "Comment")
        if comment_id is None:
            return OperationResult.failure("Document store unavailable", REASON_DOCUMENT_DISABLED)

        await self._log_activity(user_id, ActivityKind.COMMENT, game_id, {"comment_id": comment_id})
        if rating is not None:
            await self._log_activity(user_id, ActivityKind.RATE, game_id, {"rating": rating})
        return OperationResult.success(f"Comment {comment_id} posted on {game_id}", value=comment_id)

    # ============================================================
    # External game data
    # ============================================================

    async def get_game_data(
        self,
        game_id: str,
        source: CacheSource | str,
        fetch: GameFetcher,
        ttl_hours: float | None = None,
    ) -> Any:
        """Read-through cache in front of the paid game-metadata API.

        A live cache entry is returned as-is; otherwise `fetch(game_id)` is
        called once and its result cached. Document store trouble only costs
        an extra fetch. Errors raised by `fetch` propagate.
        """
        try:
            entry = await self._document.get_cached_game_data(game_id, source)
        except StoreError as exc:
            logger.warning(f"Cache read for {game_id}/{source} failed, fetching: {exc}")
            entry = None
        if entry is not None:
            return entry.payload

        payload = await fetch(game_id)
        if payload is None:
            return None

        ttl = self._cache_ttl_hours if ttl_hours is None else ttl_hours
        try:
            await self._document.cache_game_data(game_id, source, payload, ttl)
        except StoreError as exc:
            logger.warning(f"Cache write for {game_id}/{source} failed: {exc}")
        return payload

    # ============================================================
    # Erasure
    # ============================================================

    async def delete_all_user_data(self, user_id: str) -> ErasureResult:
        """Erase a user's footprint from both stores, documents first.

        The relational step always runs, whatever the document step reported.
        Both steps are idempotent, so a partial failure is fixed by retrying.
        """
        logger.info(f"Erasure requested for {user_id}")
        document = await self._erase_documents(user_id)
        relational = await self._erase_relational(user_id)

        result = ErasureResult(user_id=user_id, document=document, relational=relational)
        if result.ok:
            logger.info(result.status)
        else:
            logger.error(f"{result.status} (document: {document.status}; relational: {relational.status})")
        return result

    async def _erase_documents(self, user_id: str) -> SideStatus:
        if self._document.disabled:
            return SideStatus(ok=False, status="document store unavailable")
        try:
            done = await self._document.delete_user_data(user_id)
        except StoreError as exc:
            return SideStatus(ok=False, status=str(exc), error=exc)
        if not done:
            return SideStatus(ok=False, status="document store unavailable")
        return SideStatus(ok=True, status="documents erased")

    async def _erase_relational(self, user_id: str) -> SideStatus:
        if not self._relational.enabled:
            return SideStatus(ok=False, status="relational store unavailable")
        try:
            await self._relational.delete_user_data(user_id)
        except StoreError as exc:
            return SideStatus(ok=False, status=str(exc), error=exc)
        return SideStatus(ok=True, status="relational rows erased")

    # ============================================================
    # Maintenance
    # ============================================================

    async def run_maintenance(self, threshold_days: int | None = None) -> MaintenanceReport:
        """Evict expired cache entries and archive old activity logs.

        Safe to run concurrently with itself: deleting already-deleted
        entries is a no-op and is not counted twice.
        """
        if self._document.disabled:
            return MaintenanceReport(skipped=True)

        days = self._log_archive_days if threshold_days is None else threshold_days
        cleared = 0
        try:
            cleared = await self._document.clear_expired_cache()
            archived = await self._document.archive_old_logs(days)
        except StoreError as exc:
            logger.error(f"Maintenance failed: {exc}")
            return MaintenanceReport(cleared_cache=cleared, error=exc)

        logger.info(f"Maintenance done: cleared_cache={cleared}, archived_logs={archived}")
        return MaintenanceReport(cleared_cache=cleared, archived_logs=archived)


def _or_default(result: T | BaseException, default: T, side: str) -> T:
    if isinstance(result, Exception):
        logger.warning(f"Stats read for {side} store failed, reporting zeros: {result}")
        return default
    if isinstance(result, BaseException):
        raise result
    return result
