"""Relational adapter: typed operations on the authoritative store.

Contract:
- "Not found" is never an exception: reads return None / [] and unfollow
  reports whether an edge existed.
- Connectivity, authorization and constraint failures raise the typed
  errors from `factiony.stores.errors`.
- An adapter built without a configured database is disabled: every call
  short-circuits to an empty result and the health probe reports False.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from factiony.models import (
    PROFILE_FIELDS,
    Follow,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    User,
)
from factiony.models.user import utcnow
from factiony.settings import Settings
from factiony.stores.errors import (
    TRANSPORT_ERRORS,
    ConflictError,
    StoreError,
    classify_sqlalchemy_error,
)
from factiony.stores.postgres import PostgresStore

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class RelationalStats:
    total_users: int = 0
    premium_users: int = 0
    total_follows: int = 0
    total_subscriptions: int = 0


class RelationalAdapter:
    """Users, subscriptions and follow edges."""

    def __init__(self, store: PostgresStore | None) -> None:
        self._store = store
        if store is None:
            logger.warning("Relational store not configured (DATABASE_URL missing) - adapter disabled")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelationalAdapter":
        if not settings.relational_configured:
            return cls(None)
        return cls(PostgresStore.from_settings(settings))

    @property
    def enabled(self) -> bool:
        return self._store is not None

    async def aclose(self) -> None:
        if self._store is not None:
            await self._store.dispose()

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        """Session scoped to one operation; native errors leave as StoreError."""
        assert self._store is not None
        try:
            async with self._store.session() as session:
                yield session
        except StoreError:
            raise
        except (SQLAlchemyError, *TRANSPORT_ERRORS) as exc:
            raise classify_sqlalchemy_error(exc, operation=operation) from exc

    # ============================================================
    # Health
    # ============================================================

    async def health_check(self) -> bool:
        """Minimal read against the users table. Never raises."""
        if self._store is None:
            return False
        try:
            async with self._session("health_check") as session:
                await session.execute(select(User.id).limit(1))
        except StoreError as exc:
            logger.error(f"Relational health check failed: {exc}")
            return False
        return True

    # ============================================================
    # Users
    # ============================================================

    async def create_user(
        self,
        email: str,
        *,
        user_id: str | None = None,
        username: str | None = None,
        **profile: Any,
    ) -> User | None:
        """Insert a user row (registration provisioning).

        Raises:
            ConflictError: email or username already taken.
        """
        if self._store is None:
            return None
        unknown = set(profile) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")

        user = User(email=email, username=username, **profile)
        if user_id:
            user.id = user_id
        try:
            async with self._session("create_user") as session:
                session.add(user)
        except ConflictError as exc:
            raise ConflictError(
                f"User {email!r} already exists",
                reason="duplicate",
                store="relational",
                operation="create_user",
            ) from exc
        logger.info(f"User created: {user.id}")
        return user

    async def get_user_by_id(self, user_id: str) -> User | None:
        if self._store is None:
            return None
        async with self._session("get_user_by_id") as session:
            return await session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        if self._store is None:
            return None
        async with self._session("get_user_by_email") as session:
            result = await session.execute(select(User).where(User.email == email))
            return result.scalar_one_or_none()

    async def check_username_availability(self, username: str) -> bool:
        if self._store is None:
            return False
        async with self._session("check_username_availability") as session:
            result = await session.execute(select(User.id).where(User.username == username))
            return result.first() is None

    async def update_user(self, user_id: str, **updates: Any) -> User | None:
        """Apply profile edits. Only PROFILE_FIELDS (plus is_premium) may change."""
        if self._store is None:
            return None
        unknown = set(updates) - PROFILE_FIELDS - {"is_premium"}
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")

        async with self._session("update_user") as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            for field, value in updates.items():
                setattr(user, field, value)
        logger.info(f"User updated: {user_id} ({', '.join(sorted(updates))})")
        return user

    async def search_users(self, query: str, limit: int = 20) -> list[User]:
        """Public accounts whose username or email contains `query`."""
        if self._store is None:
            return []
        pattern = f"%{query}%"
        async with self._session("search_users") as session:
            result = await session.execute(
                select(User)
                .where(or_(User.username.ilike(pattern), User.email.ilike(pattern)))
                .where(User.is_private.is_(False))
                .limit(limit)
            )
            return list(result.scalars().all())

    # ============================================================
    # Subscriptions
    # ============================================================

    async def create_subscription(
        self,
        user_id: str,
        plan: SubscriptionPlan = SubscriptionPlan.FREE,
        billing_ref: str | None = None,
    ) -> Subscription | None:
        """Insert an active subscription.

        Raises:
            ConflictError: the user already has an active subscription.
        """
        if self._store is None:
            return None
        subscription = Subscription(
            user_id=user_id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            billing_ref=billing_ref,
        )
        async with self._session("create_subscription") as session:
            session.add(subscription)
        logger.info(f"Subscription {plan.value} created for user {user_id}")
        return subscription

    async def get_user_subscription(self, user_id: str) -> Subscription | None:
        """Newest active subscription, if any."""
        if self._store is None:
            return None
        async with self._session("get_user_subscription") as session:
            result = await session.execute(
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .where(Subscription.status == SubscriptionStatus.ACTIVE)
                .order_by(Subscription.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def upgrade_subscription(self, user_id: str, billing_ref: str) -> Subscription | None:
        """Move a user onto an active premium subscription.

        Steps, in order and in one transaction:
        1. cancel the currently active subscription (if any)
        2. insert the new active premium subscription
        3. flip the user's premium flag

        The flag is written last, so a failure in step 2 leaves it untouched.
        Returns None when the user does not exist.
        """
        if self._store is None:
            return None
        async with self._session("upgrade_subscription") as session:
            user = await session.get(User, user_id)
            if user is None:
                return None

            now = utcnow()
            await session.execute(
                update(Subscription)
                .where(Subscription.user_id == user_id)
                .where(Subscription.status == SubscriptionStatus.ACTIVE)
                .values(status=SubscriptionStatus.CANCELLED, end_date=now, updated_at=now)
            )

            subscription = Subscription(
                user_id=user_id,
                plan=SubscriptionPlan.PREMIUM,
                status=SubscriptionStatus.ACTIVE,
                billing_ref=billing_ref,
            )
            session.add(subscription)
            await session.flush()

            user.is_premium = True

        logger.info(f"User {user_id} upgraded to premium (billing_ref={billing_ref})")
        return subscription

    # ============================================================
    # Follows
    # ============================================================

    async def follow_user(self, user_id: str, target_id: str) -> Follow | None:
        """Insert a follow edge.

        Raises:
            ConflictError: self-follow, duplicate edge, unknown target or a
                private target account.
        """
        if self._store is None:
            return None
        if user_id == target_id:
            raise ConflictError(
                "Cannot follow yourself",
                reason="self_follow",
                store="relational",
                operation="follow_user",
            )

        async with self._session("follow_user") as session:
            target = await session.get(User, target_id)
            if target is None:
                raise ConflictError(
                    f"User {target_id} does not exist",
                    reason="missing_user",
                    store="relational",
                    operation="follow_user",
                )
            if target.is_private:
                raise ConflictError(
                    "Cannot follow private account",
                    reason="private_account",
                    store="relational",
                    operation="follow_user",
                )
            if await self._edge_exists(session, user_id, target_id):
                raise ConflictError(
                    f"{user_id} already follows {target_id}",
                    reason="duplicate",
                    store="relational",
                    operation="follow_user",
                )

            follow = Follow(follower_id=user_id, followed_id=target_id)
            session.add(follow)

        logger.info(f"Follow created: {user_id} -> {target_id}")
        return follow

    async def unfollow_user(self, user_id: str, target_id: str) -> bool:
        """Delete a follow edge. Returns True if an edge was removed."""
        if self._store is None:
            return False
        async with self._session("unfollow_user") as session:
            result = await session.execute(
                delete(Follow)
                .where(Follow.follower_id == user_id)
                .where(Follow.followed_id == target_id)
            )
            removed = (result.rowcount or 0) > 0
        if removed:
            logger.info(f"Unfollow: {user_id} -/-> {target_id}")
        return removed

    async def is_following(self, user_id: str, target_id: str) -> bool:
        if self._store is None:
            return False
        async with self._session("is_following") as session:
            return await self._edge_exists(session, user_id, target_id)

    async def get_user_following(self, user_id: str) -> list[User]:
        """Users that `user_id` follows."""
        if self._store is None:
            return []
        async with self._session("get_user_following") as session:
            result = await session.execute(
                select(User)
                .join(Follow, Follow.followed_id == User.id)
                .where(Follow.follower_id == user_id)
                .order_by(Follow.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_user_followers(self, user_id: str) -> list[User]:
        """Users following `user_id`."""
        if self._store is None:
            return []
        async with self._session("get_user_followers") as session:
            result = await session.execute(
                select(User)
                .join(Follow, Follow.follower_id == User.id)
                .where(Follow.followed_id == user_id)
                .order_by(Follow.created_at.desc())
            )
            return list(result.scalars().all())

    @staticmethod
    async def _edge_exists(session: AsyncSession, user_id: str, target_id: str) -> bool:
        result = await session.execute(
            select(Follow.id)
            .where(Follow.follower_id == user_id)
            .where(Follow.followed_id == target_id)
            .limit(1)
        )
        return result.first() is not None

    # ============================================================
    # Erasure
    # ============================================================

    async def delete_user_data(self, user_id: str) -> bool:
        """Delete every relational row for a user.

        Edges (either direction) and subscriptions go first so foreign keys
        onto users.id never block the final user delete. Deleting an absent
        user is a successful no-op. Returns False only when disabled.
        """
        if self._store is None:
            return False
        async with self._session("delete_user_data") as session:
            follows = await session.execute(
                delete(Follow).where(or_(Follow.follower_id == user_id, Follow.followed_id == user_id))
            )
            subscriptions = await session.execute(delete(Subscription).where(Subscription.user_id == user_id))
            users = await session.execute(delete(User).where(User.id == user_id))

        logger.info(
            f"Relational erasure for {user_id}: "
            f"follows={follows.rowcount}, subscriptions={subscriptions.rowcount}, users={users.rowcount}"
        )
        return True

    # ============================================================
    # Stats
    # ============================================================

    async def get_stats(self) -> RelationalStats:
        if self._store is None:
            return RelationalStats()
        async with self._session("get_stats") as session:
            total_users = await session.scalar(select(func.count()).select_from(User))
            premium_users = await session.scalar(
                select(func.count()).select_from(User).where(User.is_premium.is_(True))
            )
            total_follows = await session.scalar(select(func.count()).select_from(Follow))
            total_subscriptions = await session.scalar(select(func.count()).select_from(Subscription))
        return RelationalStats(
            total_users=total_users or 0,
            premium_users=premium_users or 0,
            total_follows=total_follows or 0,
            total_subscriptions=total_subscriptions or 0,
        )
