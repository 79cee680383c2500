"""Tests for cross-store coordination."""

import asyncio

import pytest
from redis import exceptions as redis_exc

from factiony.models import SubscriptionPlan
from factiony.services.coordinator import (
    REASON_DOCUMENT_DISABLED,
    REASON_LIST_MISSING,
    REASON_NOT_FOLLOWING,
    REASON_RELATIONAL_DISABLED,
    REASON_USER_NOT_FOUND,
    Coordinator,
)
from factiony.stores.documents import ActivityKind, DocumentAdapter, DocumentStats
from factiony.stores.errors import ConflictError, ConnectivityError
from factiony.stores.redis import COLLECTION_LISTS, index_key
from factiony.stores.relational import RelationalAdapter, RelationalStats


async def _activity_kinds(coordinator: Coordinator, user_id: str) -> list[ActivityKind]:
    return [entry.kind for entry in await coordinator.document.get_user_activity(user_id)]


class TestHealth:
    @pytest.mark.asyncio
    async def test_both_up(self, coordinator: Coordinator):
        status = await coordinator.health_check()

        assert status.as_dict() == {"relational": True, "document": True, "overall": True}

    @pytest.mark.asyncio
    async def test_document_disabled_keeps_relational(self, coordinator: Coordinator, fake_redis):
        fake_redis.fail(redis_exc.NoPermissionError("NOPERM"))
        await coordinator.document.add_like("u1", "g1")

        status = await coordinator.health_check()

        assert status.document is False
        assert status.relational is True
        assert status.overall is True

    @pytest.mark.asyncio
    async def test_health_report_mentions_both_stores(self, coordinator: Coordinator, make_user):
        await make_user("u1")

        report = await coordinator.health_report()

        assert "Relational store: OK" in report
        assert "Document store: OK" in report
        assert "Users: 1 (0 premium)" in report


class TestToggleLike:
    @pytest.mark.asyncio
    async def test_round_trip(self, coordinator: Coordinator, clock):
        liked = await coordinator.toggle_like("u1", "g1")
        clock.advance(seconds=1)
        unliked = await coordinator.toggle_like("u1", "g1")

        assert (liked.ok, liked.value) == (True, True)
        assert (unliked.ok, unliked.value) == (True, False)
        assert await coordinator.document.get_user_likes("u1") == []
        assert await _activity_kinds(coordinator, "u1") == [ActivityKind.LIKE, ActivityKind.LIKE]

    @pytest.mark.asyncio
    async def test_concurrent_toggles_never_crash(self, coordinator: Coordinator, fake_redis):
        fake_redis.interleave = True

        results = await asyncio.gather(
            coordinator.toggle_like("u1", "g1"),
            coordinator.toggle_like("u1", "g1"),
        )

        assert all(result.ok for result in results)
        likes = await coordinator.document.get_user_likes("u1")
        assert len(likes) in (0, 1, 2)

        # the next toggle clears every duplicate a lost race left behind
        if likes:
            cleanup = await coordinator.toggle_like("u1", "g1")
            assert cleanup.value is False
            assert await coordinator.document.get_user_likes("u1") == []

    @pytest.mark.asyncio
    async def test_disabled_document_store(self, relational: RelationalAdapter):
        coordinator = Coordinator(relational, DocumentAdapter(None))

        result = await coordinator.toggle_like("u1", "g1")

        assert result.ok is False
        assert result.reason == REASON_DOCUMENT_DISABLED

    @pytest.mark.asyncio
    async def test_connectivity_failure_is_reported(self, coordinator: Coordinator, fake_redis):
        fake_redis.fail(redis_exc.ConnectionError("refused"))

        result = await coordinator.toggle_like("u1", "g1")

        assert result.ok is False
        assert result.reason == "connectivity"
        with pytest.raises(ConnectivityError):
            result.raise_for_error()


    @pytest.mark.asyncio
    async def test_read_likes_newest_first(self, coordinator: Coordinator, clock):
        await coordinator.toggle_like("u1", "g1")
        clock.advance(seconds=1)
        await coordinator.toggle_like("u1", "g2")

        result = await coordinator.get_user_likes("u1")

        assert result.ok is True
        assert [like.game_id for like in result.value] == ["g2", "g1"]

    @pytest.mark.asyncio
    async def test_reads_report_disabled_document_store(self, relational: RelationalAdapter):
        coordinator = Coordinator(relational, DocumentAdapter(None))

        likes = await coordinator.get_user_likes("u1")
        lists = await coordinator.get_user_lists("u1")

        assert likes.reason == REASON_DOCUMENT_DISABLED
        assert lists.reason == REASON_DOCUMENT_DISABLED

class TestFollow:
    @pytest.mark.asyncio
    async def test_follow_logs_activity(self, coordinator: Coordinator, make_user):
        await make_user("a")
        await make_user("b")

        result = await coordinator.follow("a", "b")

        assert result.ok is True
        assert await coordinator.relational.is_following("a", "b") is True
        assert await _activity_kinds(coordinator, "a") == [ActivityKind.FOLLOW]

    @pytest.mark.asyncio
    async def test_rejected_follow_writes_no_log(self, coordinator: Coordinator, make_user):
        await make_user("a")
        await make_user("b", is_private=True)

        result = await coordinator.follow("a", "b")

        assert result.ok is False
        assert result.reason == "private_account"
        assert isinstance(result.error, ConflictError)
        assert await coordinator.document.get_user_activity("a") == []

    @pytest.mark.asyncio
    async def test_unfollow_without_edge(self, coordinator: Coordinator, make_user):
        await make_user("a")
        await make_user("b")

        result = await coordinator.unfollow("a", "b")

        assert result.ok is False
        assert result.reason == REASON_NOT_FOLLOWING

    @pytest.mark.asyncio
    async def test_log_failure_does_not_fail_follow(self, coordinator: Coordinator, make_user, monkeypatch):
        await make_user("a")
        await make_user("b")

        async def broken_log(*args, **kwargs):
            raise RuntimeError("log sink exploded")

        monkeypatch.setattr(coordinator.document, "log_activity", broken_log)

        result = await coordinator.follow("a", "b")

        assert result.ok is True
        assert await coordinator.relational.is_following("a", "b") is True


class TestLists:
    @pytest.mark.asyncio
    async def test_unknown_user_creates_no_list(self, coordinator: Coordinator, fake_redis):
        result = await coordinator.add_game_to_user_list("user-404", "game-1", "Favorites")

        assert result.ok is False
        assert result.reason == REASON_USER_NOT_FOUND
        assert await coordinator.document.get_user_lists("user-404") == []
        assert index_key(COLLECTION_LISTS) not in fake_redis.zsets

    @pytest.mark.asyncio
    async def test_creates_list_once_and_reuses_it(self, coordinator: Coordinator, make_user):
        await make_user("u1")

        first = await coordinator.add_game_to_user_list("u1", "g1", "Favorites")
        second = await coordinator.add_game_to_user_list("u1", "g2", "Favorites")
        again = await coordinator.add_game_to_user_list("u1", "g2", "Favorites")

        assert first.ok and second.ok and again.ok
        assert first.value == second.value == again.value
        lists = await coordinator.document.get_user_lists("u1")
        assert len(lists) == 1
        assert lists[0].games == ["g1", "g2"]

    @pytest.mark.asyncio
    async def test_single_list_only_for_its_owner(self, coordinator: Coordinator, make_user):
        await make_user("u1")
        await make_user("u2")
        list_id = (await coordinator.add_game_to_user_list("u1", "g1", "Favorites")).value

        own = await coordinator.get_user_list("u1", list_id)
        other = await coordinator.get_user_list("u2", list_id)
        missing = await coordinator.get_user_list("u1", "no-such-list")

        assert own.value.games == ["g1"]
        assert other.reason == REASON_LIST_MISSING
        assert missing.reason == REASON_LIST_MISSING


class TestAccounts:
    @pytest.mark.asyncio
    async def test_register_provisions_user_and_free_plan(self, coordinator: Coordinator):
        result = await coordinator.register_user("u1", "u1@example.com", "player_one")

        assert result.ok is True
        subscription = await coordinator.relational.get_user_subscription("u1")
        assert subscription.plan is SubscriptionPlan.FREE
        assert await _activity_kinds(coordinator, "u1") == [ActivityKind.REGISTER]

    @pytest.mark.asyncio
    async def test_register_retry_is_safe(self, coordinator: Coordinator):
        await coordinator.register_user("u1", "u1@example.com")

        retry = await coordinator.register_user("u1", "u1@example.com")

        assert retry.ok is True
        assert (await coordinator.relational.get_stats()).total_subscriptions == 1

    @pytest.mark.asyncio
    async def test_register_email_taken_by_other_user(self, coordinator: Coordinator):
        await coordinator.register_user("u1", "shared@example.com")

        result = await coordinator.register_user("u2", "shared@example.com")

        assert result.ok is False
        assert result.reason == "duplicate"

    @pytest.mark.asyncio
    async def test_load_session_user_logs_login(self, coordinator: Coordinator, make_user):
        await make_user("u1")

        result = await coordinator.load_session_user("u1")
        missing = await coordinator.load_session_user("ghost")

        assert result.value.id == "u1"
        assert await _activity_kinds(coordinator, "u1") == [ActivityKind.LOGIN]
        assert missing.reason == REASON_USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_load_user_profile(self, coordinator: Coordinator, make_user):
        await make_user("a")
        await make_user("b")
        await make_user("c")
        await coordinator.follow("b", "a")
        await coordinator.follow("a", "c")

        profile = (await coordinator.load_user_profile("a")).value

        assert profile.user.id == "a"
        assert [user.id for user in profile.followers] == ["b"]
        assert [user.id for user in profile.following] == ["c"]

    @pytest.mark.asyncio
    async def test_update_profile_and_upgrade(self, coordinator: Coordinator, make_user):
        await make_user("u1")

        updated = await coordinator.update_profile("u1", bio="Speedrunner")
        upgraded = await coordinator.upgrade_to_premium("u1", "pay_123")
        missing = await coordinator.upgrade_to_premium("ghost", "pay_456")

        assert updated.value.bio == "Speedrunner"
        assert upgraded.value.plan is SubscriptionPlan.PREMIUM
        assert (await coordinator.relational.get_user_by_id("u1")).is_premium is True
        assert missing.reason == REASON_USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_lookup_search_and_username_check(self, coordinator: Coordinator, make_user):
        await make_user("zelda_fan")
        await make_user("zelda_private", is_private=True)

        by_email = await coordinator.find_user_by_email("zelda_fan@example.com")
        unknown = await coordinator.find_user_by_email("nobody@example.com")
        found = await coordinator.search_users("zelda")
        taken = await coordinator.check_username_availability("zelda_fan")
        free = await coordinator.check_username_availability("link")

        assert by_email.value.id == "zelda_fan"
        assert unknown.reason == REASON_USER_NOT_FOUND
        assert [user.id for user in found.value] == ["zelda_fan"]
        assert (taken.value, free.value) == (False, True)

    @pytest.mark.asyncio
    async def test_account_reads_report_disabled_relational_store(self, documents: DocumentAdapter):
        coordinator = Coordinator(RelationalAdapter(None), documents)

        results = [
            await coordinator.find_user_by_email("a@example.com"),
            await coordinator.search_users("a"),
            await coordinator.check_username_availability("a"),
        ]

        assert [result.reason for result in results] == [REASON_RELATIONAL_DISABLED] * 3
        assert missing.reason == REASON_USER_NOT_FOUND


class TestComments:
    @pytest.mark.asyncio
    async def test_rated_comment_logs_comment_and_rating(self, coordinator: Coordinator, make_user, clock):
        await make_user("u1")

        result = await coordinator.post_comment("u1", "g1", "Masterpiece", rating=5.0)

        assert result.ok is True
        comments = await coordinator.document.get_game_comments("g1")
        assert [comment.id for comment in comments] == [result.value]
        assert sorted(kind.value for kind in await _activity_kinds(coordinator, "u1")) == ["comment", "rate_game"]

    @pytest.mark.asyncio
    async def test_unknown_user_cannot_comment(self, coordinator: Coordinator):
        result = await coordinator.post_comment("ghost", "g1", "hello")

        assert result.reason == REASON_USER_NOT_FOUND
        assert await coordinator.document.get_game_comments("g1") == []

    @pytest.mark.asyncio
    async def test_comment_and_activity_reads(self, coordinator: Coordinator, make_user, clock):
        await make_user("u1")
        first = await coordinator.post_comment("u1", "g1", "Great")
        clock.advance(seconds=1)
        second = await coordinator.post_comment("u1", "g2", "Meh")

        by_game = await coordinator.get_game_comments("g1")
        by_user = await coordinator.get_user_comments("u1")
        activity = await coordinator.get_user_activity("u1")

        assert [comment.id for comment in by_game.value] == [first.value]
        assert [comment.id for comment in by_user.value] == [second.value, first.value]
        assert [entry.kind for entry in activity.value] == [ActivityKind.COMMENT, ActivityKind.COMMENT]

    @pytest.mark.asyncio
    async def test_comment_read_failure_is_reported(self, coordinator: Coordinator, fake_redis):
        fake_redis.fail(redis_exc.ConnectionError("refused"))

        result = await coordinator.get_game_comments("g1")

        assert result.ok is False
        assert result.reason == "connectivity"


class TestGameData:
    @pytest.mark.asyncio
    async def test_read_through_calls_fetcher_once(self, coordinator: Coordinator):
        calls: list[str] = []

        async def fetch(game_id: str) -> dict:
            calls.append(game_id)
            return {"id": game_id, "name": "Outer Wilds"}

        first = await coordinator.get_game_data("g1", "rawg", fetch)
        second = await coordinator.get_game_data("g1", "rawg", fetch)

        assert first == second == {"id": "g1", "name": "Outer Wilds"}
        assert calls == ["g1"]

    @pytest.mark.asyncio
    async def test_expired_entry_refetches(self, coordinator: Coordinator, clock):
        calls: list[str] = []

        async def fetch(game_id: str) -> dict:
            calls.append(game_id)
            return {"version": len(calls)}

        await coordinator.get_game_data("g1", "igdb", fetch, ttl_hours=1)
        clock.advance(hours=2)

        assert await coordinator.get_game_data("g1", "igdb", fetch) == {"version": 2}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_store_failure_falls_back_to_fetcher(self, coordinator: Coordinator, fake_redis):
        fake_redis.fail(redis_exc.ConnectionError("refused"))

        async def fetch(game_id: str) -> dict:
            return {"id": game_id}

        assert await coordinator.get_game_data("g1", "rawg", fetch) == {"id": "g1"}


class TestErasure:
    @pytest.mark.asyncio
    async def test_every_read_is_empty_afterwards(self, coordinator: Coordinator, make_user):
        await make_user("u1")
        await make_user("u2")
        await coordinator.relational.create_subscription("u1")
        await coordinator.follow("u1", "u2")
        await coordinator.follow("u2", "u1")
        await coordinator.toggle_like("u1", "g1")
        await coordinator.post_comment("u1", "g1", "hi")
        await coordinator.add_game_to_user_list("u1", "g1", "Favorites")

        result = await coordinator.delete_all_user_data("u1")

        assert result.ok is True
        assert await coordinator.relational.get_user_by_id("u1") is None
        assert await coordinator.relational.get_user_subscription("u1") is None
        assert await coordinator.relational.get_user_followers("u2") == []
        assert await coordinator.relational.get_user_following("u2") == []
        assert await coordinator.document.get_user_likes("u1") == []
        assert await coordinator.document.get_user_comments("u1") == []
        assert await coordinator.document.get_user_lists("u1") == []
        assert await coordinator.document.get_user_activity("u1") == []

    @pytest.mark.asyncio
    async def test_document_failure_still_erases_relational(self, coordinator: Coordinator, make_user, fake_redis):
        await make_user("u1")
        await coordinator.toggle_like("u1", "g1")
        fake_redis.fail(redis_exc.ConnectionError("refused"))

        result = await coordinator.delete_all_user_data("u1")

        assert result.ok is False
        assert result.failed_sides == ["document"]
        assert isinstance(result.document.error, ConnectivityError)
        assert result.relational.ok is True
        assert await coordinator.relational.get_user_by_id("u1") is None

        fake_redis.heal()
        retry = await coordinator.delete_all_user_data("u1")
        assert retry.ok is True
        assert await coordinator.document.get_user_likes("u1") == []

    @pytest.mark.asyncio
    async def test_disabled_document_store_still_erases_relational(self, relational: RelationalAdapter, make_user):
        await make_user("u1")
        await relational.create_subscription("u1")
        coordinator = Coordinator(relational, DocumentAdapter(None))

        result = await coordinator.delete_all_user_data("u1")

        assert result.ok is False
        assert result.failed_sides == ["document"]
        assert await relational.get_user_by_id("u1") is None
        assert await relational.get_user_subscription("u1") is None


class TestStats:
    @pytest.mark.asyncio
    async def test_collects_both_sides(self, coordinator: Coordinator, make_user, clock):
        await make_user("u1")
        await coordinator.toggle_like("u1", "g1")

        stats = await coordinator.get_global_stats()

        assert stats.relational.total_users == 1
        assert stats.document.total_likes == 1
        assert stats.timestamp == clock.now

    @pytest.mark.asyncio
    async def test_failing_side_reports_zeros(self, coordinator: Coordinator, make_user, fake_redis):
        await make_user("u1")
        fake_redis.fail(redis_exc.ConnectionError("refused"))

        stats = await coordinator.get_global_stats()

        assert stats.relational.total_users == 1
        assert stats.document == DocumentStats()

    @pytest.mark.asyncio
    async def test_relational_failure_reports_zeros(self, coordinator: Coordinator, monkeypatch):
        async def broken_stats():
            raise ConnectivityError("down", store="relational", operation="get_stats")

        monkeypatch.setattr(coordinator.relational, "get_stats", broken_stats)

        stats = await coordinator.get_global_stats()

        assert stats.relational == RelationalStats()


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_sweeps_cache_and_logs(self, coordinator: Coordinator, clock):
        await coordinator.document.cache_game_data("g1", "rawg", {}, ttl_hours=1)
        await coordinator.document.log_activity("u1", ActivityKind.VIEW)
        clock.advance(days=31)

        report = await coordinator.run_maintenance(threshold_days=30)

        assert (report.cleared_cache, report.archived_logs, report.skipped) == (1, 1, False)
        assert report.ok is True

    @pytest.mark.asyncio
    async def test_concurrent_runs_count_each_entry_once(self, coordinator: Coordinator, clock, fake_redis):
        for game in ("g1", "g2", "g3"):
            await coordinator.document.cache_game_data(game, "rawg", {}, ttl_hours=1)
        clock.advance(hours=2)
        fake_redis.interleave = True

        reports = await asyncio.gather(coordinator.run_maintenance(), coordinator.run_maintenance())

        assert sum(report.cleared_cache for report in reports) == 3

    @pytest.mark.asyncio
    async def test_skipped_when_document_store_disabled(self, relational: RelationalAdapter):
        coordinator = Coordinator(relational, DocumentAdapter(None))

        report = await coordinator.run_maintenance()

        assert report.skipped is True
        assert report.cleared_cache == report.archived_logs == 0
