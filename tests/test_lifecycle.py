"""
Tests for the post status machine and the account cascades.
"""

import pytest

from postboard.core.events import get_event_bus
from postboard.core.models import Post, PostStatus
from postboard.services.lifecycle import (
    InvalidTransitionError,
    LifecycleRaceError,
    ResourceLifecycle,
)
from postboard.storage.base import Collections, ResourceNotFound


LIFECYCLE_FIELDS = ("status", "previous_status", "archived_by_deactivation")


async def snapshot(storage, collection, fields):
    docs = await storage.metadata.query(collection, limit=1000)
    return {d["id"]: tuple(d.get(f) for f in fields) for d in docs}


@pytest.fixture
async def alices_world(cast, make_post, interactions):
    """Alice: one post per status, plus a like and a comment on Bob's post."""
    published = await make_post(cast.alice, PostStatus.PUBLISHED)
    draft = await make_post(cast.alice, PostStatus.DRAFT)
    archived = await make_post(cast.alice, PostStatus.ARCHIVED)
    bobs = await make_post(cast.bob, PostStatus.PUBLISHED)
    await interactions.like(cast.alice, bobs.id)
    await interactions.comment(cast.alice, bobs.id, "Nice one")
    return {"published": published, "draft": draft, "archived": archived, "bobs": bobs}


# =============================================================================
# Status machine
# =============================================================================


class TestResourceLifecycle:
    def make(self, status):
        return Post(title="T", author_id="alice", status=status)

    @pytest.mark.parametrize("current,target", [
        (PostStatus.DRAFT, PostStatus.PUBLISHED),
        (PostStatus.DRAFT, PostStatus.ARCHIVED),
        (PostStatus.PUBLISHED, PostStatus.ARCHIVED),
    ])
    def test_allowed_edges(self, current, target):
        post = self.make(current)
        assert ResourceLifecycle().transition(post, target)
        assert post.status == target
        assert not post.archived_by_deactivation

    @pytest.mark.parametrize("current,target", [
        (PostStatus.PUBLISHED, PostStatus.DRAFT),
        (PostStatus.ARCHIVED, PostStatus.PUBLISHED),
        (PostStatus.ARCHIVED, PostStatus.DRAFT),
    ])
    def test_rejected_edges(self, current, target):
        with pytest.raises(InvalidTransitionError):
            ResourceLifecycle().transition(self.make(current), target)

    def test_same_status_is_noop(self):
        post = self.make(PostStatus.PUBLISHED)
        assert not ResourceLifecycle().transition(post, PostStatus.PUBLISHED)

    def test_deactivation_archive_is_locked(self):
        lifecycle = ResourceLifecycle()
        post = self.make(PostStatus.PUBLISHED)
        assert lifecycle.archive_for_deactivation(post)
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(post, PostStatus.ARCHIVED)

    def test_archive_for_deactivation_skips_archived(self):
        post = self.make(PostStatus.ARCHIVED)
        assert not ResourceLifecycle().archive_for_deactivation(post)
        assert post.previous_status is None
        assert not post.archived_by_deactivation

    def test_markers_move_together(self):
        lifecycle = ResourceLifecycle()
        post = self.make(PostStatus.DRAFT)
        lifecycle.archive_for_deactivation(post)
        assert (post.previous_status, post.archived_by_deactivation) == (PostStatus.DRAFT, True)
        lifecycle.restore_after_reactivation(post)
        assert (post.status, post.previous_status, post.archived_by_deactivation) == (
            PostStatus.DRAFT, None, False,
        )


# =============================================================================
# Deactivation / reactivation
# =============================================================================


class TestDeactivation:
    @pytest.mark.asyncio
    async def test_deactivate_archives_and_hides(self, storage, coordinator, cast, alices_world):
        await coordinator.on_deactivate(cast.alice_user.id)

        published = await storage.metadata.get(Collections.POSTS, alices_world["published"].id)
        assert published["status"] == "archived"
        assert published["previous_status"] == "published"
        assert published["archived_by_deactivation"] is True

        archived = await storage.metadata.get(Collections.POSTS, alices_world["archived"].id)
        assert archived["previous_status"] is None
        assert archived["archived_by_deactivation"] is False

        mine = await storage.metadata.query(Collections.INTERACTIONS, {"user_id": cast.alice_user.id})
        assert mine and all(not d["is_active"] for d in mine)

        user = await storage.metadata.get(Collections.USERS, cast.alice_user.id)
        assert user["is_active"] is False
        assert user["deactivation_count"] == 1
        assert user["last_deactivated"] is not None

    @pytest.mark.asyncio
    async def test_deactivate_twice_is_idempotent(self, storage, coordinator, cast, alices_world):
        await coordinator.on_deactivate(cast.alice_user.id)
        posts_once = await snapshot(storage, Collections.POSTS, LIFECYCLE_FIELDS)
        interactions_once = await snapshot(storage, Collections.INTERACTIONS, ("is_active",))

        report = await coordinator.on_deactivate(cast.alice_user.id)

        assert report.steps["archive_posts"] == 0
        assert report.steps["deactivate_account"] == 0
        assert await snapshot(storage, Collections.POSTS, LIFECYCLE_FIELDS) == posts_once
        assert await snapshot(storage, Collections.INTERACTIONS, ("is_active",)) == interactions_once
        user = await storage.metadata.get(Collections.USERS, cast.alice_user.id)
        assert user["deactivation_count"] == 1

    @pytest.mark.asyncio
    async def test_round_trip_restores_everything(self, storage, coordinator, cast, alices_world):
        before = await snapshot(storage, Collections.POSTS, LIFECYCLE_FIELDS)

        await coordinator.on_deactivate(cast.alice_user.id)
        await coordinator.on_reactivate(cast.alice_user.id)

        assert await snapshot(storage, Collections.POSTS, LIFECYCLE_FIELDS) == before
        mine = await storage.metadata.query(Collections.INTERACTIONS, {"user_id": cast.alice_user.id})
        assert all(d["is_active"] for d in mine)
        user = await storage.metadata.get(Collections.USERS, cast.alice_user.id)
        assert user["is_active"] is True

    @pytest.mark.asyncio
    async def test_manual_archive_not_reversed(self, storage, coordinator, cast, alices_world):
        await coordinator.on_deactivate(cast.alice_user.id)
        await coordinator.on_reactivate(cast.alice_user.id)

        archived = await storage.metadata.get(Collections.POSTS, alices_world["archived"].id)
        assert archived["status"] == "archived"

    @pytest.mark.asyncio
    async def test_removed_interactions_stay_removed(
        self, storage, coordinator, interactions, cast, make_post
    ):
        post = await make_post(cast.alice)
        await interactions.like(cast.bob, post.id)
        await interactions.unlike(cast.bob, post.id)
        await interactions.like(cast.bob, post.id)
        comment = await interactions.comment(cast.bob, post.id, "Off topic")
        await interactions.delete_interaction(cast.alice, comment.id)

        await coordinator.on_deactivate(cast.bob_user.id)
        await coordinator.on_reactivate(cast.bob_user.id)

        active_likes = await storage.metadata.count(Collections.INTERACTIONS, {
            "user_id": cast.bob_user.id, "post_id": post.id, "type": "like", "is_active": True,
        })
        assert active_likes == 1
        stored = await storage.metadata.get(Collections.POSTS, post.id)
        assert (stored["likes_count"], stored["comments_count"]) == (1, 0)
        removed = await storage.metadata.get(Collections.INTERACTIONS, comment.id)
        assert removed["is_active"] is False
        mine = await storage.metadata.query(Collections.INTERACTIONS, {"user_id": cast.bob_user.id})
        assert not any(d["deactivated_by_account"] for d in mine)

    @pytest.mark.asyncio
    async def test_events_published(self, coordinator, cast, alices_world):
        await coordinator.on_deactivate(cast.alice_user.id, actor_id=cast.alice_user.id)
        await coordinator.on_reactivate(cast.alice_user.id)

        history = get_event_bus().get_history("account.*", subject_id=cast.alice_user.id)
        assert [e.event_type for e in history] == [
            "account.registered", "account.deactivated", "account.reactivated",
        ]
        assert history[1].payload["steps"]["archive_posts"] == 2


# =============================================================================
# Partial failure
# =============================================================================


class TestPartialFailure:
    @pytest.mark.asyncio
    async def test_transient_failure_is_replayed(
        self, storage, coordinator, cast, alices_world, monkeypatch
    ):
        original = storage.metadata.update_many
        calls = []

        async def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise RuntimeError("connection reset")
            return await original(*args, **kwargs)

        monkeypatch.setattr(storage.metadata, "update_many", flaky)

        report = await coordinator.on_deactivate(cast.alice_user.id)

        assert len(calls) == 2
        # The first attempt already archived the posts
        assert report.steps["archive_posts"] == 0
        assert report.steps["deactivate_interactions"] == 2
        user = await storage.metadata.get(Collections.USERS, cast.alice_user.id)
        assert user["is_active"] is False
        assert len(get_event_bus().get_history("account.deactivated")) == 1

    @pytest.mark.asyncio
    async def test_failure_is_surfaced_and_replay_completes(
        self, storage, coordinator, cast, alices_world, monkeypatch
    ):
        original = storage.metadata.update_many
        calls = []

        async def broken(*args, **kwargs):
            calls.append(args)
            raise RuntimeError("store went away")

        monkeypatch.setattr(storage.metadata, "update_many", broken)

        with pytest.raises(LifecycleRaceError) as exc_info:
            await coordinator.on_deactivate(cast.alice_user.id)

        error = exc_info.value
        assert error.step == "deactivate_interactions"
        assert error.completed_steps == ["archive_posts"]
        assert isinstance(error.__cause__, RuntimeError)
        assert len(calls) == coordinator.retry_attempts

        # Degraded state: posts archived, account still active
        user = await storage.metadata.get(Collections.USERS, cast.alice_user.id)
        assert user["is_active"] is True
        published = await storage.metadata.get(Collections.POSTS, alices_world["published"].id)
        assert published["archived_by_deactivation"] is True

        monkeypatch.setattr(storage.metadata, "update_many", original)
        await coordinator.on_deactivate(cast.alice_user.id)

        # The replay did not overwrite the remembered status
        published = await storage.metadata.get(Collections.POSTS, alices_world["published"].id)
        assert published["previous_status"] == "published"
        user = await storage.metadata.get(Collections.USERS, cast.alice_user.id)
        assert user["is_active"] is False
        assert len(get_event_bus().get_history("account.deactivated")) == 1


# =============================================================================
# Account deletion
# =============================================================================


class TestDeleteAccount:
    @pytest.mark.asyncio
    async def test_cascade(self, storage, coordinator, cast, make_post, posts, interactions):
        alices = await make_post(cast.alice, PostStatus.PUBLISHED)
        bobs = await make_post(cast.bob, PostStatus.PUBLISHED)
        repost = await posts.create_repost(cast.bob, alices.id, "Worth reading")
        await interactions.comment(cast.admin, repost.id, "Agreed")
        await interactions.like(cast.bob, alices.id)
        await interactions.like(cast.alice, bobs.id)

        report = await coordinator.delete_account(cast.alice_user.id)

        assert report.steps["delete_account"] == 1
        assert await storage.metadata.get(Collections.USERS, cast.alice_user.id) is None
        assert await storage.metadata.get(Collections.POSTS, alices.id) is None
        assert await storage.metadata.get(Collections.POSTS, repost.id) is None
        assert await storage.metadata.get(Collections.POSTS, bobs.id) is not None
        assert await storage.metadata.count(Collections.INTERACTIONS) == 0

    @pytest.mark.asyncio
    async def test_missing_user(self, coordinator):
        with pytest.raises(ResourceNotFound):
            await coordinator.delete_account("user_missing")
