"""
Tests for the domain services: the collaborators that load resources, ask
the engine, and then write.
"""

import asyncio

import pytest

from postboard.auth.context import Actor
from postboard.auth.engine import AuthorizationDenied
from postboard.core.models import InteractionType, PostStatus, Role
from postboard.services import AccountError, InvalidInteractionError, InvalidTransitionError
from postboard.storage.base import Collections, ResourceNotFound


PASSWORD = "password123"


# =============================================================================
# Posts
# =============================================================================


class TestPosts:
    @pytest.mark.asyncio
    async def test_create_sets_slug_and_author(self, cast, make_post):
        post = await make_post(cast.alice, title="Hello World!")
        assert post.author_id == cast.alice_user.id
        assert post.slug.startswith("hello-world-")

    @pytest.mark.asyncio
    async def test_anonymous_cannot_create(self, posts, cast):
        with pytest.raises(AuthorizationDenied):
            await posts.create_post(cast.anonymous, "Title", "Body")

    @pytest.mark.asyncio
    async def test_draft_read(self, posts, cast, make_post):
        draft = await make_post(cast.alice, PostStatus.DRAFT)
        assert (await posts.get_post(cast.alice, draft.id)).id == draft.id
        with pytest.raises(AuthorizationDenied):
            await posts.get_post(cast.bob, draft.id)

    @pytest.mark.asyncio
    async def test_missing_post(self, posts, cast):
        with pytest.raises(ResourceNotFound):
            await posts.get_post(cast.alice, "post_missing")

    @pytest.mark.asyncio
    async def test_listing_counts_only_visible(self, posts, cast, make_post):
        await make_post(cast.alice, PostStatus.PUBLISHED)
        await make_post(cast.alice, PostStatus.DRAFT)
        await make_post(cast.bob, PostStatus.DRAFT)

        anonymous = await posts.list_posts(cast.anonymous)
        alice = await posts.list_posts(cast.alice)
        admin = await posts.list_posts(cast.admin)

        assert anonymous["pagination"]["total"] == 1
        assert alice["pagination"]["total"] == 2
        assert admin["pagination"]["total"] == 3

    @pytest.mark.asyncio
    async def test_listing_filters_and_pages(self, posts, cast, make_post):
        for i in range(3):
            await make_post(cast.alice, title=f"Python {i}", tags=["python"])
        await make_post(cast.bob, tags=["rust"])

        tagged = await posts.list_posts(cast.bob, tag="python", limit=2)
        assert tagged["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert len(tagged["posts"]) == 2

        by_author = await posts.list_posts(cast.anonymous, author_id=cast.bob_user.id)
        assert [p.tags for p in by_author["posts"]] == [["rust"]]

    @pytest.mark.asyncio
    async def test_author_filter_cannot_widen_visibility(self, posts, cast, make_post):
        await make_post(cast.alice, PostStatus.DRAFT)
        result = await posts.list_posts(cast.bob, author_id=cast.alice_user.id)
        assert result["pagination"]["total"] == 0

    @pytest.mark.asyncio
    async def test_owner_view(self, posts, cast, make_post):
        await make_post(cast.alice, PostStatus.DRAFT)
        await make_post(cast.alice, PostStatus.ARCHIVED)
        await make_post(cast.bob, PostStatus.PUBLISHED)

        mine = await posts.list_posts(cast.alice, owner_view=True)
        assert mine["pagination"]["total"] == 2
        with pytest.raises(AuthorizationDenied):
            await posts.list_posts(cast.anonymous, owner_view=True)

    @pytest.mark.asyncio
    async def test_status_transitions(self, posts, cast, make_post):
        draft = await make_post(cast.alice, PostStatus.DRAFT)
        published = await posts.update_post(cast.alice, draft.id, status=PostStatus.PUBLISHED)
        assert published.status == PostStatus.PUBLISHED

        with pytest.raises(InvalidTransitionError):
            await posts.update_post(cast.alice, draft.id, status=PostStatus.DRAFT)

    @pytest.mark.asyncio
    async def test_only_owner_or_moderator_updates(self, posts, cast, make_post):
        post = await make_post(cast.alice)
        with pytest.raises(AuthorizationDenied):
            await posts.update_post(cast.bob, post.id, title="Hijacked")
        updated = await posts.update_post(cast.admin, post.id, title="Moderated")
        assert updated.title == "Moderated"

    @pytest.mark.asyncio
    async def test_admin_cannot_delete_superadmin_post(self, posts, cast, make_post):
        post = await make_post(cast.root)
        with pytest.raises(AuthorizationDenied):
            await posts.delete_post(cast.admin, post.id)
        await posts.delete_post(cast.root, post.id)

    @pytest.mark.asyncio
    async def test_delete_removes_interactions(self, storage, posts, interactions, cast, make_post):
        post = await make_post(cast.alice)
        await interactions.comment(cast.bob, post.id, "First!")
        await posts.delete_post(cast.alice, post.id)
        assert await storage.metadata.count(Collections.INTERACTIONS, {"post_id": post.id}) == 0


# =============================================================================
# Reposts
# =============================================================================


class TestReposts:
    @pytest.mark.asyncio
    async def test_repost_published(self, storage, posts, cast, make_post):
        original = await make_post(cast.alice)
        repost = await posts.create_repost(cast.bob, original.id, "Read this")

        assert repost.is_repost
        assert repost.original_post_id == original.id
        assert repost.status == PostStatus.PUBLISHED
        stored = await storage.metadata.get(Collections.POSTS, original.id)
        assert stored["reposts_count"] == 1

    @pytest.mark.asyncio
    async def test_no_repost_of_draft_even_own(self, posts, cast, make_post):
        draft = await make_post(cast.alice, PostStatus.DRAFT)
        for actor in (cast.alice, cast.bob, cast.admin):
            with pytest.raises(AuthorizationDenied):
                await posts.create_repost(actor, draft.id)

    @pytest.mark.asyncio
    async def test_repost_listing(self, posts, cast, make_post):
        original = await make_post(cast.alice)
        await posts.create_repost(cast.bob, original.id)

        result = await posts.list_posts(cast.anonymous, reposts=True)
        assert result["pagination"]["total"] == 1
        assert result["posts"][0].original_post_id == original.id


# =============================================================================
# Likes
# =============================================================================


class TestLikes:
    @pytest.mark.asyncio
    async def test_concurrent_likes_yield_one(self, storage, interactions, cast, make_post):
        post = await make_post(cast.alice)

        results = await asyncio.gather(
            interactions.like(cast.bob, post.id),
            interactions.like(cast.bob, post.id),
        )

        active = await storage.metadata.count(Collections.INTERACTIONS, {
            "user_id": cast.bob_user.id, "post_id": post.id, "type": "like", "is_active": True,
        })
        assert active == 1
        assert sorted(created for _, created in results) == [False, True]
        assert results[0][0].id == results[1][0].id
        stored = await storage.metadata.get(Collections.POSTS, post.id)
        assert stored["likes_count"] == 1

    @pytest.mark.asyncio
    async def test_unlike_and_like_again(self, storage, interactions, cast, make_post):
        post = await make_post(cast.alice)
        first, _ = await interactions.like(cast.bob, post.id)
        await interactions.unlike(cast.bob, post.id)

        second, created = await interactions.like(cast.bob, post.id)

        assert created and second.id != first.id
        stored = await storage.metadata.get(Collections.POSTS, post.id)
        assert stored["likes_count"] == 1

    @pytest.mark.asyncio
    async def test_unlike_without_like(self, interactions, cast, make_post):
        post = await make_post(cast.alice)
        with pytest.raises(ResourceNotFound):
            await interactions.unlike(cast.bob, post.id)

    @pytest.mark.asyncio
    async def test_cannot_like_own_draft(self, interactions, cast, make_post):
        draft = await make_post(cast.alice, PostStatus.DRAFT)
        with pytest.raises(AuthorizationDenied):
            await interactions.like(cast.alice, draft.id)

    @pytest.mark.asyncio
    async def test_like_a_comment(self, storage, interactions, cast, make_post):
        post = await make_post(cast.alice)
        comment = await interactions.comment(cast.bob, post.id, "Hi")
        await interactions.like(cast.alice, post.id, parent_id=comment.id)

        stored = await storage.metadata.get(Collections.INTERACTIONS, comment.id)
        assert stored["likes_count"] == 1
        assert (await storage.metadata.get(Collections.POSTS, post.id))["likes_count"] == 0

    @pytest.mark.asyncio
    async def test_admin_removes_spam_like(self, interactions, cast, make_post):
        post = await make_post(cast.alice)
        like, _ = await interactions.like(cast.bob, post.id)
        removed = await interactions.delete_interaction(cast.admin, like.id)
        assert not removed.is_active


# =============================================================================
# Comments
# =============================================================================


class TestComments:
    @pytest.mark.asyncio
    async def test_reply_to_comment(self, storage, interactions, cast, make_post):
        post = await make_post(cast.alice)
        comment = await interactions.comment(cast.bob, post.id, "Question?")
        reply = await interactions.comment(cast.alice, post.id, "Answer.", parent_id=comment.id)

        assert reply.parent_id == comment.id
        stored = await storage.metadata.get(Collections.INTERACTIONS, comment.id)
        assert stored["replies_count"] == 1
        replies = await interactions.list_for_post(
            cast.anonymous, post.id, InteractionType.COMMENT, parent_id=comment.id
        )
        assert [r.id for r in replies["interactions"]] == [reply.id]

    @pytest.mark.asyncio
    async def test_reply_parent_must_be_active_comment_on_same_post(self, interactions, cast, make_post):
        post = await make_post(cast.alice)
        other = await make_post(cast.alice)
        foreign = await interactions.comment(cast.bob, other.id, "Elsewhere")
        like, _ = await interactions.like(cast.bob, post.id)
        removed = await interactions.comment(cast.bob, post.id, "Gone soon")
        await interactions.delete_interaction(cast.bob, removed.id)

        for parent_id in (foreign.id, like.id, removed.id, "int_missing"):
            with pytest.raises(InvalidInteractionError):
                await interactions.comment(cast.alice, post.id, "Reply", parent_id=parent_id)

    @pytest.mark.asyncio
    async def test_post_author_removes_comment(self, interactions, cast, make_post):
        post = await make_post(cast.alice)
        comment = await interactions.comment(cast.bob, post.id, "Rude remark")

        with pytest.raises(AuthorizationDenied):
            await interactions.delete_interaction(cast.admin, comment.id)

        removed = await interactions.delete_interaction(cast.alice, comment.id)
        assert not removed.is_active

    @pytest.mark.asyncio
    async def test_only_commenter_edits(self, interactions, cast, make_post):
        post = await make_post(cast.alice)
        comment = await interactions.comment(cast.bob, post.id, "Tpyo")

        with pytest.raises(AuthorizationDenied):
            await interactions.update_comment(cast.alice, comment.id, "Edited by author")
        edited = await interactions.update_comment(cast.bob, comment.id, "Typo")
        assert edited.content == "Typo"

    @pytest.mark.asyncio
    async def test_comments_on_draft_hidden_from_others(self, posts, interactions, cast, make_post):
        post = await make_post(cast.alice)
        await interactions.comment(cast.bob, post.id, "Hello")
        await posts.update_post(cast.alice, post.id, status=PostStatus.ARCHIVED)

        with pytest.raises(AuthorizationDenied):
            await interactions.list_for_post(cast.bob, post.id)
        visible = await interactions.list_for_post(cast.alice, post.id)
        assert visible["pagination"]["total"] == 1

    @pytest.mark.asyncio
    async def test_counts(self, interactions, cast, make_post):
        post = await make_post(cast.alice)
        await interactions.comment(cast.bob, post.id, "One")
        await interactions.like(cast.bob, post.id)
        await interactions.like(cast.admin, post.id)

        assert await interactions.counts(cast.anonymous, post.id) == {"likes": 2, "comments": 1}

    @pytest.mark.asyncio
    async def test_history_hides_invisible_posts(self, posts, interactions, cast, make_post):
        visible = await make_post(cast.alice)
        hidden = await make_post(cast.alice)
        await interactions.comment(cast.bob, visible.id, "Stays")
        await interactions.comment(cast.bob, hidden.id, "Hidden later")
        await posts.update_post(cast.alice, hidden.id, status=PostStatus.ARCHIVED)

        seen_by_anon = await interactions.history(cast.anonymous, cast.bob_user.id)
        seen_by_alice = await interactions.history(cast.alice, cast.bob_user.id)

        assert seen_by_anon["pagination"]["total"] == 1
        assert seen_by_alice["pagination"]["total"] == 2


# =============================================================================
# Users
# =============================================================================


class TestUsers:
    @pytest.mark.asyncio
    async def test_register_rejects_duplicates(self, users, cast):
        with pytest.raises(AccountError, match="Email"):
            await users.register("alice2", "ALICE@postboard.dev", PASSWORD)
        with pytest.raises(AccountError, match="Username"):
            await users.register("alice", "other@postboard.dev", PASSWORD)

    @pytest.mark.asyncio
    async def test_authenticate(self, users, cast):
        assert await users.authenticate("alice@postboard.dev", "wrong") is None
        result = await users.authenticate("alice@postboard.dev", PASSWORD)
        assert result.actor.identity == cast.alice_user.id
        assert not result.was_reactivated

    @pytest.mark.asyncio
    async def test_login_reactivates(self, users, posts, cast, make_post):
        post = await make_post(cast.alice)
        await users.deactivate_user(cast.alice, cast.alice_user.id)

        result = await users.authenticate("alice@postboard.dev", PASSWORD)

        assert result.was_reactivated
        assert result.user.is_active
        assert (await posts.get_post(cast.anonymous, post.id)).status == PostStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_superadmin_login(self, users, monkeypatch):
        from postboard.config import get_settings

        monkeypatch.setattr(get_settings(), "superadmin_password", "root-secret")
        result = await users.authenticate(get_settings().superadmin_email, "root-secret")
        assert result.actor.is_superadmin
        assert result.user is None

    @pytest.mark.asyncio
    async def test_admin_cannot_delete_admin(self, users, cast):
        with pytest.raises(AuthorizationDenied):
            await users.delete_user(cast.admin, cast.other_admin_user.id)
        with pytest.raises(AuthorizationDenied):
            await users.deactivate_user(cast.admin, cast.other_admin_user.id)

    @pytest.mark.asyncio
    async def test_admin_deactivates_user(self, users, cast):
        report = await users.deactivate_user(cast.admin, cast.bob_user.id)
        assert report.cascade == "deactivated"
        assert not (await users.load_user(cast.bob_user.id)).is_active

    @pytest.mark.asyncio
    async def test_user_reads_only_self(self, users, cast):
        result = await users.list_users(cast.alice)
        assert [u.id for u in result["users"]] == [cast.alice_user.id]
        with pytest.raises(AuthorizationDenied):
            await users.get_user(cast.alice, cast.bob_user.id)

    @pytest.mark.asyncio
    async def test_update_never_touches_role(self, users, cast):
        updated = await users.update_user(
            cast.alice, cast.alice_user.id, profile={"bio": "Writer"}
        )
        assert updated.profile.bio == "Writer"
        assert updated.role == Role.USER

    @pytest.mark.asyncio
    async def test_promote_and_demote(self, users, cast):
        promoted = await users.promote(cast.root, cast.bob_user.id)
        assert promoted.role == Role.ADMIN

        with pytest.raises(AccountError):
            await users.promote(cast.root, cast.bob_user.id)
        with pytest.raises(AuthorizationDenied):
            await users.demote(cast.admin, cast.bob_user.id)

        demoted = await users.demote(cast.root, cast.bob_user.id)
        assert demoted.role == Role.USER

    @pytest.mark.asyncio
    async def test_superadmin_role_cannot_be_granted(self, users, cast):
        with pytest.raises(AccountError):
            await users.change_role(cast.root, cast.bob_user.id, Role.SUPERADMIN)

    @pytest.mark.asyncio
    async def test_delete_own_account_needs_confirmation(self, storage, users, cast):
        with pytest.raises(AccountError):
            await users.delete_own_account(cast.alice, PASSWORD, "yes")
        with pytest.raises(AccountError):
            await users.delete_own_account(cast.alice, "wrong", "DELETE_MY_ACCOUNT")

        await users.delete_own_account(cast.alice, PASSWORD, "DELETE_MY_ACCOUNT")
        assert await storage.metadata.get(Collections.USERS, cast.alice_user.id) is None

    @pytest.mark.asyncio
    async def test_deactivated_actor_is_unknown(self, users, posts, cast, make_post):
        draft = await make_post(cast.alice, PostStatus.DRAFT)
        await users.deactivate_user(cast.alice, cast.alice_user.id)
        stale = Actor.of_user(await users.load_user(cast.alice_user.id))

        with pytest.raises(AuthorizationDenied):
            await posts.get_post(stale, draft.id)
