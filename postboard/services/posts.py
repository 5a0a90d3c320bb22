"""
Post Service - posts and reposts.

Every call takes the acting Actor explicitly, loads what it needs, asks the
decision engine, and only then writes. Collection reads hand the engine's
filter to storage before fetching, so pagination totals never count posts
the actor cannot see.
"""

from __future__ import annotations

import logging
from typing import Any

from postboard.auth.capabilities import Action, ResourceKind
from postboard.auth.context import Actor
from postboard.auth.resources import ResourceView
from postboard.core.events import post_status_changed
from postboard.core.models import Post, PostStatus
from postboard.services.base import DomainService
from postboard.services.lifecycle import ResourceLifecycle
from postboard.storage.base import Collections

logger = logging.getLogger(__name__)


# Fields an update may touch; everything else is managed by the service
EDITABLE_FIELDS = ("title", "content", "tags", "excerpt", "featured_image", "repost_comment")


class PostService(DomainService):
    """Create, read, update and delete posts and reposts."""

    def __init__(self, *args, lifecycle: ResourceLifecycle | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.lifecycle = lifecycle or ResourceLifecycle()

    # =========================================================================
    # Posts
    # =========================================================================

    async def create_post(
        self,
        actor: Actor,
        title: str,
        content: str,
        status: PostStatus = PostStatus.DRAFT,
        tags: list[str] | None = None,
        excerpt: str | None = None,
        featured_image: str | None = None,
    ) -> Post:
        post = Post(
            title=title,
            content=content,
            author_id=actor.identity or "",
            status=status,
            tags=tags or [],
            excerpt=excerpt,
            featured_image=featured_image,
        )
        # The candidate is owned by the actor; "own" rejects anything else
        self.authorize(actor, ResourceKind.POSTS, Action.CREATE, ResourceView.of_post(post))

        await self.metadata.save(Collections.POSTS, post.id, post.model_dump(mode="json"))
        logger.info("Post %s created by %s (%s)", post.id, post.author_id, post.status.value)
        return post

    async def get_post(self, actor: Actor, post_id: str) -> Post:
        post = await self.load_post(post_id)
        view = await self.post_view(post)
        self.authorize(actor, view.kind, Action.READ, view)
        return post

    async def list_posts(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        author_id: str | None = None,
        status: PostStatus | None = None,
        tag: str | None = None,
        reposts: bool | None = None,
        owner_view: bool = False,
    ) -> dict[str, Any]:
        """
        List posts visible to the actor, newest first.

        ``owner_view`` lists the actor's own posts in every status (the
        ``/me/posts`` view) and is decided under ``own`` semantics.
        """
        kind = ResourceKind.REPOSTS if reposts else ResourceKind.POSTS
        if owner_view:
            applied = self.authorize_own(actor, kind).applied_filter
        else:
            applied = self.authorize(actor, kind, Action.READ).applied_filter

        filters: dict[str, Any] = {}
        if author_id:
            filters["author_id"] = author_id
        if status:
            filters["status"] = PostStatus(status).value
        if tag:
            filters["tags"] = {"$contains": tag}
        if reposts is not None:
            filters["is_repost"] = reposts

        query = await self.scoped_query(filters, applied)
        return await self._page(query, page, limit)

    async def update_post(self, actor: Actor, post_id: str, **updates: Any) -> Post:
        post = await self.load_post(post_id)
        view = await self.post_view(post)
        self.authorize(actor, view.kind, Action.UPDATE, view)

        target = updates.pop("status", None)
        changes = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS and v is not None}
        old_status = post.status

        if target is not None and self.lifecycle.transition(post, PostStatus(target)):
            changes["status"] = post.status
        post.update(**changes)

        await self.metadata.save(Collections.POSTS, post.id, post.model_dump(mode="json"))
        if post.status != old_status:
            await self.event_bus.publish(
                post_status_changed(post.id, old_status.value, post.status.value, actor.identity)
            )
        return post

    async def delete_post(self, actor: Actor, post_id: str) -> None:
        post = await self.load_post(post_id)
        view = await self.post_view(post)
        self.authorize(actor, view.kind, Action.DELETE, view)

        await self.metadata.delete(Collections.POSTS, post.id)
        removed = await self.metadata.delete_many(Collections.INTERACTIONS, {"post_id": post.id})
        if post.is_repost and post.original_post_id:
            await self.metadata.increment(Collections.POSTS, post.original_post_id, "reposts_count", -1)
        logger.info("Post %s deleted by %s (%d interactions removed)", post.id, actor.identity, removed)

    # =========================================================================
    # Reposts
    # =========================================================================

    async def create_repost(self, actor: Actor, original_post_id: str, comment: str | None = None) -> Post:
        original = await self.load_post(original_post_id)
        # Decided against the post being shared: it must be published
        self.authorize(actor, ResourceKind.REPOSTS, Action.CREATE, await self.post_view(original))

        repost = Post(
            title=f"Repost: {original.title}",
            content=comment or "",
            author_id=actor.identity or "",
            status=PostStatus.PUBLISHED,
            is_repost=True,
            original_post_id=original.id,
            repost_comment=comment,
        )
        await self.metadata.save(Collections.POSTS, repost.id, repost.model_dump(mode="json"))
        await self.metadata.increment(Collections.POSTS, original.id, "reposts_count", 1)
        return repost

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _page(self, query: dict[str, Any] | None, page: int, limit: int) -> dict[str, Any]:
        page = max(page, 1)
        if query is None:
            posts, total = [], 0
        else:
            total = await self.metadata.count(Collections.POSTS, query)
            docs = await self.metadata.query(
                Collections.POSTS,
                query,
                limit=limit,
                offset=(page - 1) * limit,
                sort_by="created_at",
                descending=True,
            )
            posts = [Post.model_validate(d) for d in docs]

        return {
            "posts": posts,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": -(-total // limit) if limit else 0,
            },
        }
