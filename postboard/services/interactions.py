"""
Interaction Service - likes, comments and replies.

Interactions are only ever created against a published post. A reply or a
like on a comment names the comment as its parent; the parent must be an
active comment on the same post. Deleting an interaction is a soft delete:
``is_active`` flips to False and the counter it bumped is decremented.

At most one active like per (user, post, parent) is enforced by the
storage layer's unique insert, not by the decision engine.
"""

from __future__ import annotations

import logging
from typing import Any

from postboard.auth.capabilities import Action, ResourceKind
from postboard.auth.context import Actor
from postboard.auth.resources import ResourceView
from postboard.core.models import Interaction, InteractionType, Post
from postboard.services.base import DomainService
from postboard.storage.base import Collections, DuplicateKeyError, ResourceNotFound

logger = logging.getLogger(__name__)


# Partial unique index: one active like per user, post and parent
LIKE_KEY = ("user_id", "post_id", "type", "parent_id")
ACTIVE_ONLY = {"is_active": True}


class InvalidInteractionError(ValueError):
    """The interaction is malformed (bad parent, wrong type)."""
    pass


KIND_BY_TYPE = {
    InteractionType.LIKE: ResourceKind.LIKES,
    InteractionType.COMMENT: ResourceKind.COMMENTS,
}


class InteractionService(DomainService):
    """Likes, comments and replies on posts."""

    # =========================================================================
    # Comments
    # =========================================================================

    async def comment(
        self,
        actor: Actor,
        post_id: str,
        content: str,
        parent_id: str | None = None,
    ) -> Interaction:
        """Comment on a post, or reply to a comment when ``parent_id`` is set."""
        post = await self.load_post(post_id)
        comment = Interaction(
            user_id=actor.identity or "",
            post_id=post.id,
            type=InteractionType.COMMENT,
            content=content,
            parent_id=parent_id,
        )
        await self._authorize_create(actor, comment, post)
        if parent_id:
            await self._require_parent_comment(parent_id, post.id)

        await self.metadata.save(Collections.INTERACTIONS, comment.id, comment.model_dump(mode="json"))
        await self._bump(comment, 1)
        return comment

    async def update_comment(self, actor: Actor, interaction_id: str, content: str) -> Interaction:
        comment = await self._load_active(interaction_id)
        if comment.type != InteractionType.COMMENT:
            raise InvalidInteractionError("Only comments can be edited")

        view = await self.interaction_view(comment)
        self.authorize(actor, ResourceKind.COMMENTS, Action.UPDATE, view)

        await self.metadata.update(Collections.INTERACTIONS, comment.id, {"content": content})
        comment.content = content
        return comment

    # =========================================================================
    # Likes
    # =========================================================================

    async def like(
        self,
        actor: Actor,
        post_id: str,
        parent_id: str | None = None,
    ) -> tuple[Interaction, bool]:
        """
        Like a post (or a comment on it).

        Idempotent: returns ``(like, created)``; liking twice hands back the
        existing like with ``created=False``.
        """
        post = await self.load_post(post_id)
        like = Interaction(
            user_id=actor.identity or "",
            post_id=post.id,
            type=InteractionType.LIKE,
            parent_id=parent_id,
        )
        await self._authorize_create(actor, like, post)
        if parent_id:
            await self._require_parent_comment(parent_id, post.id)

        try:
            await self.metadata.insert_unique(
                Collections.INTERACTIONS,
                like.id,
                like.model_dump(mode="json"),
                unique_on=LIKE_KEY,
                where=ACTIVE_ONLY,
            )
        except DuplicateKeyError:
            existing = await self._active_like(like.user_id, post.id, parent_id)
            if existing is None:
                # The competing like was removed in between; nothing to return
                raise
            return existing, False

        await self._bump(like, 1)
        return like, True

    async def unlike(
        self,
        actor: Actor,
        post_id: str,
        parent_id: str | None = None,
    ) -> Interaction:
        existing = await self._active_like(actor.identity or "", post_id, parent_id)
        if existing is None:
            raise ResourceNotFound(Collections.INTERACTIONS, f"like:{post_id}")
        return await self.delete_interaction(actor, existing.id)

    # =========================================================================
    # Shared
    # =========================================================================

    async def get_interaction(self, actor: Actor, interaction_id: str) -> Interaction:
        interaction = await self._load_active(interaction_id)
        view = await self.interaction_view(interaction)
        self.authorize(actor, view.kind, Action.READ, view)
        return interaction

    async def delete_interaction(self, actor: Actor, interaction_id: str) -> Interaction:
        """Soft-delete a like or comment and undo its counter."""
        interaction = await self._load_active(interaction_id)
        view = await self.interaction_view(interaction)
        self.authorize(actor, view.kind, Action.DELETE, view)

        await self.metadata.update(Collections.INTERACTIONS, interaction.id, {"is_active": False})
        interaction.is_active = False
        await self._bump(interaction, -1)
        logger.info(
            "%s %s on %s removed by %s",
            interaction.type.value, interaction.id, interaction.post_id, actor.identity,
        )
        return interaction

    async def list_for_post(
        self,
        actor: Actor,
        post_id: str,
        interaction_type: InteractionType | None = None,
        parent_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """Active interactions on one post; top-level only unless ``parent_id`` is given."""
        post = await self.load_post(post_id)
        kind = KIND_BY_TYPE[interaction_type] if interaction_type else ResourceKind.INTERACTIONS
        probe = ResourceView(kind=kind, id=None, owner_id=None, post=await self.post_view(post))
        self.authorize(actor, kind, Action.READ, probe)

        filters: dict[str, Any] = {"post_id": post.id, "is_active": True, "parent_id": parent_id}
        if interaction_type:
            filters["type"] = InteractionType(interaction_type).value
        return await self._page(filters, page, limit, key="interactions")

    async def counts(self, actor: Actor, post_id: str) -> dict[str, int]:
        post = await self.load_post(post_id)
        probe = ResourceView(
            kind=ResourceKind.INTERACTIONS, id=None, owner_id=None, post=await self.post_view(post)
        )
        self.authorize(actor, ResourceKind.INTERACTIONS, Action.READ, probe)

        result = {}
        for itype in InteractionType:
            result[f"{itype.value}s"] = await self.metadata.count(
                Collections.INTERACTIONS,
                {"post_id": post.id, "type": itype.value, "is_active": True},
            )
        return result

    async def history(
        self,
        actor: Actor,
        user_id: str | None = None,
        interaction_type: InteractionType | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """
        A user's active interactions, restricted to posts the actor can see.

        Defaults to the actor's own history.
        """
        kind = KIND_BY_TYPE[interaction_type] if interaction_type else ResourceKind.INTERACTIONS
        applied = self.authorize(actor, kind, Action.READ).applied_filter

        filters: dict[str, Any] = {"user_id": user_id or actor.identity, "is_active": True}
        if interaction_type:
            filters["type"] = InteractionType(interaction_type).value

        query = await self.scoped_query(filters, applied)
        return await self._page(query, page, limit, key="interactions")

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _authorize_create(self, actor: Actor, candidate: Interaction, post: Post) -> None:
        view = await self.interaction_view(candidate, post)
        self.authorize(actor, view.kind, Action.CREATE, view)

    async def _load_active(self, interaction_id: str) -> Interaction:
        interaction = await self.load_interaction(interaction_id)
        if not interaction.is_active:
            raise ResourceNotFound(Collections.INTERACTIONS, interaction_id)
        return interaction

    async def _require_parent_comment(self, parent_id: str, post_id: str) -> Interaction:
        data = await self.metadata.get(Collections.INTERACTIONS, parent_id)
        parent = Interaction.model_validate(data) if data else None
        if (
            parent is None
            or parent.type != InteractionType.COMMENT
            or not parent.is_active
            or parent.post_id != post_id
        ):
            raise InvalidInteractionError(
                "Parent must be an active comment on the same post"
            )
        return parent

    async def _active_like(self, user_id: str, post_id: str, parent_id: str | None) -> Interaction | None:
        docs = await self.metadata.query(
            Collections.INTERACTIONS,
            {
                "user_id": user_id,
                "post_id": post_id,
                "type": InteractionType.LIKE.value,
                "parent_id": parent_id,
                **ACTIVE_ONLY,
            },
            limit=1,
        )
        return Interaction.model_validate(docs[0]) if docs else None

    async def _bump(self, interaction: Interaction, amount: int) -> None:
        if interaction.parent_id:
            await self.metadata.increment(
                Collections.INTERACTIONS, interaction.parent_id, interaction.counter_field, amount
            )
        else:
            await self.metadata.increment(
                Collections.POSTS, interaction.post_id, interaction.counter_field, amount
            )

    async def _page(
        self,
        query: dict[str, Any] | None,
        page: int,
        limit: int,
        key: str,
    ) -> dict[str, Any]:
        page = max(page, 1)
        if query is None:
            items, total = [], 0
        else:
            total = await self.metadata.count(Collections.INTERACTIONS, query)
            docs = await self.metadata.query(
                Collections.INTERACTIONS,
                query,
                limit=limit,
                offset=(page - 1) * limit,
                sort_by="created_at",
                descending=True,
            )
            items = [Interaction.model_validate(d) for d in docs]
        return {
            key: items,
            "pagination": {"page": page, "limit": limit, "total": total},
        }
