"""
Resource views - what the decision engine sees of a stored entity.

The engine never touches storage. Services load a post, interaction or
user, populate what the rules need (owner role, the post an interaction
sits on) and hand over a frozen ResourceView.
"""

from __future__ import annotations

from dataclasses import dataclass

from postboard.auth.capabilities import ResourceKind
from postboard.core.models import (
    Interaction,
    InteractionType,
    Post,
    PostStatus,
    Role,
    User,
)


@dataclass(frozen=True)
class ResourceView:
    """
    A kind-tagged snapshot of a resource.

    Attributes:
        kind: Posts, reposts, likes/comments/interactions, or users
        id: Identifier (None for a candidate that is not stored yet)
        owner_id: Author, interacting user, or the account itself
        owner_role: Role of the owner, needed by moderation rules
        status: Publication status (posts and reposts)
        is_active: Soft-delete flag (interactions) or account state (users)
        parent_id: Parent comment of a reply or comment-like
        interaction_type: Like or comment (interactions)
        post: The post an interaction belongs to
    """

    kind: ResourceKind
    id: str | None
    owner_id: str | None
    owner_role: Role | None = None
    status: PostStatus | None = None
    is_active: bool = True
    parent_id: str | None = None
    interaction_type: InteractionType | None = None
    post: ResourceView | None = None

    @property
    def post_context(self) -> ResourceView | None:
        """The post whose status governs visibility of this resource."""
        if self.kind in (ResourceKind.POSTS, ResourceKind.REPOSTS):
            return self
        return self.post

    @property
    def is_published(self) -> bool:
        ctx = self.post_context
        return ctx is not None and ctx.status == PostStatus.PUBLISHED

    # =========================================================================
    # Builders
    # =========================================================================

    @classmethod
    def of_post(cls, post: Post, owner_role: Role | None = None) -> ResourceView:
        return cls(
            kind=ResourceKind.REPOSTS if post.is_repost else ResourceKind.POSTS,
            id=post.id,
            owner_id=post.author_id,
            owner_role=owner_role,
            status=post.status,
        )

    @classmethod
    def of_interaction(
        cls,
        interaction: Interaction,
        post: ResourceView,
        owner_role: Role | None = None,
    ) -> ResourceView:
        kind = (
            ResourceKind.LIKES
            if interaction.type == InteractionType.LIKE
            else ResourceKind.COMMENTS
        )
        return cls(
            kind=kind,
            id=interaction.id,
            owner_id=interaction.user_id,
            owner_role=owner_role,
            is_active=interaction.is_active,
            parent_id=interaction.parent_id,
            interaction_type=interaction.type,
            post=post,
        )

    @classmethod
    def of_user(cls, user: User) -> ResourceView:
        return cls(
            kind=ResourceKind.USERS,
            id=user.id,
            owner_id=user.id,
            owner_role=user.role,
            is_active=user.is_active,
        )
