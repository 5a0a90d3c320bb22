"""
Ownership resolution.

Each kind stores its owner under a different field: posts and reposts
have an author, interactions have a user, and an account owns itself.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from postboard.auth.capabilities import ResourceKind

if TYPE_CHECKING:
    from postboard.auth.context import Actor
    from postboard.auth.resources import ResourceView


# kind -> stored field holding the owning identity
OWNER_FIELDS: dict[ResourceKind, str] = {
    ResourceKind.POSTS: "author_id",
    ResourceKind.REPOSTS: "author_id",
    ResourceKind.INTERACTIONS: "user_id",
    ResourceKind.LIKES: "user_id",
    ResourceKind.COMMENTS: "user_id",
    ResourceKind.USERS: "id",
}


class OwnershipResolver:
    """Compares a resource's owner with the acting identity."""

    def __init__(self, owner_fields: dict[ResourceKind, str] | None = None):
        self._fields = dict(owner_fields or OWNER_FIELDS)

    def owner_field(self, kind: ResourceKind) -> str:
        """Name of the stored field holding the owner of ``kind``."""
        return self._fields[kind]

    def is_owner(self, resource: ResourceView, actor: Actor) -> bool:
        """True iff the actor has an identity and it equals the owner's."""
        if actor.identity is None or resource.owner_id is None:
            return False
        return str(resource.owner_id) == str(actor.identity)

    def owns_post_context(self, resource: ResourceView, actor: Actor) -> bool:
        """True iff the actor owns the post an interaction sits on."""
        post = resource.post_context
        return post is not None and self.is_owner(post, actor)
