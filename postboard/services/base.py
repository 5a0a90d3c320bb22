"""
Base class for domain services.

Services are the collaborators around the decision engine: they load
documents, build resource views, ask the engine, and only then mutate.
"""

from __future__ import annotations

from typing import Any

from postboard.auth.capabilities import Action, ResourceKind
from postboard.auth.context import Actor
from postboard.auth.engine import Decision, DecisionEngine, get_engine
from postboard.auth.resources import ResourceView
from postboard.core.events import EventBus, get_event_bus
from postboard.core.models import SUPERADMIN_ID, Interaction, Post, Role, User
from postboard.storage.base import (
    Collections,
    QueryFilter,
    ResourceNotFound,
    StorageProvider,
)


class DomainService:
    """
    Shared plumbing for services that act on behalf of an actor.

    Subclasses get document loaders, view builders and ``authorize``,
    which raises AuthorizationDenied instead of returning a denial.
    """

    def __init__(
        self,
        storage: StorageProvider,
        engine: DecisionEngine | None = None,
        event_bus: EventBus | None = None,
    ):
        self.storage = storage
        self.engine = engine or get_engine()
        self.event_bus = event_bus or get_event_bus()

    @property
    def metadata(self):
        return self.storage.metadata

    # =========================================================================
    # Authorization
    # =========================================================================

    def authorize(
        self,
        actor: Actor,
        kind: ResourceKind,
        action: Action,
        resource: ResourceView | None = None,
    ) -> Decision:
        return self.engine.authorize(actor, kind, action, resource).raise_if_denied()

    def authorize_own(self, actor: Actor, kind: ResourceKind, action: Action = Action.READ) -> Decision:
        return self.engine.authorize_own(actor, kind, action).raise_if_denied()

    # =========================================================================
    # Loading
    # =========================================================================

    async def load_user(self, user_id: str) -> User:
        data = await self.metadata.get(Collections.USERS, user_id)
        if data is None:
            raise ResourceNotFound(Collections.USERS, user_id)
        return User.model_validate(data)

    async def load_post(self, post_id: str) -> Post:
        data = await self.metadata.get(Collections.POSTS, post_id)
        if data is None:
            raise ResourceNotFound(Collections.POSTS, post_id)
        return Post.model_validate(data)

    async def load_interaction(self, interaction_id: str) -> Interaction:
        data = await self.metadata.get(Collections.INTERACTIONS, interaction_id)
        if data is None:
            raise ResourceNotFound(Collections.INTERACTIONS, interaction_id)
        return Interaction.model_validate(data)

    async def owner_role(self, user_id: str) -> Role | None:
        """Role of a resource owner, for moderation rules."""
        if user_id == SUPERADMIN_ID:
            return Role.SUPERADMIN
        data = await self.metadata.get(Collections.USERS, user_id)
        return Role(data["role"]) if data else None

    async def post_view(self, post: Post) -> ResourceView:
        return ResourceView.of_post(post, owner_role=await self.owner_role(post.author_id))

    async def interaction_view(
        self,
        interaction: Interaction,
        post: Post | None = None,
    ) -> ResourceView:
        post = post or await self.load_post(interaction.post_id)
        return ResourceView.of_interaction(
            interaction,
            post=await self.post_view(post),
            owner_role=await self.owner_role(interaction.user_id),
        )

    # =========================================================================
    # Querying
    # =========================================================================

    async def scoped_query(
        self,
        filters: dict[str, Any],
        applied: QueryFilter | None,
    ) -> dict[str, Any] | None:
        """
        Merge an engine filter into a storage filter before fetching.

        Returns None when the filter provably matches nothing (a ``through``
        filter with no visible parent posts).
        """
        if applied is None:
            return dict(filters)

        if applied.through:
            visible = await self.all_documents(Collections.POSTS, applied.to_query())
            ids = [doc["id"] for doc in visible]
            if not ids:
                return None
            clause = {applied.through: {"$in": ids}}
        else:
            clause = applied.to_query()

        if not filters:
            return clause
        return {"$and": [dict(filters), clause]}

    async def all_documents(
        self,
        collection: str,
        filters: dict[str, Any],
        batch_size: int = 200,
    ) -> list[dict[str, Any]]:
        """
        Fetch every matching document, a page at a time.

        The full list is read before the caller mutates anything, so updates
        that change filter membership cannot make pages skip rows.
        """
        docs: list[dict[str, Any]] = []
        offset = 0
        while True:
            batch = await self.metadata.query(
                collection, filters, limit=batch_size, offset=offset
            )
            docs.extend(batch)
            if len(batch) < batch_size:
                return docs
            offset += batch_size
