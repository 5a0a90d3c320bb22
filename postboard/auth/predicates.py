"""
Predicates behind the ``conditional`` and ``moderate`` modes.

The permission matrix only says *which* rule applies; the rules themselves
are registered here per (kind, action), keeping data and behaviour apart.

Conditional rules look at publication status and ownership. They also
register a filter compiler, because a collection read cannot be checked
row by row after the fetch without leaking hidden rows through counts.

Moderation rules encode the role hierarchy: an admin's reach is bounded
per kind and never extends to peers or superiors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from postboard.auth.capabilities import Action, ConfigurationError, ResourceKind
from postboard.auth.ownership import OwnershipResolver
from postboard.core.models import PostStatus, Role
from postboard.storage.base import QueryFilter

if TYPE_CHECKING:
    from postboard.auth.context import Actor
    from postboard.auth.resources import ResourceView


Predicate = Callable[["ResourceView", "Actor"], bool]
FilterCompiler = Callable[["Actor"], QueryFilter]
RuleKey = tuple[ResourceKind, Action]


class PredicateSet:
    """
    Registry of predicates keyed by (kind, action).

    Usage:
        rules = PredicateSet("conditional")

        @rules.register(ResourceKind.POSTS, Action.READ)
        def _read_post(resource, actor):
            ...
    """

    def __init__(self, name: str):
        self.name = name
        self._predicates: dict[RuleKey, Predicate] = {}
        self._filters: dict[RuleKey, FilterCompiler] = {}

    def register(self, *kinds: ResourceKind, action: Action) -> Callable[[Predicate], Predicate]:
        """Decorator registering one predicate for several kinds."""
        def decorator(func: Predicate) -> Predicate:
            for kind in kinds:
                if (kind, action) in self._predicates:
                    raise ConfigurationError(
                        f"{self.name} predicate for {kind.value}.{action.value} "
                        "is already registered"
                    )
                self._predicates[(kind, action)] = func
            return func
        return decorator

    def register_filter(
        self, *kinds: ResourceKind, action: Action
    ) -> Callable[[FilterCompiler], FilterCompiler]:
        """Decorator registering a collection-read filter compiler."""
        def decorator(func: FilterCompiler) -> FilterCompiler:
            for kind in kinds:
                self._filters[(kind, action)] = func
            return func
        return decorator

    def has(self, kind: ResourceKind, action: Action) -> bool:
        return (kind, action) in self._predicates

    def has_filter(self, kind: ResourceKind, action: Action) -> bool:
        return (kind, action) in self._filters

    def evaluate(
        self,
        kind: ResourceKind,
        action: Action,
        resource: ResourceView,
        actor: Actor,
    ) -> bool:
        """Run the registered predicate; a missing one is a config error."""
        predicate = self._predicates.get((kind, action))
        if predicate is None:
            raise ConfigurationError(
                f"No {self.name} predicate for {kind.value}.{action.value}"
            )
        return bool(predicate(resource, actor))

    def compile_filter(self, kind: ResourceKind, action: Action, actor: Actor) -> QueryFilter:
        """Compile the collection filter for the actor."""
        compiler = self._filters.get((kind, action))
        if compiler is None:
            raise ConfigurationError(
                f"No {self.name} filter for collection {kind.value}.{action.value}"
            )
        return compiler(actor)


_ownership = OwnershipResolver()

POST_KINDS = (ResourceKind.POSTS, ResourceKind.REPOSTS)
INTERACTION_KINDS = (ResourceKind.INTERACTIONS, ResourceKind.LIKES, ResourceKind.COMMENTS)


# =============================================================================
# Conditional predicates (role = user)
# =============================================================================


conditional_predicates = PredicateSet("conditional")


@conditional_predicates.register(*POST_KINDS, action=Action.READ)
def _read_post(resource: ResourceView, actor: Actor) -> bool:
    # Authors can always see their own drafts and archived posts
    if resource.status == PostStatus.PUBLISHED:
        return True
    return _ownership.is_owner(resource, actor)


@conditional_predicates.register(ResourceKind.REPOSTS, action=Action.CREATE)
def _create_repost(resource: ResourceView, actor: Actor) -> bool:
    # resource is the post being shared; only published posts can be reposted
    return resource.status == PostStatus.PUBLISHED


@conditional_predicates.register(*INTERACTION_KINDS, action=Action.CREATE)
def _create_interaction(resource: ResourceView, actor: Actor) -> bool:
    # Stricter than read: not even the author may like or comment a draft
    return resource.is_published


@conditional_predicates.register(*INTERACTION_KINDS, action=Action.READ)
def _read_interaction(resource: ResourceView, actor: Actor) -> bool:
    # Visibility follows the post, and ownership of the post, not of the interaction
    if resource.is_published:
        return True
    return _ownership.owns_post_context(resource, actor)


@conditional_predicates.register_filter(*POST_KINDS, action=Action.READ)
def _posts_visible_to(actor: Actor) -> QueryFilter:
    return QueryFilter(any_of=(
        {"status": PostStatus.PUBLISHED.value},
        {_ownership.owner_field(ResourceKind.POSTS): actor.identity},
    ))


@conditional_predicates.register_filter(*INTERACTION_KINDS, action=Action.READ)
def _interactions_visible_to(actor: Actor) -> QueryFilter:
    return QueryFilter(
        any_of=(
            {"status": PostStatus.PUBLISHED.value},
            {_ownership.owner_field(ResourceKind.POSTS): actor.identity},
        ),
        through="post_id",
    )


# =============================================================================
# Moderation predicates (role = admin; comments.Delete also for users)
# =============================================================================


moderation_predicates = PredicateSet("moderation")


def _owner_is_plain_user_or_self(resource: ResourceView, actor: Actor) -> bool:
    if _ownership.is_owner(resource, actor):
        return True
    return resource.owner_role == Role.USER


@moderation_predicates.register(ResourceKind.POSTS, action=Action.UPDATE)
def _moderate_post_update(resource: ResourceView, actor: Actor) -> bool:
    return True


@moderation_predicates.register(*POST_KINDS, action=Action.DELETE)
def _moderate_post_delete(resource: ResourceView, actor: Actor) -> bool:
    return _owner_is_plain_user_or_self(resource, actor)


@moderation_predicates.register(
    ResourceKind.USERS, action=Action.UPDATE,
)
@moderation_predicates.register(
    ResourceKind.USERS, action=Action.DELETE,
)
@moderation_predicates.register(
    ResourceKind.USERS, action=Action.DEACTIVATE,
)
def _moderate_account(resource: ResourceView, actor: Actor) -> bool:
    # An admin can manage plain users and itself, never another admin
    return _owner_is_plain_user_or_self(resource, actor)


@moderation_predicates.register(ResourceKind.COMMENTS, action=Action.DELETE)
def _moderate_comment_delete(resource: ResourceView, actor: Actor) -> bool:
    # Same reach for users and admins: the commenter or the post's author
    return _ownership.is_owner(resource, actor) or _ownership.owns_post_context(resource, actor)


@moderation_predicates.register(ResourceKind.LIKES, action=Action.DELETE)
def _moderate_like_delete(resource: ResourceView, actor: Actor) -> bool:
    # Spam control
    return True
