"""
Decision engine - turns (actor, kind, action, resource) into Allow/Deny.

The engine is pure: it performs no I/O and never blocks. Callers fetch the
resource first (or pass None for a collection read) and apply the returned
filter to their own query.

    decision = engine.authorize(actor, ResourceKind.POSTS, Action.READ, view)
    decision.raise_if_denied()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from postboard.auth.capabilities import (
    Action,
    ConfigurationError,
    Mode,
    PermissionMatrix,
    ResourceKind,
    get_permission_matrix,
)
from postboard.auth.context import Actor
from postboard.auth.ownership import OwnershipResolver
from postboard.auth.predicates import (
    INTERACTION_KINDS,
    PredicateSet,
    conditional_predicates,
    moderation_predicates,
)
from postboard.auth.resources import ResourceView
from postboard.core.models import PostStatus, Role
from postboard.storage.base import QueryFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    """Outcome of one authorization call."""

    allowed: bool
    mode: Mode
    applied_filter: QueryFilter | None = None
    reason: str | None = None

    def raise_if_denied(self) -> Decision:
        if not self.allowed:
            raise AuthorizationDenied(self)
        return self


class AuthorizationDenied(Exception):
    """
    Terminal outcome for a request. Never retried.

    The message is uniform; the reason stays on the decision for logs.
    """

    def __init__(self, decision: Decision):
        self.decision = decision
        super().__init__("Access denied")


class DecisionEngine:
    """
    Orchestrates matrix, predicates and ownership into a Decision.

    Construction cross-checks the matrix against the predicate registries so
    that a conditional/moderate entry without a rule fails at startup.
    """

    def __init__(
        self,
        matrix: PermissionMatrix | None = None,
        conditional: PredicateSet | None = None,
        moderation: PredicateSet | None = None,
        ownership: OwnershipResolver | None = None,
    ):
        self.matrix = matrix or get_permission_matrix()
        self.conditional = conditional or conditional_predicates
        self.moderation = moderation or moderation_predicates
        self.ownership = ownership or OwnershipResolver()
        self._validate()

    def _validate(self) -> None:
        for (role, kind, action), mode in self.matrix.entries(Mode.CONDITIONAL):
            if not self.conditional.has(kind, action):
                raise ConfigurationError(
                    f"{role.value}: conditional {kind.value}.{action.value} has no predicate"
                )
            if action == Action.READ and not self.conditional.has_filter(kind, action):
                raise ConfigurationError(
                    f"{role.value}: conditional {kind.value}.Read has no collection filter"
                )
        for (role, kind, action), mode in self.matrix.entries(Mode.MODERATE):
            if not self.moderation.has(kind, action):
                raise ConfigurationError(
                    f"{role.value}: moderate {kind.value}.{action.value} has no predicate"
                )

    # =========================================================================
    # Main entry point
    # =========================================================================

    def authorize(
        self,
        actor: Actor,
        kind: ResourceKind,
        action: Action,
        resource: ResourceView | None = None,
    ) -> Decision:
        """Decide a single resource (``resource`` given) or a collection read."""
        role = actor.effective_role
        mode = self.matrix.lookup(role, kind, action)

        if mode == Mode.NONE:
            return self._deny(actor, kind, action, mode, "insufficient permissions")

        if mode == Mode.ANY:
            return self._allow(actor, kind, action, mode)

        if mode == Mode.PUBLISHED_ONLY:
            if resource is None:
                return self._allow(actor, kind, action, mode, self._published_filter(kind))
            if resource.is_published:
                return self._allow(actor, kind, action, mode)
            return self._deny(actor, kind, action, mode, "resource is not published")

        # Everything below compares against an identity
        if actor.identity is None or role == Role.UNKNOWN:
            return self._deny(actor, kind, action, mode, "identity required")

        if mode == Mode.OWN:
            if resource is None:
                field = self.ownership.owner_field(kind)
                return self._allow(
                    actor, kind, action, mode, QueryFilter.where(**{field: actor.identity})
                )
            if self.ownership.is_owner(resource, actor):
                return self._allow(actor, kind, action, mode)
            return self._deny(actor, kind, action, mode, "not the owner")

        if mode == Mode.CONDITIONAL:
            if resource is None:
                flt = self.conditional.compile_filter(kind, action, actor)
                return self._allow(actor, kind, action, mode, flt)
            if self.conditional.evaluate(kind, action, resource, actor):
                return self._allow(actor, kind, action, mode)
            return self._deny(actor, kind, action, mode, "condition not met")

        if mode == Mode.MODERATE:
            if resource is None:
                return self._deny(actor, kind, action, mode, "moderation needs a concrete resource")
            if self.moderation.evaluate(kind, action, resource, actor):
                return self._allow(actor, kind, action, mode)
            return self._deny(actor, kind, action, mode, "outside moderation reach")

        raise ConfigurationError(f"Unhandled permission mode {mode!r}")

    def authorize_own(
        self,
        actor: Actor,
        kind: ResourceKind,
        action: Action = Action.READ,
    ) -> Decision:
        """
        Decide a collection read narrowed to the actor's own resources.

        The role must allow ``action`` on ``kind`` at all; the decision then
        carries an owner filter instead of the role's usual scope.
        """
        decision = self.authorize(actor, kind, action)
        if not decision.allowed:
            return decision
        if actor.identity is None or actor.effective_role == Role.UNKNOWN:
            return self._deny(actor, kind, action, Mode.OWN, "identity required")
        field = self.ownership.owner_field(kind)
        return self._allow(
            actor, kind, action, Mode.OWN, QueryFilter.where(**{field: actor.identity})
        )

    def can(
        self,
        actor: Actor,
        kind: ResourceKind,
        action: Action,
        resource: ResourceView | None = None,
    ) -> bool:
        """Shorthand returning only the allowed flag."""
        return self.authorize(actor, kind, action, resource).allowed

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _published_filter(kind: ResourceKind) -> QueryFilter:
        if kind in INTERACTION_KINDS:
            return QueryFilter(any_of=({"status": PostStatus.PUBLISHED.value},), through="post_id")
        return QueryFilter.where(status=PostStatus.PUBLISHED.value)

    @staticmethod
    def _allow(
        actor: Actor,
        kind: ResourceKind,
        action: Action,
        mode: Mode,
        applied_filter: QueryFilter | None = None,
    ) -> Decision:
        logger.debug(
            "Allowed %s %s.%s via %s", actor.effective_role.value, kind.value, action.value, mode.value
        )
        return Decision(allowed=True, mode=mode, applied_filter=applied_filter)

    @staticmethod
    def _deny(
        actor: Actor,
        kind: ResourceKind,
        action: Action,
        mode: Mode,
        reason: str,
    ) -> Decision:
        logger.info(
            "Denied %s (%s) %s.%s via %s: %s",
            actor.identity or "anonymous",
            actor.effective_role.value,
            kind.value,
            action.value,
            mode.value,
            reason,
        )
        return Decision(allowed=False, mode=mode, reason=reason)


@lru_cache
def get_engine() -> DecisionEngine:
    """Get the default decision engine."""
    return DecisionEngine()
