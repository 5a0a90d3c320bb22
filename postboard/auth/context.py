"""
Identity context - who is making a request.

An Actor is passed explicitly into every authorization call; there is no
ambient "current user". A request without a usable credential is not an
error, it simply resolves to the anonymous actor with role ``unknown``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from postboard.core.models import SUPERADMIN_ID, Role, User
from postboard.storage.base import Collections, StorageProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """
    The identity (or lack thereof) performing a request.

    Usage:
        actor = await resolve_actor(claims, storage)
        decision = engine.authorize(actor, ResourceKind.POSTS, Action.READ, view)
    """

    identity: str | None = None
    role: Role = Role.UNKNOWN
    is_active: bool = True

    @property
    def is_authenticated(self) -> bool:
        """Is there a usable, active identity?"""
        return self.identity is not None and self.is_active

    @property
    def effective_role(self) -> Role:
        """
        The role authorization runs under.

        A missing identity or a deactivated account is treated as unknown,
        whatever role the credential claims.
        """
        if not self.is_authenticated:
            return Role.UNKNOWN
        return self.role

    @property
    def is_superadmin(self) -> bool:
        return self.effective_role == Role.SUPERADMIN

    @classmethod
    def anonymous(cls) -> Actor:
        """Create an anonymous actor (no credential)."""
        return cls()

    @classmethod
    def superadmin(cls) -> Actor:
        """The configured operator account."""
        return cls(identity=SUPERADMIN_ID, role=Role.SUPERADMIN)

    @classmethod
    def of_user(cls, user: User) -> Actor:
        return cls(identity=user.id, role=user.role, is_active=user.is_active)


# =============================================================================
# Context Resolution
# =============================================================================


async def resolve_actor(
    user_id: str | None,
    role_claim: str | None = None,
    storage: StorageProvider | None = None,
) -> Actor:
    """
    Resolve the actor for a request from verified token claims.

    The role is always taken from the stored account, never from the
    token, except for the superadmin which has no stored record.
    """
    if not user_id:
        return Actor.anonymous()

    if role_claim == Role.SUPERADMIN.value and user_id == SUPERADMIN_ID:
        return Actor.superadmin()

    if storage is None:
        return Actor.anonymous()

    data = await storage.metadata.get(Collections.USERS, user_id)
    if data is None:
        logger.info("Token subject %s has no account; treating as unknown", user_id)
        return Actor.anonymous()

    return Actor.of_user(User.model_validate(data))
