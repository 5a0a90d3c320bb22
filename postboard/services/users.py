"""
User Service - accounts, credentials and role changes.

Registration and login are the only calls that run without an actor.
Everything else is gated by the ``users`` rows of the permission matrix:
self-service under ``own``, bounded admin reach under ``moderate``, and
account creation and role changes for the superadmin only.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any

from postboard.auth.capabilities import Action, ResourceKind
from postboard.auth.context import Actor
from postboard.auth.jwt import hash_password, verify_password
from postboard.auth.resources import ResourceView
from postboard.config import get_settings
from postboard.core.events import account_event
from postboard.core.models import Profile, Role, User
from postboard.core.utils import utc_now
from postboard.services.base import DomainService
from postboard.services.lifecycle import CascadeReport, LifecycleCoordinator
from postboard.storage.base import Collections

logger = logging.getLogger(__name__)


# Typed by the account owner to confirm deletion
DELETE_CONFIRMATION = "DELETE_MY_ACCOUNT"

# Roles a superadmin can grant; the superadmin itself is configured, not granted
ASSIGNABLE_ROLES = (Role.USER, Role.ADMIN)


class AccountError(ValueError):
    """A request about an account that cannot be honoured as asked."""
    pass


@dataclass
class LoginResult:
    """Who logged in, and whether the login woke a deactivated account."""

    actor: Actor
    user: User | None = None
    was_reactivated: bool = False


class UserService(DomainService):
    """Registration, authentication and account management."""

    def __init__(self, *args, coordinator: LifecycleCoordinator | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.coordinator = coordinator or LifecycleCoordinator(self.storage, self.event_bus)

    # =========================================================================
    # Registration & Login
    # =========================================================================

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        profile: Profile | None = None,
    ) -> User:
        user = User(
            username=username,
            email=email.lower(),
            password_hash=hash_password(password),
            profile=profile or Profile(),
        )
        await self._require_unique(user)
        await self.metadata.save(Collections.USERS, user.id, user.model_dump(mode="json"))
        await self.event_bus.publish(account_event("registered", user.id))
        logger.info("Registered %s (%s)", user.id, user.username)
        return user

    async def authenticate(self, email: str, password: str) -> LoginResult | None:
        """
        Check credentials; None when they do not match.

        Valid credentials on a deactivated account reactivate it, running
        the full reactivation cascade before the login completes.
        """
        settings = get_settings()
        if (
            settings.superadmin_password
            and email.lower() == settings.superadmin_email.lower()
            and secrets.compare_digest(password, settings.superadmin_password)
        ):
            return LoginResult(actor=Actor.superadmin())

        user = await self.find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            return None

        was_reactivated = False
        if not user.is_active:
            await self.coordinator.on_reactivate(user.id, actor_id=user.id)
            user = await self.load_user(user.id)
            was_reactivated = True
            logger.info("Login reactivated %s", user.id)

        return LoginResult(actor=Actor.of_user(user), user=user, was_reactivated=was_reactivated)

    async def find_by_email(self, email: str) -> User | None:
        docs = await self.metadata.query(Collections.USERS, {"email": email.lower()}, limit=1)
        return User.model_validate(docs[0]) if docs else None

    # =========================================================================
    # Reading
    # =========================================================================

    async def get_user(self, actor: Actor, user_id: str) -> User:
        user = await self.load_user(user_id)
        self.authorize(actor, ResourceKind.USERS, Action.READ, ResourceView.of_user(user))
        return user

    async def list_users(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        role: Role | None = None,
        is_active: bool | None = None,
    ) -> dict[str, Any]:
        applied = self.authorize(actor, ResourceKind.USERS, Action.READ).applied_filter

        filters: dict[str, Any] = {}
        if role:
            filters["role"] = Role(role).value
        if is_active is not None:
            filters["is_active"] = is_active
        query = await self.scoped_query(filters, applied)

        page = max(page, 1)
        total = await self.metadata.count(Collections.USERS, query)
        docs = await self.metadata.query(
            Collections.USERS,
            query,
            limit=limit,
            offset=(page - 1) * limit,
            sort_by="created_at",
            descending=True,
        )
        return {
            "users": [User.model_validate(d) for d in docs],
            "pagination": {"page": page, "limit": limit, "total": total},
        }

    # =========================================================================
    # Updating
    # =========================================================================

    async def update_user(
        self,
        actor: Actor,
        user_id: str,
        username: str | None = None,
        email: str | None = None,
        profile: dict[str, Any] | None = None,
    ) -> User:
        """Update account details. Role and password never change here."""
        user = await self.load_user(user_id)
        self.authorize(actor, ResourceKind.USERS, Action.UPDATE, ResourceView.of_user(user))

        if username:
            user.username = username
        if email:
            user.email = email.lower()
        if profile:
            user.profile = user.profile.model_copy(update=profile)
        user.updated_at = utc_now()

        await self._require_unique(user)
        await self.metadata.save(Collections.USERS, user.id, user.model_dump(mode="json"))
        return user

    async def create_user(
        self,
        actor: Actor,
        username: str,
        email: str,
        password: str,
        role: Role = Role.USER,
    ) -> User:
        role = self._assignable(role)
        user = User(
            username=username,
            email=email.lower(),
            password_hash=hash_password(password),
            role=role,
        )
        self.authorize(actor, ResourceKind.USERS, Action.CREATE, ResourceView.of_user(user))

        await self._require_unique(user)
        await self.metadata.save(Collections.USERS, user.id, user.model_dump(mode="json"))
        await self.event_bus.publish(account_event("created", user.id, actor_id=actor.identity))
        return user

    async def change_role(self, actor: Actor, user_id: str, role: Role) -> User:
        """Promote or demote an account."""
        role = self._assignable(role)
        user = await self.load_user(user_id)
        self.authorize(actor, ResourceKind.USERS, Action.PROMOTE, ResourceView.of_user(user))

        if user.role == role:
            raise AccountError(f"User already has role {role.value}")

        old_role = user.role
        user.role = role
        user.updated_at = utc_now()
        await self.metadata.save(Collections.USERS, user.id, user.model_dump(mode="json"))
        await self.event_bus.publish(account_event(
            "role_changed", user.id, actor_id=actor.identity,
            old_role=old_role.value, new_role=role.value,
        ))
        logger.info("%s changed role of %s: %s -> %s", actor.identity, user.id, old_role.value, role.value)
        return user

    async def promote(self, actor: Actor, user_id: str) -> User:
        return await self.change_role(actor, user_id, Role.ADMIN)

    async def demote(self, actor: Actor, user_id: str) -> User:
        return await self.change_role(actor, user_id, Role.USER)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def deactivate_user(self, actor: Actor, user_id: str) -> CascadeReport:
        user = await self.load_user(user_id)
        self.authorize(actor, ResourceKind.USERS, Action.DEACTIVATE, ResourceView.of_user(user))
        return await self.coordinator.on_deactivate(user.id, actor_id=actor.identity)

    async def delete_user(self, actor: Actor, user_id: str) -> CascadeReport:
        user = await self.load_user(user_id)
        self.authorize(actor, ResourceKind.USERS, Action.DELETE, ResourceView.of_user(user))
        return await self.coordinator.delete_account(user.id, actor_id=actor.identity)

    async def delete_own_account(self, actor: Actor, password: str, confirm: str) -> CascadeReport:
        """Self-service deletion; needs the password and the typed confirmation."""
        user = await self.load_user(actor.identity or "")
        if confirm != DELETE_CONFIRMATION:
            raise AccountError(f"Type {DELETE_CONFIRMATION} to confirm account deletion")
        if not verify_password(password, user.password_hash):
            raise AccountError("Password is incorrect")
        return await self.delete_user(actor, user.id)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _assignable(role: Role | str) -> Role:
        role = Role(role)
        if role not in ASSIGNABLE_ROLES:
            raise AccountError(f"Role {role.value} cannot be assigned")
        return role

    async def _require_unique(self, user: User) -> None:
        for field in ("email", "username"):
            docs = await self.metadata.query(
                Collections.USERS, {field: getattr(user, field)}, limit=2
            )
            if any(d["id"] != user.id for d in docs):
                raise AccountError(f"{field.capitalize()} is already taken")
