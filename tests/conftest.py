"""Shared fixtures: a fresh in-memory store, the services, and a cast of actors."""

from dataclasses import dataclass

import pytest

from postboard.auth.context import Actor
from postboard.core.events import get_event_bus, reset_event_bus
from postboard.core.models import Post, PostStatus, Role, User
from postboard.services import (
    InteractionService,
    LifecycleCoordinator,
    PostService,
    UserService,
)
from postboard.storage import create_local_storage


PASSWORD = "password123"


@pytest.fixture(autouse=True)
def fresh_event_bus():
    """Each test gets its own event bus."""
    reset_event_bus()
    yield
    reset_event_bus()


@pytest.fixture
def storage():
    return create_local_storage()


@pytest.fixture
def coordinator(storage):
    return LifecycleCoordinator(storage, get_event_bus(), retry_wait=0)


@pytest.fixture
def users(storage, coordinator):
    return UserService(storage, coordinator=coordinator)


@pytest.fixture
def posts(storage):
    return PostService(storage)


@pytest.fixture
def interactions(storage):
    return InteractionService(storage)


@dataclass
class Cast:
    """Seeded accounts and their actors."""

    alice_user: User
    bob_user: User
    admin_user: User
    other_admin_user: User

    @property
    def alice(self) -> Actor:
        return Actor.of_user(self.alice_user)

    @property
    def bob(self) -> Actor:
        return Actor.of_user(self.bob_user)

    @property
    def admin(self) -> Actor:
        return Actor.of_user(self.admin_user)

    @property
    def other_admin(self) -> Actor:
        return Actor.of_user(self.other_admin_user)

    root = Actor.superadmin()
    anonymous = Actor.anonymous()


@pytest.fixture
async def cast(users):
    root = Actor.superadmin()
    return Cast(
        alice_user=await users.register("alice", "alice@postboard.dev", PASSWORD),
        bob_user=await users.register("bob", "bob@postboard.dev", PASSWORD),
        admin_user=await users.create_user(root, "moderator", "mod@postboard.dev", PASSWORD, Role.ADMIN),
        other_admin_user=await users.create_user(root, "moderator2", "mod2@postboard.dev", PASSWORD, Role.ADMIN),
    )


@pytest.fixture
def make_post(posts):
    """Factory: create a post as ``actor`` with the given status."""
    async def _make(actor: Actor, status: PostStatus = PostStatus.PUBLISHED, **kwargs) -> Post:
        kwargs.setdefault("title", f"{status.value} post by {actor.identity}")
        kwargs.setdefault("content", "Some content")
        return await posts.create_post(actor, status=status, **kwargs)
    return _make
