"""Services - the collaborators that load resources, ask the engine, then act."""

from postboard.services.base import DomainService
from postboard.services.lifecycle import (
    ResourceLifecycle,
    LifecycleCoordinator,
    CascadeReport,
    InvalidTransitionError,
    LifecycleRaceError,
)
from postboard.services.posts import PostService
from postboard.services.interactions import InteractionService, InvalidInteractionError
from postboard.services.users import UserService, AccountError, LoginResult

__all__ = [
    "DomainService",
    "ResourceLifecycle",
    "LifecycleCoordinator",
    "CascadeReport",
    "InvalidTransitionError",
    "LifecycleRaceError",
    "PostService",
    "InteractionService",
    "InvalidInteractionError",
    "UserService",
    "AccountError",
    "LoginResult",
]
