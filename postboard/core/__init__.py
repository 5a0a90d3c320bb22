"""
Core module - fundamental data models and infrastructure.

This module contains:
- models: Stored entities (User, Post, Interaction) and their enums
- events: Event bus for lifecycle announcements
- utils: Shared utility functions
"""

from postboard.core.models import (
    Role,
    PostStatus,
    InteractionType,
    Profile,
    User,
    Post,
    Interaction,
    SUPERADMIN_ID,
)

from postboard.core.events import (
    Event,
    EventBus,
    get_event_bus,
    reset_event_bus,
)

from postboard.core.utils import (
    generate_id,
    slugify,
    utc_now,
)

__all__ = [
    # Models
    "Role",
    "PostStatus",
    "InteractionType",
    "Profile",
    "User",
    "Post",
    "Interaction",
    "SUPERADMIN_ID",
    # Events
    "Event",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
    # Utils
    "generate_id",
    "slugify",
    "utc_now",
]
