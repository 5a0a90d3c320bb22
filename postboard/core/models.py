"""
Core data models for the postboard service.

These models represent the stored entities: Users, Posts (including
reposts) and Interactions (likes and comments). Authorization never reads
them directly; it works on ``ResourceView`` snapshots built from them.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from postboard.core.utils import generate_id, slugify, utc_now


# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """Platform-wide role of an actor."""

    UNKNOWN = "unknown"        # No (or no usable) credential
    USER = "user"              # Registered account
    ADMIN = "admin"            # Moderator with bounded reach
    SUPERADMIN = "superadmin"  # Configured operator account


class PostStatus(str, Enum):
    """Publication status of a post or repost."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class InteractionType(str, Enum):
    """Kinds of interaction an account can leave on a post."""

    LIKE = "like"
    COMMENT = "comment"


# Identity of the configured superadmin; it has no stored user record
SUPERADMIN_ID = "superadmin"


# =============================================================================
# User
# =============================================================================


class Profile(BaseModel):
    """Public profile details of an account."""

    first_name: str | None = None
    last_name: str | None = None
    bio: str | None = None
    avatar: str | None = None


class User(BaseModel):
    """
    A registered account.

    Accounts are never removed by moderation; deactivation hides their
    content until the owner logs in again.
    """

    id: str = Field(default_factory=lambda: generate_id("user"))
    username: str
    email: str
    password_hash: str = ""

    role: Role = Role.USER
    is_active: bool = True
    profile: Profile = Field(default_factory=Profile)

    # Deactivation bookkeeping
    last_deactivated: datetime | None = None
    deactivation_count: int = 0

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def deactivate(self) -> None:
        """Mark the account inactive (no-op if it already is)."""
        if not self.is_active:
            return
        self.is_active = False
        self.last_deactivated = utc_now()
        self.deactivation_count += 1
        self.updated_at = utc_now()

    def reactivate(self) -> None:
        """Mark the account active again."""
        self.is_active = True
        self.updated_at = utc_now()

    def public_dict(self) -> dict[str, Any]:
        """Serialize without the password hash."""
        return self.model_dump(mode="json", exclude={"password_hash"})


# =============================================================================
# Post
# =============================================================================


class Post(BaseModel):
    """
    A post or a repost.

    Reposts live in the same collection; ``is_repost`` and
    ``original_post_id`` link them to the post they share.
    """

    id: str = Field(default_factory=lambda: generate_id("post"))
    title: str
    content: str = ""
    author_id: str
    slug: str = ""

    status: PostStatus = PostStatus.DRAFT
    tags: list[str] = Field(default_factory=list)
    excerpt: str | None = None
    featured_image: str | None = None

    # Repost link
    is_repost: bool = False
    original_post_id: str | None = None
    repost_comment: str | None = None

    # Counters
    likes_count: int = 0
    comments_count: int = 0
    reposts_count: int = 0

    # Set together when the author's account deactivation archives the post
    archived_by_deactivation: bool = False
    previous_status: PostStatus | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def model_post_init(self, __context: Any) -> None:
        if not self.slug:
            self.slug = slugify(self.title)

    def update(self, **kwargs) -> None:
        """Update fields and set updated_at."""
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
        self.updated_at = utc_now()


# =============================================================================
# Interaction
# =============================================================================


class Interaction(BaseModel):
    """
    A like or comment left by a user on a post.

    ``parent_id`` points at a comment when the interaction is a reply or a
    like on that comment. Interactions are soft-deleted via ``is_active``.
    """

    id: str = Field(default_factory=lambda: generate_id("int"))
    user_id: str
    post_id: str
    type: InteractionType
    content: str | None = None
    parent_id: str | None = None
    is_active: bool = True
    # Set when the owner's deactivation hid it; only these come back on reactivation
    deactivated_by_account: bool = False

    # Counters (comments only)
    likes_count: int = 0
    replies_count: int = 0

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def counter_field(self) -> str:
        """Counter on the post (or parent comment) this interaction bumps."""
        if self.parent_id:
            return "likes_count" if self.type == InteractionType.LIKE else "replies_count"
        return "likes_count" if self.type == InteractionType.LIKE else "comments_count"
