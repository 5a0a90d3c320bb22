"""
Postboard - Main entry point.

Seeds an in-memory store with a few accounts and posts and walks through
the visibility and moderation rules. Run with ``python -m postboard.main``;
serve the API with ``uvicorn postboard.api.app:app``.
"""

from __future__ import annotations

import asyncio
import logging

from postboard.auth.capabilities import Action, ResourceKind
from postboard.auth.context import Actor
from postboard.auth.engine import AuthorizationDenied, get_engine
from postboard.auth.resources import ResourceView
from postboard.config import get_settings
from postboard.core.events import get_event_bus, reset_event_bus
from postboard.core.models import PostStatus, Profile, Role
from postboard.services import InteractionService, PostService, UserService
from postboard.storage import create_local_storage

logger = logging.getLogger(__name__)


def _verdict(allowed: bool) -> str:
    return "allow" if allowed else "deny"


async def demo():
    """
    Run a demonstration of the decision engine and the account lifecycle.
    """
    print("=" * 60)
    print("POSTBOARD DEMO")
    print("=" * 60)
    print()

    # Reset singletons for clean demo
    reset_event_bus()

    async def audit(event):
        logger.info("audit %s", event.to_dict())

    get_event_bus().subscribe("account.*", audit)

    storage = create_local_storage()
    engine = get_engine()
    users = UserService(storage)
    posts = PostService(storage)
    interactions = InteractionService(storage)
    root = Actor.superadmin()

    # Seed accounts
    print("Seeding accounts...")
    admin_user = await users.create_user(root, "admin", "admin@blog.dev", "password123", Role.ADMIN)
    john_user = await users.register(
        "john_doe", "john@blog.dev", "password123",
        Profile(first_name="John", last_name="Doe", bio="Tech enthusiast and blogger"),
    )
    jane_user = await users.register(
        "jane_smith", "jane@blog.dev", "password123",
        Profile(first_name="Jane", last_name="Smith", bio="Content creator and writer"),
    )
    admin, john, jane = (Actor.of_user(u) for u in (admin_user, john_user, jane_user))
    for user in (admin_user, john_user, jane_user):
        print(f"  ✓ {user.username} ({user.role.value})")
    print()

    # Seed posts
    print("Seeding posts...")
    guide = await posts.create_post(
        john,
        "Getting Started with Python",
        "A comprehensive guide to getting started with Python development...",
        status=PostStatus.PUBLISHED,
        tags=["python", "tutorial"],
    )
    draft = await posts.create_post(john, "Half-finished thoughts", "Not ready yet")
    root_post = await posts.create_post(root, "Platform announcement", "Be nice.", PostStatus.PUBLISHED)
    for post in (guide, draft, root_post):
        print(f"  ✓ {post.title} [{post.status.value}] slug={post.slug}")
    print()

    # Visibility
    print("Who can read the draft?")
    draft_view = await posts.post_view(draft)
    for name, actor in (("john", john), ("jane", jane), ("anonymous", Actor.anonymous()), ("admin", admin)):
        allowed = engine.can(actor, ResourceKind.POSTS, Action.READ, draft_view)
        print(f"  • {name}: {_verdict(allowed)}")
    print()

    listing = await posts.list_posts(Actor.anonymous())
    print(f"Anonymous listing sees {listing['pagination']['total']} posts")
    listing = await posts.list_posts(john)
    print(f"John's listing sees {listing['pagination']['total']} posts")
    print()

    # Interactions
    print("Interactions...")
    await interactions.like(jane, guide.id)
    _, created = await interactions.like(jane, guide.id)
    print(f"  ✓ Jane liked the guide (second like created: {created})")
    comment = await interactions.comment(jane, guide.id, "Great introduction!")
    await interactions.comment(john, guide.id, "Thanks!", parent_id=comment.id)
    print(f"  ✓ Counts: {await interactions.counts(Actor.anonymous(), guide.id)}")
    try:
        await interactions.comment(john, draft.id, "Note to self")
    except AuthorizationDenied:
        print("  ✗ John cannot comment on his own draft")
    print()

    # Moderation
    print("Moderation...")
    root_view = await posts.post_view(root_post)
    allowed = engine.can(admin, ResourceKind.POSTS, Action.DELETE, root_view)
    print(f"  • admin deletes superadmin's post: {_verdict(allowed)}")
    allowed = engine.can(admin, ResourceKind.POSTS, Action.DELETE, await posts.post_view(guide))
    print(f"  • admin deletes john's post: {_verdict(allowed)}")
    allowed = engine.can(
        admin, ResourceKind.USERS, Action.DELETE, ResourceView.of_user(admin_user)
    )
    print(f"  • admin deletes own account: {_verdict(allowed)}")
    print()

    # Account lifecycle
    print("Deactivating john...")
    report = await users.deactivate_user(john, john.identity)
    print(f"  ✓ Cascade: {report.steps}")
    listing = await posts.list_posts(Actor.anonymous())
    print(f"  ✓ Anonymous listing now sees {listing['pagination']['total']} posts")

    settings = get_settings()
    result = await users.authenticate("john@blog.dev", "password123")
    print(f"  ✓ John logs in again (reactivated: {result.was_reactivated})")
    restored = await posts.get_post(Actor.anonymous(), guide.id)
    print(f"  ✓ Guide is {restored.status.value} again")
    print()

    # Event history
    events = get_event_bus().get_history()
    print(f"Event history ({len(events)} events):")
    for event in events[-5:]:
        print(f"  • {event.event_type} {event.subject_id}")
    print()

    print("=" * 60)
    print(f"Demo complete! ({settings.environment})")
    print("=" * 60)


def main():
    """Main entry point."""
    logging.basicConfig(level=get_settings().log_level)
    asyncio.run(demo())


if __name__ == "__main__":
    main()
