"""
Lifecycle Service - post status machine and account cascades.

Posts move draft → published → archived by direct action. Account
deactivation archives everything the account owns and remembers where each
post was; reactivation puts it back. Neither touches posts archived by hand.

The cascades span many documents and the store only guarantees atomic
single-document writes, so each cascade runs as an ordered saga:

    deactivate: archive posts → deactivate interactions → deactivate account
    reactivate: restore posts → reactivate interactions → reactivate account
    delete:     interactions → reposts of owned posts (and their
                interactions) → interactions on owned posts → posts → account

Every step is idempotent and the account flag flips last, so a failed run
leaves a recognisable partial state that a plain re-run completes. The
coordinator replays a failed cascade (tenacity) before surfacing the error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from postboard.config import get_settings
from postboard.core.events import EventBus, account_event, get_event_bus
from postboard.core.models import Post, PostStatus, User
from postboard.integrations.sentry import capture_exception
from postboard.storage.base import Collections, ResourceNotFound, StorageProvider

logger = logging.getLogger(__name__)


class InvalidTransitionError(ValueError):
    """A status change that the post state machine does not allow."""
    pass


class LifecycleRaceError(Exception):
    """
    A cascade stopped partway.

    ``completed_steps`` were applied, ``step`` failed, later steps did not
    run. Re-running the same cascade finishes the job.
    """

    def __init__(self, cascade: str, user_id: str, step: str, completed_steps: list[str]):
        self.cascade = cascade
        self.user_id = user_id
        self.step = step
        self.completed_steps = completed_steps
        super().__init__(
            f"{cascade} cascade for {user_id} failed at '{step}' "
            f"after {completed_steps or 'no steps'}"
        )


# =============================================================================
# Post status machine
# =============================================================================


ALLOWED_TRANSITIONS: dict[PostStatus, frozenset[PostStatus]] = {
    PostStatus.DRAFT: frozenset({PostStatus.PUBLISHED, PostStatus.ARCHIVED}),
    PostStatus.PUBLISHED: frozenset({PostStatus.ARCHIVED}),
    PostStatus.ARCHIVED: frozenset(),
}


class ResourceLifecycle:
    """State transitions for posts and interactions."""

    transitions = ALLOWED_TRANSITIONS

    def can_transition(self, current: PostStatus, target: PostStatus) -> bool:
        return current == target or target in self.transitions[current]

    def transition(self, post: Post, target: PostStatus) -> bool:
        """
        Apply a direct (owner or moderator) status change.

        Returns False for a no-op. Direct archival never sets the
        deactivation marker, so it is not undone by reactivation.
        """
        if post.archived_by_deactivation:
            raise InvalidTransitionError(
                "Post is archived with its author's account and cannot change status"
            )
        if post.status == target:
            return False
        if not self.can_transition(post.status, target):
            raise InvalidTransitionError(
                f"Cannot move a {post.status.value} post to {target.value}"
            )
        post.update(status=target)
        return True

    def archive_for_deactivation(self, post: Post) -> bool:
        """Archive and remember the prior status; skip posts already archived."""
        if post.status == PostStatus.ARCHIVED:
            return False
        post.update(
            previous_status=post.status,
            status=PostStatus.ARCHIVED,
            archived_by_deactivation=True,
        )
        return True

    def restore_after_reactivation(self, post: Post) -> bool:
        """Undo archive_for_deactivation, clearing both markers together."""
        if not post.archived_by_deactivation:
            return False
        post.update(
            status=post.previous_status or PostStatus.DRAFT,
            previous_status=None,
            archived_by_deactivation=False,
        )
        return True


# =============================================================================
# Cascade coordinator
# =============================================================================


Step = tuple[str, Callable[[str], Awaitable[int]]]


@dataclass
class CascadeReport:
    """What a completed cascade touched, per step."""

    cascade: str
    user_id: str
    steps: dict[str, int] = field(default_factory=dict)


class LifecycleCoordinator:
    """
    Runs the account cascades against storage.

    Usage:
        coordinator = LifecycleCoordinator(storage)
        await coordinator.on_deactivate(user.id)
        await coordinator.on_reactivate(user.id)
    """

    def __init__(
        self,
        storage: StorageProvider,
        event_bus: EventBus | None = None,
        lifecycle: ResourceLifecycle | None = None,
        retry_attempts: int | None = None,
        retry_wait: float | None = None,
    ):
        settings = get_settings()
        self.storage = storage
        self.event_bus = event_bus or get_event_bus()
        self.lifecycle = lifecycle or ResourceLifecycle()
        self.retry_attempts = retry_attempts or settings.cascade_retry_attempts
        self.retry_wait = settings.cascade_retry_wait_seconds if retry_wait is None else retry_wait

    @property
    def metadata(self):
        return self.storage.metadata

    # =========================================================================
    # Public cascades
    # =========================================================================

    async def on_deactivate(self, user_id: str, actor_id: str | None = None) -> CascadeReport:
        await self._require_user(user_id)
        return await self._run("deactivated", user_id, actor_id, [
            ("archive_posts", self._archive_posts),
            ("deactivate_interactions", self._deactivate_interactions),
            ("deactivate_account", self._deactivate_account),
        ])

    async def on_reactivate(self, user_id: str, actor_id: str | None = None) -> CascadeReport:
        await self._require_user(user_id)
        return await self._run("reactivated", user_id, actor_id, [
            ("restore_posts", self._restore_posts),
            ("reactivate_interactions", self._reactivate_interactions),
            ("reactivate_account", self._reactivate_account),
        ])

    async def delete_account(self, user_id: str, actor_id: str | None = None) -> CascadeReport:
        await self._require_user(user_id)
        return await self._run("deleted", user_id, actor_id, [
            ("delete_own_interactions", self._delete_own_interactions),
            ("delete_reposts_of_owned_posts", self._delete_reposts_of_owned_posts),
            ("delete_interactions_on_owned_posts", self._delete_interactions_on_owned_posts),
            ("delete_posts", self._delete_posts),
            ("delete_account", self._delete_account),
        ])

    # =========================================================================
    # Saga runner
    # =========================================================================

    async def _run(
        self,
        cascade: str,
        user_id: str,
        actor_id: str | None,
        steps: list[Step],
    ) -> CascadeReport:
        """Run a cascade, replaying it from the first step while one fails."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=self.retry_wait, max=10),
                retry=retry_if_exception_type(LifecycleRaceError),
                reraise=True,
            ):
                with attempt:
                    report = await self._run_once(cascade, user_id, steps)
        except LifecycleRaceError as error:
            capture_exception(error, cascade=cascade, user_id=user_id, step=error.step)
            raise

        await self.event_bus.publish(
            account_event(cascade, user_id, actor_id=actor_id, steps=report.steps)
        )
        return report

    async def _run_once(self, cascade: str, user_id: str, steps: list[Step]) -> CascadeReport:
        report = CascadeReport(cascade=cascade, user_id=user_id)
        completed: list[str] = []

        for name, step in steps:
            try:
                report.steps[name] = await step(user_id)
            except Exception as e:
                logger.exception(
                    "Account %s cascade for %s failed at %s (completed: %s)",
                    cascade, user_id, name, completed,
                )
                raise LifecycleRaceError(cascade, user_id, name, list(completed)) from e
            completed.append(name)
            logger.info("Account %s cascade for %s: %s -> %d", cascade, user_id, name, report.steps[name])

        return report

    async def _require_user(self, user_id: str) -> None:
        if await self.metadata.get(Collections.USERS, user_id) is None:
            raise ResourceNotFound(Collections.USERS, user_id)

    async def _owned_posts(self, user_id: str, **extra) -> list[Post]:
        filters = {"author_id": user_id, **extra}
        total = await self.metadata.count(Collections.POSTS, filters)
        docs = await self.metadata.query(Collections.POSTS, filters, limit=max(total, 1))
        return [Post.model_validate(d) for d in docs]

    # =========================================================================
    # Steps
    # =========================================================================

    async def _archive_posts(self, user_id: str) -> int:
        changed = 0
        for post in await self._owned_posts(user_id):
            if self.lifecycle.archive_for_deactivation(post):
                await self.metadata.update(Collections.POSTS, post.id, {
                    "status": post.status.value,
                    "previous_status": post.previous_status.value,
                    "archived_by_deactivation": True,
                    "updated_at": post.updated_at.isoformat(),
                })
                changed += 1
        return changed

    async def _restore_posts(self, user_id: str) -> int:
        changed = 0
        for post in await self._owned_posts(user_id, archived_by_deactivation=True):
            if self.lifecycle.restore_after_reactivation(post):
                await self.metadata.update(Collections.POSTS, post.id, {
                    "status": post.status.value,
                    "previous_status": None,
                    "archived_by_deactivation": False,
                    "updated_at": post.updated_at.isoformat(),
                })
                changed += 1
        return changed

    async def _deactivate_interactions(self, user_id: str) -> int:
        # Already-removed interactions stay out of the marked set
        return await self.metadata.update_many(
            Collections.INTERACTIONS,
            {"user_id": user_id, "is_active": True},
            {"is_active": False, "deactivated_by_account": True},
        )

    async def _reactivate_interactions(self, user_id: str) -> int:
        return await self.metadata.update_many(
            Collections.INTERACTIONS,
            {"user_id": user_id, "deactivated_by_account": True},
            {"is_active": True, "deactivated_by_account": False},
        )

    async def _deactivate_account(self, user_id: str) -> int:
        user = User.model_validate(await self.metadata.get(Collections.USERS, user_id))
        if not user.is_active:
            return 0
        user.deactivate()
        await self.metadata.save(Collections.USERS, user.id, user.model_dump(mode="json"))
        return 1

    async def _reactivate_account(self, user_id: str) -> int:
        user = User.model_validate(await self.metadata.get(Collections.USERS, user_id))
        if user.is_active:
            return 0
        user.reactivate()
        await self.metadata.save(Collections.USERS, user.id, user.model_dump(mode="json"))
        return 1

    async def _delete_own_interactions(self, user_id: str) -> int:
        return await self.metadata.delete_many(Collections.INTERACTIONS, {"user_id": user_id})

    async def _delete_reposts_of_owned_posts(self, user_id: str) -> int:
        owned_ids = [p.id for p in await self._owned_posts(user_id)]
        if not owned_ids:
            return 0
        repost_filter = {"is_repost": True, "original_post_id": {"$in": owned_ids}}
        total = await self.metadata.count(Collections.POSTS, repost_filter)
        reposts = await self.metadata.query(Collections.POSTS, repost_filter, limit=max(total, 1))
        repost_ids = [r["id"] for r in reposts]
        if not repost_ids:
            return 0
        await self.metadata.delete_many(
            Collections.INTERACTIONS, {"post_id": {"$in": repost_ids}}
        )
        return await self.metadata.delete_many(Collections.POSTS, {"id": {"$in": repost_ids}})

    async def _delete_interactions_on_owned_posts(self, user_id: str) -> int:
        owned_ids = [p.id for p in await self._owned_posts(user_id)]
        if not owned_ids:
            return 0
        return await self.metadata.delete_many(
            Collections.INTERACTIONS, {"post_id": {"$in": owned_ids}}
        )

    async def _delete_posts(self, user_id: str) -> int:
        return await self.metadata.delete_many(Collections.POSTS, {"author_id": user_id})

    async def _delete_account(self, user_id: str) -> int:
        return int(await self.metadata.delete(Collections.USERS, user_id))
