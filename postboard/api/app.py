"""
FastAPI application for the postboard service.

Routes resolve the actor, hand it to a service, and let the exception
handlers below translate domain outcomes into HTTP status codes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from postboard.auth.capabilities import Action, ResourceKind
from postboard.auth.context import Actor
from postboard.auth.engine import AuthorizationDenied, get_engine
from postboard.auth.policies import denial_for, get_actor, require, require_identity
from postboard.auth.routes import router as auth_router
from postboard.config import get_settings
from postboard.core.events import get_event_bus
from postboard.core.models import InteractionType, PostStatus, Role
from postboard.integrations.sentry import init_sentry
from postboard.services import (
    AccountError,
    InteractionService,
    InvalidInteractionError,
    InvalidTransitionError,
    LifecycleCoordinator,
    LifecycleRaceError,
    PostService,
    UserService,
)
from postboard.storage import ResourceNotFound, StorageProvider, create_local_storage

logger = logging.getLogger(__name__)


# =============================================================================
# App State
# =============================================================================


def init_state(app: FastAPI, storage: StorageProvider | None = None) -> None:
    """Wire storage and services onto ``app.state``."""
    storage = storage or create_local_storage()
    engine = get_engine()
    event_bus = get_event_bus()
    coordinator = LifecycleCoordinator(storage, event_bus)

    app.state.storage = storage
    app.state.coordinator = coordinator
    app.state.posts = PostService(storage, engine, event_bus)
    app.state.interactions = InteractionService(storage, engine, event_bus)
    app.state.users = UserService(storage, engine, event_bus, coordinator=coordinator)


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup app resources."""
    settings = get_settings()

    # Initialize error tracking (Sentry)
    if init_sentry():
        logger.info("Sentry error tracking enabled")

    # Tests may have wired their own storage already
    if not hasattr(app.state, "storage"):
        init_state(app)

    logger.info("Postboard API starting in %s mode", settings.environment)

    yield

    logger.info("Postboard API shutting down")


# =============================================================================
# App Setup
# =============================================================================


app = FastAPI(
    title="Postboard API",
    description="Posts, reposts, likes and comments with role-aware visibility",
    version="0.1.0",
    lifespan=lifespan,
)


# CORS
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)


# =============================================================================
# Error Mapping
# =============================================================================


@app.exception_handler(AuthorizationDenied)
async def handle_denied(request: Request, exc: AuthorizationDenied):
    actor = getattr(request.state, "actor", None) or Actor.anonymous()
    error = denial_for(actor, exc)
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


@app.exception_handler(ResourceNotFound)
async def handle_not_found(request: Request, exc: ResourceNotFound):
    return JSONResponse(status_code=404, content={"detail": "Not found"})


@app.exception_handler(InvalidTransitionError)
@app.exception_handler(InvalidInteractionError)
@app.exception_handler(AccountError)
async def handle_bad_request(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(LifecycleRaceError)
async def handle_cascade_failure(request: Request, exc: LifecycleRaceError):
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Account update did not complete; retry the request",
            "cascade": exc.cascade,
            "failed_step": exc.step,
            "completed_steps": exc.completed_steps,
        },
    )


# =============================================================================
# Dependencies
# =============================================================================


def get_post_service(request: Request) -> PostService:
    return request.app.state.posts


def get_interaction_service(request: Request) -> InteractionService:
    return request.app.state.interactions


def get_user_service(request: Request) -> UserService:
    return request.app.state.users


# =============================================================================
# Request Models
# =============================================================================


class CreatePostRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    status: PostStatus = PostStatus.DRAFT
    tags: list[str] = []
    excerpt: str | None = Field(default=None, max_length=300)
    featured_image: str | None = None


class UpdatePostRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    content: str | None = None
    status: PostStatus | None = None
    tags: list[str] | None = None
    excerpt: str | None = Field(default=None, max_length=300)
    featured_image: str | None = None
    repost_comment: str | None = None


class RepostRequest(BaseModel):
    comment: str | None = Field(default=None, max_length=500)


class CommentRequest(BaseModel):
    content: str = Field(min_length=1, max_length=1000)


class AdminUpdateUserRequest(BaseModel):
    username: str | None = Field(default=None, min_length=3, max_length=30)
    email: EmailStr | None = None
    profile: dict[str, Any] | None = None


class CreateUserRequest(BaseModel):
    username: str = Field(min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role = Role.USER


def _page_of_users(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "users": [u.public_dict() for u in result["users"]],
        "pagination": result["pagination"],
    }


# =============================================================================
# Health Check
# =============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "postboard-api"}


# =============================================================================
# Posts
# =============================================================================


@app.post("/posts", status_code=201)
async def create_post(
    data: CreatePostRequest,
    actor: Actor = Depends(require(ResourceKind.POSTS, Action.CREATE)),
    posts: PostService = Depends(get_post_service),
):
    """Create a post. Drafts are visible only to their author."""
    post = await posts.create_post(actor, **data.model_dump())
    return post.model_dump(mode="json")


@app.get("/posts")
async def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    author: str | None = None,
    tag: str | None = None,
    status: PostStatus | None = None,
    actor: Actor = Depends(get_actor),
    posts: PostService = Depends(get_post_service),
):
    """List the posts and reposts the actor can see, newest first."""
    return await posts.list_posts(
        actor, page=page, limit=limit, author_id=author, tag=tag, status=status
    )


@app.get("/posts/{post_id}")
async def get_post(
    post_id: str,
    actor: Actor = Depends(get_actor),
    posts: PostService = Depends(get_post_service),
):
    post = await posts.get_post(actor, post_id)
    return post.model_dump(mode="json")


@app.patch("/posts/{post_id}")
async def update_post(
    post_id: str,
    data: UpdatePostRequest,
    actor: Actor = Depends(require_identity),
    posts: PostService = Depends(get_post_service),
):
    """Edit a post or move it along draft → published → archived."""
    post = await posts.update_post(actor, post_id, **data.model_dump(exclude_none=True))
    return post.model_dump(mode="json")


@app.delete("/posts/{post_id}")
async def delete_post(
    post_id: str,
    actor: Actor = Depends(get_actor),
    posts: PostService = Depends(get_post_service),
):
    await posts.delete_post(actor, post_id)
    return {"message": "Post deleted"}


@app.get("/me/posts")
async def list_my_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    status: PostStatus | None = None,
    actor: Actor = Depends(require_identity),
    posts: PostService = Depends(get_post_service),
):
    """The actor's own posts in every status."""
    return await posts.list_posts(actor, page=page, limit=limit, status=status, owner_view=True)


# =============================================================================
# Reposts
# =============================================================================


@app.post("/posts/{post_id}/repost", status_code=201)
async def repost(
    post_id: str,
    data: RepostRequest | None = None,
    actor: Actor = Depends(require(ResourceKind.REPOSTS, Action.CREATE)),
    posts: PostService = Depends(get_post_service),
):
    """Share a published post."""
    created = await posts.create_repost(actor, post_id, data.comment if data else None)
    return created.model_dump(mode="json")


@app.get("/reposts")
async def list_reposts(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    author: str | None = None,
    actor: Actor = Depends(get_actor),
    posts: PostService = Depends(get_post_service),
):
    return await posts.list_posts(actor, page=page, limit=limit, author_id=author, reposts=True)


# =============================================================================
# Comments & Likes
# =============================================================================


@app.post("/posts/{post_id}/comments", status_code=201)
async def comment_on_post(
    post_id: str,
    data: CommentRequest,
    actor: Actor = Depends(require(ResourceKind.COMMENTS, Action.CREATE)),
    interactions: InteractionService = Depends(get_interaction_service),
):
    comment = await interactions.comment(actor, post_id, data.content)
    return comment.model_dump(mode="json")


@app.get("/posts/{post_id}/comments")
async def list_comments(
    post_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    actor: Actor = Depends(get_actor),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return await interactions.list_for_post(
        actor, post_id, InteractionType.COMMENT, page=page, limit=limit
    )


@app.post("/posts/{post_id}/like")
async def like_post(
    post_id: str,
    actor: Actor = Depends(require(ResourceKind.LIKES, Action.CREATE)),
    interactions: InteractionService = Depends(get_interaction_service),
):
    """Like a post. Liking twice is harmless."""
    like, created = await interactions.like(actor, post_id)
    return {"like": like.model_dump(mode="json"), "created": created}


@app.delete("/posts/{post_id}/like")
async def unlike_post(
    post_id: str,
    actor: Actor = Depends(require_identity),
    interactions: InteractionService = Depends(get_interaction_service),
):
    await interactions.unlike(actor, post_id)
    return {"message": "Like removed"}


@app.get("/posts/{post_id}/likes")
async def list_likes(
    post_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    actor: Actor = Depends(get_actor),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return await interactions.list_for_post(
        actor, post_id, InteractionType.LIKE, page=page, limit=limit
    )


@app.get("/posts/{post_id}/interactions/counts")
async def interaction_counts(
    post_id: str,
    actor: Actor = Depends(get_actor),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return await interactions.counts(actor, post_id)


@app.post("/comments/{comment_id}/replies", status_code=201)
async def reply_to_comment(
    comment_id: str,
    data: CommentRequest,
    actor: Actor = Depends(require(ResourceKind.COMMENTS, Action.CREATE)),
    interactions: InteractionService = Depends(get_interaction_service),
):
    parent = await interactions.get_interaction(actor, comment_id)
    reply = await interactions.comment(actor, parent.post_id, data.content, parent_id=parent.id)
    return reply.model_dump(mode="json")


@app.get("/comments/{comment_id}/replies")
async def list_replies(
    comment_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    actor: Actor = Depends(get_actor),
    interactions: InteractionService = Depends(get_interaction_service),
):
    parent = await interactions.get_interaction(actor, comment_id)
    return await interactions.list_for_post(
        actor, parent.post_id, InteractionType.COMMENT, parent_id=parent.id, page=page, limit=limit
    )


@app.post("/comments/{comment_id}/like")
async def like_comment(
    comment_id: str,
    actor: Actor = Depends(require(ResourceKind.LIKES, Action.CREATE)),
    interactions: InteractionService = Depends(get_interaction_service),
):
    parent = await interactions.get_interaction(actor, comment_id)
    like, created = await interactions.like(actor, parent.post_id, parent_id=parent.id)
    return {"like": like.model_dump(mode="json"), "created": created}


@app.delete("/comments/{comment_id}/like")
async def unlike_comment(
    comment_id: str,
    actor: Actor = Depends(require_identity),
    interactions: InteractionService = Depends(get_interaction_service),
):
    parent = await interactions.get_interaction(actor, comment_id)
    await interactions.unlike(actor, parent.post_id, parent_id=parent.id)
    return {"message": "Like removed"}


@app.patch("/interactions/{interaction_id}")
async def edit_comment(
    interaction_id: str,
    data: CommentRequest,
    actor: Actor = Depends(require_identity),
    interactions: InteractionService = Depends(get_interaction_service),
):
    comment = await interactions.update_comment(actor, interaction_id, data.content)
    return comment.model_dump(mode="json")


@app.delete("/interactions/{interaction_id}")
async def delete_interaction(
    interaction_id: str,
    actor: Actor = Depends(get_actor),
    interactions: InteractionService = Depends(get_interaction_service),
):
    """Remove a like or comment (commenter, post author or moderator)."""
    await interactions.delete_interaction(actor, interaction_id)
    return {"message": "Interaction removed"}


@app.get("/me/interactions")
async def my_interactions(
    interaction_type: InteractionType | None = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    actor: Actor = Depends(require_identity),
    interactions: InteractionService = Depends(get_interaction_service),
):
    return await interactions.history(actor, None, interaction_type, page=page, limit=limit)


@app.get("/users/{user_id}/interactions")
async def user_interactions(
    user_id: str,
    interaction_type: InteractionType | None = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    actor: Actor = Depends(get_actor),
    interactions: InteractionService = Depends(get_interaction_service),
):
    """A user's interactions, limited to posts the actor can see."""
    return await interactions.history(actor, user_id, interaction_type, page=page, limit=limit)


# =============================================================================
# Admin - user management
# =============================================================================


@app.get("/admin/users")
async def admin_list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    role: Role | None = None,
    is_active: bool | None = None,
    actor: Actor = Depends(require(ResourceKind.USERS, Action.READ)),
    users: UserService = Depends(get_user_service),
):
    result = await users.list_users(actor, page=page, limit=limit, role=role, is_active=is_active)
    return _page_of_users(result)


@app.get("/admin/users/{user_id}")
async def admin_get_user(
    user_id: str,
    actor: Actor = Depends(require(ResourceKind.USERS, Action.READ)),
    users: UserService = Depends(get_user_service),
):
    user = await users.get_user(actor, user_id)
    return user.public_dict()


@app.patch("/admin/users/{user_id}")
async def admin_update_user(
    user_id: str,
    data: AdminUpdateUserRequest,
    actor: Actor = Depends(require(ResourceKind.USERS, Action.UPDATE)),
    users: UserService = Depends(get_user_service),
):
    user = await users.update_user(actor, user_id, **data.model_dump(exclude_none=True))
    return user.public_dict()


@app.post("/admin/users/{user_id}/deactivate")
async def admin_deactivate_user(
    user_id: str,
    actor: Actor = Depends(require(ResourceKind.USERS, Action.DEACTIVATE)),
    users: UserService = Depends(get_user_service),
):
    report = await users.deactivate_user(actor, user_id)
    return {"message": "User deactivated", "cascade": report.steps}


@app.delete("/admin/users/{user_id}")
async def admin_delete_user(
    user_id: str,
    actor: Actor = Depends(require(ResourceKind.USERS, Action.DELETE)),
    users: UserService = Depends(get_user_service),
):
    report = await users.delete_user(actor, user_id)
    return {"message": "User deleted", "cascade": report.steps}


# =============================================================================
# Superadmin - account creation and role changes
# =============================================================================


@app.post("/superadmin/users", status_code=201)
async def superadmin_create_user(
    data: CreateUserRequest,
    actor: Actor = Depends(require(ResourceKind.USERS, Action.CREATE)),
    users: UserService = Depends(get_user_service),
):
    user = await users.create_user(actor, data.username, data.email, data.password, data.role)
    return user.public_dict()


@app.post("/superadmin/users/{user_id}/promote")
async def superadmin_promote(
    user_id: str,
    actor: Actor = Depends(require(ResourceKind.USERS, Action.PROMOTE)),
    users: UserService = Depends(get_user_service),
):
    user = await users.promote(actor, user_id)
    return user.public_dict()


@app.post("/superadmin/users/{user_id}/demote")
async def superadmin_demote(
    user_id: str,
    actor: Actor = Depends(require(ResourceKind.USERS, Action.PROMOTE)),
    users: UserService = Depends(get_user_service),
):
    user = await users.demote(actor, user_id)
    return user.public_dict()
