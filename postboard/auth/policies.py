"""
Policies - the interface between routes and the decision engine.

Route handlers declare what they need:
    actor: Actor = Depends(get_actor)                      # anyone, maybe anonymous
    actor: Actor = Depends(require(ResourceKind.USERS, Action.PROMOTE))

Design:
- A missing or bad credential is not an error: the actor is anonymous
- `require()` rejects up front when the matrix grants the role nothing at all
  (401 without an identity, 403 with one)
- Per-resource decisions are taken in the services, which see the resource
- Per-resource denials become 403, or 404 for anonymous actors so that they
  cannot tell a hidden resource from a missing one
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from postboard.auth.capabilities import Action, Mode, ResourceKind, get_permission_matrix
from postboard.auth.context import Actor, resolve_actor
from postboard.auth.engine import AuthorizationDenied
from postboard.auth.jwt import TokenError, TokenPayload, decode_token
from postboard.core.utils import utc_now
from postboard.integrations.sentry import set_user
from postboard.storage.base import CacheStorage, StorageProvider

logger = logging.getLogger(__name__)


# Cache key prefix for revoked token ids
REVOKED_PREFIX = "revoked:"


# =============================================================================
# Token Handling
# =============================================================================


# Optional JWT bearer (doesn't fail if no token)
optional_bearer = HTTPBearer(auto_error=False)


async def is_revoked(cache: CacheStorage, jti: str) -> bool:
    return bool(jti) and await cache.exists(f"{REVOKED_PREFIX}{jti}")


async def revoke(cache: CacheStorage, payload: TokenPayload) -> None:
    """Blacklist a token id until the token would have expired anyway."""
    ttl = max(int((payload.exp - utc_now()).total_seconds()), 1)
    await cache.set(f"{REVOKED_PREFIX}{payload.jti}", True, ttl=ttl)


def get_storage(request: Request) -> StorageProvider:
    return request.app.state.storage


async def get_token_payload(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
) -> TokenPayload | None:
    """Validated access-token claims, or None."""
    if not credentials:
        return None

    try:
        payload = decode_token(credentials.credentials, expected_type="access")
    except TokenError as e:
        logger.debug("Ignoring bad credential: %s", e)
        return None

    if await is_revoked(get_storage(request).cache, payload.jti):
        return None
    return payload


async def get_actor(
    request: Request,
    payload: TokenPayload | None = Depends(get_token_payload),
) -> Actor:
    """
    Resolve the acting identity for this request.

    The actor is kept on ``request.state`` so that denials raised deeper
    down can be mapped to 403 or 404.
    """
    if payload is None:
        actor = Actor.anonymous()
    else:
        actor = await resolve_actor(payload.sub, payload.role, get_storage(request))
        if actor.is_authenticated:
            set_user(actor.identity, actor.role.value)
    request.state.actor = actor
    return actor


# =============================================================================
# Main Interface - the require() function
# =============================================================================


def require(kind: ResourceKind, action: Action) -> Callable:
    """
    Require that the actor's role can perform ``action`` on ``kind`` at all.

    Usage:
        @app.post("/admin/users/{user_id}/promote")
        async def promote(
            user_id: str,
            actor: Actor = Depends(require(ResourceKind.USERS, Action.PROMOTE)),
        ):
            ...

    Returns:
        FastAPI Depends that resolves to the Actor
    """
    matrix = get_permission_matrix()

    async def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if matrix.lookup(actor.effective_role, kind, action) == Mode.NONE:
            if not actor.is_authenticated:
                raise HTTPException(status_code=401, detail="Authentication required")
            raise HTTPException(status_code=403, detail="Access denied")
        return actor

    return dependency


async def require_identity(actor: Actor = Depends(get_actor)) -> Actor:
    """Just require an authenticated, active account."""
    if not actor.is_authenticated:
        raise HTTPException(status_code=401, detail="Authentication required")
    return actor


# =============================================================================
# Denial Mapping
# =============================================================================


def denial_for(actor: Actor, exc: AuthorizationDenied | None = None) -> HTTPException:
    """
    Map a denial to an HTTP error.

    Anonymous actors get the same 404 a missing resource produces.
    """
    if exc is not None:
        logger.debug("Denied: %s", exc.decision.reason)
    if not actor.is_authenticated:
        return HTTPException(status_code=404, detail="Not found")
    return HTTPException(status_code=403, detail="Access denied")
