# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   POST   /auth/register    - Create account
#   POST   /auth/login       - Get tokens (reactivates a deactivated account)
#   POST   /auth/refresh     - Rotate tokens
#   POST   /auth/logout      - Revoke tokens
#   GET    /auth/me          - Get current user
#   PATCH  /auth/me          - Update current user
#   POST   /auth/deactivate  - Deactivate own account
#   DELETE /auth/me          - Delete own account (password + confirmation)
#
# =============================================================================

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field

from postboard.auth.context import Actor
from postboard.auth.jwt import (
    TokenPair,
    TokenError,
    TokenExpiredError,
    TokenPayload,
    create_token_pair,
    decode_token,
    refresh_tokens,
)
from postboard.auth.policies import (
    get_storage,
    get_token_payload,
    is_revoked,
    require_identity,
    revoke,
)
from postboard.config import get_settings
from postboard.core.models import Profile, Role, SUPERADMIN_ID
from postboard.services.users import AccountError, UserService

router = APIRouter(prefix="/auth", tags=["auth"])


def get_user_service(request: Request) -> UserService:
    return request.app.state.users


# =============================================================================
# Request/Response Models
# =============================================================================

class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(min_length=6)
    profile: Profile | None = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class UpdateMeRequest(BaseModel):
    username: str | None = Field(default=None, min_length=3, max_length=30)
    email: EmailStr | None = None
    profile: dict[str, Any] | None = None


class DeleteAccountRequest(BaseModel):
    password: str
    confirm_delete: str


class AuthResponse(BaseModel):
    user: dict[str, Any]
    tokens: TokenPair
    was_reactivated: bool = False


def _superadmin_profile() -> dict[str, Any]:
    return {
        "id": SUPERADMIN_ID,
        "username": "superadmin",
        "email": get_settings().superadmin_email,
        "role": Role.SUPERADMIN.value,
        "is_active": True,
    }


# =============================================================================
# Public Endpoints
# =============================================================================

@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(data: RegisterRequest, users: UserService = Depends(get_user_service)):
    """
    Create a new account.

    Returns access and refresh tokens on success.
    """
    try:
        user = await users.register(data.username, data.email, data.password, data.profile)
    except AccountError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AuthResponse(user=user.public_dict(), tokens=create_token_pair(user.id))


@router.post("/login", response_model=AuthResponse)
async def login(data: LoginRequest, users: UserService = Depends(get_user_service)):
    """
    Authenticate and get tokens.

    Logging in to a deactivated account reactivates it and restores its content.
    """
    result = await users.authenticate(data.email, data.password)
    if result is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if result.user is None:
        return AuthResponse(
            user=_superadmin_profile(),
            tokens=create_token_pair(SUPERADMIN_ID, role=Role.SUPERADMIN.value),
        )

    return AuthResponse(
        user=result.user.public_dict(),
        tokens=create_token_pair(result.user.id),
        was_reactivated=result.was_reactivated,
    )


@router.post("/refresh", response_model=TokenPair)
async def refresh(data: RefreshRequest, request: Request):
    """
    Use refresh token to get new tokens. The old refresh token is revoked.
    """
    cache = get_storage(request).cache
    try:
        payload, tokens = refresh_tokens(data.refresh_token)
    except TokenExpiredError:
        raise HTTPException(status_code=401, detail="Refresh token expired, please login again")
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))

    if await is_revoked(cache, payload.jti):
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")

    await revoke(cache, payload)
    return tokens


@router.post("/logout")
async def logout(
    request: Request,
    data: LogoutRequest | None = None,
    access: TokenPayload | None = Depends(get_token_payload),
):
    """
    Logout: revoke the presented access token and, if given, the refresh token.
    """
    cache = get_storage(request).cache
    if access is not None:
        await revoke(cache, access)
    if data and data.refresh_token:
        try:
            await revoke(cache, decode_token(data.refresh_token, expected_type="refresh"))
        except TokenError:
            pass  # Already unusable
    return {"message": "Logged out successfully"}


# =============================================================================
# Protected Endpoints
# =============================================================================

async def require_account(actor: Actor = Depends(require_identity)) -> Actor:
    """An authenticated actor backed by a stored account (not the superadmin)."""
    if actor.is_superadmin:
        raise HTTPException(
            status_code=400,
            detail="The superadmin account is configured, not stored; change it through settings",
        )
    return actor


@router.get("/me")
async def get_current_user(
    actor: Actor = Depends(require_identity),
    users: UserService = Depends(get_user_service),
):
    """
    Get the current authenticated user.
    """
    if actor.is_superadmin:
        return _superadmin_profile()
    user = await users.get_user(actor, actor.identity)
    return user.public_dict()


@router.patch("/me")
async def update_current_user(
    data: UpdateMeRequest,
    actor: Actor = Depends(require_account),
    users: UserService = Depends(get_user_service),
):
    """
    Update the current user's account details and profile.
    """
    user = await users.update_user(
        actor,
        actor.identity,
        username=data.username,
        email=data.email,
        profile=data.profile,
    )
    return user.public_dict()


@router.post("/deactivate")
async def deactivate_current_user(
    actor: Actor = Depends(require_account),
    users: UserService = Depends(get_user_service),
):
    """
    Deactivate the current account. Its posts are archived and its
    interactions hidden until the next login.
    """
    report = await users.deactivate_user(actor, actor.identity)
    return {"message": "Account deactivated", "cascade": report.steps}


@router.delete("/me")
async def delete_current_user(
    data: DeleteAccountRequest,
    actor: Actor = Depends(require_account),
    users: UserService = Depends(get_user_service),
):
    """
    Permanently delete the current account and everything it owns.
    """
    report = await users.delete_own_account(actor, data.password, data.confirm_delete)
    return {"message": "Account deleted", "cascade": report.steps}
