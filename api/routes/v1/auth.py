"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST  /api/v1/auth/register              -- create account; sets token cookies; 201
  POST  /api/v1/auth/login                 -- password login; sets token cookies
  POST  /api/v1/auth/logout                -- deletes the session, clears cookies; 200
  POST  /api/v1/auth/refresh-token         -- rotate the session; sets new cookies
  GET   /api/v1/auth/profile               -- current user record (requires auth)
  PATCH /api/v1/auth/profile               -- update own email/avatar (requires auth)
  GET   /api/v1/auth/users                 -- list all users (admin only)
  PUT   /api/v1/auth/users/{user_id}/group -- change a user's group (admin only)

Security:
  register and login are rate-limited per IP (CREDENTIAL_LIMIT).
  Cache-Control: no-store on every response that carries fresh tokens.
  Route handlers stay thin: every rule lives in AuthService, which raises
  ServiceError; api/main.py turns that into the error envelope.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import CREDENTIAL_LIMIT, limiter
from api.models import (
    GroupUpdate,
    LoginRequest,
    MessageResponse,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    UserListResponse,
    UserResponse,
)
from auth.dependencies import extract_access_token, get_current_actor, try_get_current_actor
from auth.models import Actor
from auth.service import AuthResult, AuthService
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies

# Auth policy:
# - POST  /auth/register, /auth/login:   public, rate-limited
# - POST  /auth/logout:                  soft auth (no token is not an error)
# - POST  /auth/refresh-token:           refresh secret + signed (possibly expired) access token
# - GET   /auth/profile, PATCH:          requires auth (get_current_actor)
# - GET   /auth/users, PUT .../group:    requires auth; admin check inside AuthService
router = APIRouter()


def _token_response(request: Request, result: AuthResult, status_code: int = 200) -> JSONResponse:
    """Public user record in the body, both tokens in cookies."""
    resp = JSONResponse(
        status_code=status_code,
        content=UserResponse.from_user(result.user).model_dump(by_alias=True),
    )
    set_auth_cookies(resp, result.tokens, secure=request.app.state.settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _refresh_secret(request: Request, body: Optional[RefreshRequest]) -> Optional[str]:
    secret = body.refresh_token if body is not None else None
    return secret or request.cookies.get(REFRESH_COOKIE)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(CREDENTIAL_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and open its first session."""
    service: AuthService = request.app.state.auth_service
    result = service.register(
        username=body.username,
        email=body.email,
        password=body.password,
        group=body.group,
        avatar_url=body.avatar_url,
    )
    return _token_response(request, result, status_code=201)


@limiter.limit(CREDENTIAL_LIMIT)
@router.post("/auth/login", response_model=UserResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    Wrong username and wrong password return the same 401 body.
    """
    service: AuthService = request.app.state.auth_service
    result = service.login(body.username, body.password)
    return _token_response(request, result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """End the caller's session if one is identifiable; always clear cookies.

    The session is found through a valid access token or through the refresh
    secret (JSON body first, then cookie), so an expired access token does
    not leave the refresh secret alive.
    """
    service: AuthService = request.app.state.auth_service
    service.logout(try_get_current_actor(request), _refresh_secret(request, body))
    resp = JSONResponse(content=MessageResponse(message="Successfully logged out.").model_dump())
    clear_auth_cookies(resp)
    return resp


@router.post("/auth/refresh-token", response_model=UserResponse)
def refresh_token(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh secret for a new token pair.

    The refresh secret comes from the JSON body when given, else the
    refreshToken cookie. The old secret stops working immediately.
    """
    service: AuthService = request.app.state.auth_service
    result = service.refresh(_refresh_secret(request, body), extract_access_token(request))
    return _token_response(request, result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=UserResponse)
def get_profile(request: Request, actor: Actor = Depends(get_current_actor)) -> UserResponse:
    """Return the stored record of the current user (not the token claims)."""
    service: AuthService = request.app.state.auth_service
    return UserResponse.from_user(service.get_profile(actor))


@router.patch("/auth/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    actor: Actor = Depends(get_current_actor),
) -> UserResponse:
    service: AuthService = request.app.state.auth_service
    user = service.update_profile(actor, email=body.email, avatar_url=body.avatar_url)
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=UserListResponse)
def list_users(request: Request, actor: Actor = Depends(get_current_actor)) -> UserListResponse:
    """List all user accounts. Admin only."""
    service: AuthService = request.app.state.auth_service
    return UserListResponse(users=[UserResponse.from_user(u) for u in service.list_users(actor)])


@router.put("/auth/users/{user_id}/group", response_model=UserResponse)
def update_user_group(
    request: Request,
    user_id: int,
    body: GroupUpdate,
    actor: Actor = Depends(get_current_actor),
) -> UserResponse:
    """Move a user to another group. Admin only; admins cannot demote themselves.

    The target's already-issued access tokens keep their old group claim
    until they expire.
    """
    service: AuthService = request.app.state.auth_service
    return UserResponse.from_user(service.update_user_group(actor, user_id, body.group))
