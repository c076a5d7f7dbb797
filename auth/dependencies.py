"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and access.

The access token is read from, in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "accessToken" cookie -- set by register/login/refresh.

A present but malformed Authorization header is a hard 401 with a
format-specific message; the cookie is not consulted in that case.

Verification is purely cryptographic (TokenIssuer.verify_access_token); no
store is read, so this runs cheaply on every request. The resulting Actor
reflects the claims at issue time.

try_get_current_actor() is the soft variant (returns None on failure).
get_current_actor() raises unauthorized. require_admin() adds forbidden.
require_category_access() / require_product_access() run the access
evaluator against the {category_id} / {product_id} path parameter.

Layer rule: this module may import from fastapi because it is part of the
dependency injection seam. It does not import from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.access import AccessEvaluator, enforce
from auth.models import Actor
from auth.tokens import ACCESS_COOKIE, TokenIssuer
from core.errors import ServiceError, unauthorized


def extract_access_token(request: Request) -> str | None:
    """Return the raw access token, None if absent. Raises on a malformed header."""
    auth_header = request.headers.get("Authorization")
    if auth_header is not None:
        parts = auth_header.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
            raise unauthorized("Invalid token format. Expected 'Bearer <token>'.")
        return parts[1]
    return request.cookies.get(ACCESS_COOKIE) or None


def try_get_current_actor(request: Request) -> Actor | None:
    """Attempt to authenticate the request. Never raises."""
    issuer: TokenIssuer = request.app.state.token_issuer
    try:
        token = extract_access_token(request)
    except ServiceError:
        return None
    if not token:
        return None
    actor = issuer.verify_access_token(token)
    if actor is not None:
        request.state.actor = actor
    return actor


def get_current_actor(request: Request) -> Actor:
    """Require a valid access token and return the Actor it describes.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(actor: Actor = Depends(get_current_actor)): ...
    """
    issuer: TokenIssuer = request.app.state.token_issuer
    token = extract_access_token(request)
    if not token:
        raise unauthorized("No token provided.")
    actor = issuer.verify_access_token(token)
    if actor is None:
        raise unauthorized("Invalid or expired token.")
    request.state.actor = actor
    return actor


def require_admin(request: Request) -> Actor:
    """Require the admin group. 401 if unauthenticated, 403 otherwise."""
    actor = get_current_actor(request)
    access: AccessEvaluator = request.app.state.access
    enforce(access.require_admin(actor))
    return actor


def require_category_access(request: Request, category_id: int) -> Actor:
    actor = get_current_actor(request)
    access: AccessEvaluator = request.app.state.access
    enforce(access.check_category(actor, category_id))
    return actor


def require_product_access(request: Request, product_id: int) -> Actor:
    actor = get_current_actor(request)
    access: AccessEvaluator = request.app.state.access
    enforce(access.check_product(actor, product_id))
    return actor
