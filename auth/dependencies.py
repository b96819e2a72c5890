"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The only credential a request carries is an opaque session token:

    Authorization: Bearer <token>

The token is resolved against the ephemeral store (auth/sessions.py). Route
handlers receive the authenticated principal as an explicit parameter; no
user is stashed on request.state.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() resolves the session and raises HTTP 401 or 403.

Layer rule: no imports from messages/ or storage/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthErrorKind, Rejected
from auth.models import User
from auth.sessions import resolve_admin_session, resolve_session


def bearer_token(request: Request) -> str:
    """Return the Bearer token from the Authorization header, or "" if absent."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def try_get_current_user(request: Request) -> User | None:
    """Resolve the request's session. Returns None on any failure, never raises."""
    token = bearer_token(request)
    if not token:
        return None
    return resolve_session(request.app.state.kv, request.app.state.user_store, token)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> User:
    """Require an admin session. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin.

    Use as a FastAPI dependency:
        @router.get("/admin/users")
        async def route(admin: User = Depends(require_admin)): ...
    """
    result = resolve_admin_session(request.app.state.kv, request.app.state.user_store, bearer_token(request))
    if isinstance(result, Rejected):
        status = 401 if result.kind == AuthErrorKind.unauthorized else 403
        raise HTTPException(status_code=status, detail={"code": result.kind.value, "message": result.message})
    return result
