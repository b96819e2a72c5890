"""
api/routes/v1/admin.py -- Admin login and user management endpoints.

Routes:
  POST   /api/v1/admin/login/challenge  -- request options (same ceremony as user login)
  POST   /api/v1/admin/login/verify     -- verify assertion; admin role required for a session
  GET    /api/v1/admin/users            -- paginated user list (admin only)
  GET    /api/v1/admin/users/{id}       -- user detail (admin only)
  PUT    /api/v1/admin/users/{id}       -- update level / role (admin only)
  DELETE /api/v1/admin/users/{id}       -- delete user and their passkeys (admin only)

Admin access is decided by auth.models.is_admin() alone. A non-admin whose
assertion verifies gets 403 and no session.

Security:
  Demoting or deleting the last admin is refused (no recovery path without
  database access). Admins cannot delete their own account.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

from api.errors import raise_error, raise_rejected
from api.limiter import ceremony_limit, limiter
from api.models import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Pagination,
    UserListResponse,
    UserResponse,
    UserUpdate,
    VerifiedResponse,
)
from api.relying_party import relying_party
from auth.ceremony import verify_authentication
from auth.challenges import issue_authentication_challenge
from auth.dependencies import require_admin
from auth.errors import Rejected
from auth.models import ROLE_ADMIN, RelyingParty, User
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("forum.api")

# Auth policy:
# - POST /api/v1/admin/login/*:   public -- role is checked after the assertion verifies
# - everything else:              requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Admin login
# ---------------------------------------------------------------------------


@limiter.limit(ceremony_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/admin/login/challenge")
def admin_login_challenge(request: Request, rp: RelyingParty = Depends(relying_party)) -> JSONResponse:
    options = issue_authentication_challenge(request.app.state.kv, rp, get_settings().challenge_ttl_seconds)
    resp = JSONResponse(content=options)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(ceremony_limit)
@router.post("/admin/login/verify", response_model=VerifiedResponse)
def admin_login_verify(
    request: Request,
    body: dict[str, Any],
    rp: RelyingParty = Depends(relying_party),
) -> JSONResponse:
    """Verify an assertion and start an admin session (ADMIN_SESSION_TTL_SECONDS)."""
    settings = get_settings()
    result = verify_authentication(
        request.app.state.kv,
        request.app.state.user_store,
        rp,
        body,
        settings.admin_session_ttl_seconds,
        allow_zero_counters=settings.allow_zero_counters,
        require_admin=True,
    )
    if isinstance(result, Rejected):
        raise_rejected(result)
    logger.info("Admin session started for user %s", result.user.id)
    resp = JSONResponse(content=VerifiedResponse(token=result.token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# User management
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    admin: User = Depends(require_admin),
) -> UserListResponse:
    """List users, newest first."""
    user_store: UserStore = request.app.state.user_store
    users = user_store.list_users(limit=page_size, offset=(page - 1) * page_size)
    return UserListResponse(
        data=[UserResponse.from_user(u) for u in users],
        pagination=Pagination.build(page, page_size, user_store.count_users()),
    )


@router.get("/admin/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: str, admin: User = Depends(require_admin)) -> UserResponse:
    return UserResponse.from_user(_get_or_404(request.app.state.user_store, user_id))


@router.put("/admin/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdate,
    admin: User = Depends(require_admin),
) -> UserResponse:
    """Update a user's level or role.

    Demoting the last admin is refused with 409.
    """
    user_store: UserStore = request.app.state.user_store
    target = _get_or_404(user_store, user_id)

    updates: dict = {}
    if body.level is not None:
        updates["level"] = body.level
    if body.role is not None:
        if target.role == ROLE_ADMIN and body.role.value != ROLE_ADMIN and user_store.count_admins() <= 1:
            raise_error(409, "last_admin", "Cannot demote the last admin account.")
        updates["role"] = body.role.value

    if not updates:
        raise_error(400, "no_changes", "No fields to update.")

    user_store.update_user(user_id, **updates)
    logger.info("Admin %s updated user %s: %s", admin.id, user_id, sorted(updates))
    return UserResponse.from_user(_get_or_404(user_store, user_id))


@router.delete("/admin/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: str, admin: User = Depends(require_admin)) -> Response:
    """Delete a user. Their passkeys go with them; their sessions stop resolving."""
    user_store: UserStore = request.app.state.user_store
    target = _get_or_404(user_store, user_id)
    if target.id == admin.id:
        raise_error(400, "self_delete", "You cannot delete your own account.")
    if target.role == ROLE_ADMIN and user_store.count_admins() <= 1:
        raise_error(409, "last_admin", "Cannot delete the last admin account.")
    user_store.delete_user(user_id)
    logger.info("Admin %s deleted user %s", admin.id, user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_or_404(user_store: UserStore, user_id: str) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise_error(404, "not_found", "User not found.")
    return user
