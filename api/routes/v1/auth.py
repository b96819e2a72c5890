"""
api/routes/v1/auth.py -- Passkey registration, login, and session endpoints.

Routes:
  POST /api/v1/auth/register/challenge  -- creation options for a new account
  POST /api/v1/auth/register/verify     -- verify attestation; returns session token
  POST /api/v1/auth/login/challenge     -- request options for a discoverable-credential login
  POST /api/v1/auth/login/verify        -- verify assertion; returns session token
  POST /api/v1/auth/logout              -- destroy the bearer session (idempotent)
  GET  /api/v1/auth/session             -- {valid, user} for the bearer session
  GET  /api/v1/auth/passkeys            -- caller's registered passkeys
  POST /api/v1/auth/passkeys/challenge  -- creation options for an additional passkey

Every ceremony is two requests correlated only by the challenge stored in the
ephemeral store; see auth/challenges.py and auth/ceremony.py.

Security:
  Challenge and verify endpoints are rate-limited per IP (CEREMONY_RATE_LIMIT).
  Cache-Control: no-store on every response carrying options or a token.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.errors import raise_error, raise_rejected
from api.limiter import ceremony_limit, limiter
from api.models import (
    PasskeyResponse,
    RegisterChallengeRequest,
    RegisterVerifyRequest,
    SessionResponse,
    UserResponse,
    VerifiedResponse,
)
from api.relying_party import relying_party
from auth.ceremony import verify_authentication, verify_registration
from auth.challenges import issue_authentication_challenge, issue_registration_challenge
from auth.dependencies import bearer_token, get_current_user, try_get_current_user
from auth.errors import Rejected
from auth.models import ROLE_ADMIN, ROLE_USER, RelyingParty, User
from auth.sessions import destroy_session, token_hint
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("forum.api")

# Auth policy:
# - POST /api/v1/auth/register/*:          public
# - POST /api/v1/auth/login/*:             public
# - POST /api/v1/auth/logout:              bearer token required (401 if missing)
# - GET  /api/v1/auth/session:             optional -- reports {valid: false} instead of 401
# - GET  /api/v1/auth/passkeys:            requires auth (get_current_user)
# - POST /api/v1/auth/passkeys/challenge:  requires auth (get_current_user)
router = APIRouter()


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _account_for_registration(user_store: UserStore, username: str, email: str) -> User:
    """Return the user a registration challenge should be bound to.

    A new username/email pair creates the account now. The same pair with no
    credential yet is an abandoned registration and is reused. Any other
    overlap with an existing account is a conflict.
    """
    by_name = user_store.get_by_username(username)
    by_email = user_store.get_by_email(email)
    if by_name is None and by_email is None:
        role = ROLE_USER
        bootstrap = get_settings().bootstrap_admin_username
        if bootstrap and username == bootstrap and user_store.count_admins() == 0:
            role = ROLE_ADMIN
            logger.warning("Bootstrapping %r as the first admin account", username)
        try:
            user_id = user_store.create_user(User(username=username, email=email, role=role))
        except IntegrityError:
            raise_error(409, "conflict", "Username or email is already registered.")
        return user_store.get_by_id(user_id)
    if by_name is not None and by_email is not None and by_name.id == by_email.id:
        if user_store.count_credentials(by_name.id) == 0:
            return by_name
    raise_error(409, "conflict", "Username or email is already registered.")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@limiter.limit(ceremony_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register/challenge")
def register_challenge(
    request: Request,
    body: RegisterChallengeRequest,
    rp: RelyingParty = Depends(relying_party),
) -> JSONResponse:
    """Create (or resume) the account and return WebAuthn creation options."""
    settings = get_settings()
    if not settings.registration_enabled:
        raise_error(403, "forbidden", "Registration is disabled.")

    user_store: UserStore = request.app.state.user_store
    user = _account_for_registration(user_store, body.username, body.email)
    options = issue_registration_challenge(
        request.app.state.kv, rp, user, user_store.list_credentials(user.id), settings.challenge_ttl_seconds
    )
    return _no_store(options)


@limiter.limit(ceremony_limit)
@router.post("/auth/register/verify", response_model=VerifiedResponse)
def register_verify(
    request: Request,
    body: RegisterVerifyRequest,
    rp: RelyingParty = Depends(relying_party),
) -> JSONResponse:
    """Verify the attestation, store the passkey, and start a session."""
    result = verify_registration(
        request.app.state.kv,
        request.app.state.user_store,
        rp,
        body.response,
        get_settings().session_ttl_seconds,
    )
    if isinstance(result, Rejected):
        raise_rejected(result)
    return _no_store(VerifiedResponse(token=result.token).model_dump())


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@limiter.limit(ceremony_limit)
@router.post("/auth/login/challenge")
def login_challenge(request: Request, rp: RelyingParty = Depends(relying_party)) -> JSONResponse:
    """Return WebAuthn request options. The user is identified by the assertion."""
    options = issue_authentication_challenge(request.app.state.kv, rp, get_settings().challenge_ttl_seconds)
    return _no_store(options)


@limiter.limit(ceremony_limit)
@router.post("/auth/login/verify", response_model=VerifiedResponse)
def login_verify(
    request: Request,
    body: dict[str, Any],
    rp: RelyingParty = Depends(relying_party),
) -> JSONResponse:
    """Verify an AuthenticationResponseJSON body and start a session."""
    settings = get_settings()
    result = verify_authentication(
        request.app.state.kv,
        request.app.state.user_store,
        rp,
        body,
        settings.session_ttl_seconds,
        allow_zero_counters=settings.allow_zero_counters,
    )
    if isinstance(result, Rejected):
        raise_rejected(result)
    return _no_store(VerifiedResponse(token=result.token).model_dump())


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(request: Request) -> dict:
    """Destroy the presented session. Unknown or expired tokens still succeed."""
    token = bearer_token(request)
    if not token:
        raise_error(401, "unauthorized", "Missing bearer token.")
    destroy_session(request.app.state.kv, token)
    logger.info("Session %s logged out", token_hint(token))
    return {"message": "Logged out."}


@router.get("/auth/session", response_model=SessionResponse)
def session(request: Request) -> SessionResponse:
    """Report whether the bearer token is a live session, and whose."""
    user = try_get_current_user(request)
    if user is None:
        return SessionResponse(valid=False)
    return SessionResponse(valid=True, user=UserResponse.from_user(user))


# ---------------------------------------------------------------------------
# Passkey management (authenticated)
# ---------------------------------------------------------------------------


@router.get("/auth/passkeys", response_model=list[PasskeyResponse])
def list_passkeys(request: Request, current_user: User = Depends(get_current_user)) -> list[PasskeyResponse]:
    user_store: UserStore = request.app.state.user_store
    return [
        PasskeyResponse(
            id=c.id,
            transports=c.transports,
            sign_count=c.sign_count,
            created_at=c.created_at or "",
            last_used_at=c.last_used_at,
        )
        for c in user_store.list_credentials(current_user.id)
    ]


@limiter.limit(ceremony_limit)
@router.post("/auth/passkeys/challenge")
def add_passkey_challenge(
    request: Request,
    rp: RelyingParty = Depends(relying_party),
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Creation options for another passkey on the caller's account.

    Finish with POST /auth/register/verify. Existing passkeys are listed in
    excludeCredentials so the same authenticator is not enrolled twice.
    """
    user_store: UserStore = request.app.state.user_store
    options = issue_registration_challenge(
        request.app.state.kv,
        rp,
        current_user,
        user_store.list_credentials(current_user.id),
        get_settings().challenge_ttl_seconds,
    )
    return _no_store(options)
