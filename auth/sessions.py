"""
auth/sessions.py -- Opaque bearer session tokens backed by the ephemeral store.

A session is the KV entry session:<token> -> user id with a TTL. Possession of
a live token is sufficient to act as its user. Sessions are never renewed;
when the TTL runs out the user authenticates again.

Tokens are secrets.token_urlsafe(32): 256 bits of entropy, so no collision
check is made. put() overwrites on the astronomically unlikely collision.

Logging never includes a full token, only its first 8 characters.

Layer rule: no imports from api/, messages/, or storage/.
"""

from __future__ import annotations

import logging
import secrets

from auth.errors import ADMIN_REQUIRED, UNAUTHORIZED, Rejected
from auth.models import User, is_admin
from auth.store import UserStore
from cache.store import EphemeralStore

logger = logging.getLogger("forum.auth")

SESSION_PREFIX = "session:"


def _session_key(token: str) -> str:
    return f"{SESSION_PREFIX}{token}"


def token_hint(token: str) -> str:
    return token[:8] + "..."


def create_session(kv: EphemeralStore, user_id: str, ttl_seconds: int) -> str:
    """Mint a new token bound to user_id and return it."""
    token = secrets.token_urlsafe(32)
    kv.put(_session_key(token), user_id, ttl_seconds)
    logger.info("Session created for user %s (%s)", user_id, token_hint(token))
    return token


def resolve_session(kv: EphemeralStore, users: UserStore, token: str) -> User | None:
    """Return the User bound to token, or None if the token is not valid.

    A live token whose user has since been deleted is invalid; the dangling
    entry is removed here so the next lookup short-circuits on the KV miss.
    """
    if not token:
        return None
    user_id = kv.get(_session_key(token))
    if user_id is None:
        return None
    user = users.get_by_id(user_id)
    if user is None:
        kv.delete(_session_key(token))
        logger.info("Removed session %s for deleted user %s", token_hint(token), user_id)
        return None
    return user


def resolve_admin_session(kv: EphemeralStore, users: UserStore, token: str) -> User | Rejected:
    """Resolve token and require the admin role.

    Returns the User, or Rejected with kind unauthorized (no valid session)
    or forbidden (valid session, not an admin).
    """
    user = resolve_session(kv, users, token)
    if user is None:
        return UNAUTHORIZED
    if not is_admin(user):
        logger.warning("Non-admin user %s attempted admin access", user.id)
        return ADMIN_REQUIRED
    return user


def destroy_session(kv: EphemeralStore, token: str) -> None:
    """End a session. Destroying an unknown or already destroyed token is a no-op."""
    kv.delete(_session_key(token))
