"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and routes do the work. The one exception is is_admin(), the
single authorization predicate every admin surface goes through.

Layer rule: no imports from api/, messages/, or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROLE_USER = "user"
ROLE_ADMIN = "admin"


@dataclass
class User:
    """A forum account.

    id is an opaque UUID string assigned by the store on insert. The record is
    created when the first registration challenge is issued for a new
    username/email pair; it becomes a usable account once a credential is
    bound to it by a successful registration ceremony.
    """

    username: str
    email: str
    role: str = ROLE_USER  # "user" | "admin"
    level: int = 1
    id: str | None = None
    avatar: str | None = None
    profile_bio: str | None = None
    created_at: str | None = None


@dataclass
class Credential:
    """A WebAuthn public-key credential (passkey) owned by exactly one user.

    id is the base64url form of the authenticator's raw credential id and is
    the lookup key for authentication. sign_count is the last counter value
    accepted for this credential; it never decreases.
    """

    id: str
    user_id: str
    public_key: bytes  # COSE_Key bytes as returned by the authenticator
    sign_count: int = 0
    transports: list[str] = field(default_factory=list)
    created_at: str | None = None
    last_used_at: str | None = None


@dataclass(frozen=True)
class RelyingParty:
    """The WebAuthn relying party a ceremony is bound to.

    id is the registrable domain the credential is scoped to ("example.com");
    origin is the exact scheme://host[:port] the browser must report.
    """

    id: str
    name: str
    origin: str


def is_admin(user: User) -> bool:
    """Return True if the user may act on admin surfaces.

    Role is the only input. An account named "admin" gets no privileges from
    its name.
    """
    return user.role == ROLE_ADMIN
