"""
auth/errors.py -- Closed set of outcomes for ceremony and session operations.

Operations in auth/ceremony.py and auth/sessions.py return a value rather than
raising for expected failures:

    result = verify_authentication(...)
    if isinstance(result, Rejected):
        ...  # result.kind is one of AuthErrorKind
    else:
        ...  # result is a Verified

The API layer maps each kind to an HTTP status in exactly one place
(api/errors.py). Unexpected errors (bugs) still raise and are handled by the
catch-all exception handler.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AuthErrorKind(str, Enum):
    """Machine-readable rejection kinds. Values are the wire error codes."""

    malformed_input = "malformed_input"
    challenge_expired = "challenge_expired"
    credential_not_found = "credential_not_found"
    conflict = "conflict"
    verification_failed = "verification_failed"
    unauthorized = "unauthorized"
    forbidden = "forbidden"
    store_unavailable = "store_unavailable"


@dataclass(frozen=True)
class Rejected:
    """A failed operation.

    message is safe to show to the client. field names the offending input for
    malformed_input rejections and is None otherwise.
    """

    kind: AuthErrorKind
    message: str
    field: str | None = None


def malformed(field: str, message: str) -> Rejected:
    return Rejected(AuthErrorKind.malformed_input, message, field)


CHALLENGE_EXPIRED = Rejected(
    AuthErrorKind.challenge_expired,
    "Challenge expired or unknown. Please try again.",
)
CREDENTIAL_NOT_FOUND = Rejected(AuthErrorKind.credential_not_found, "Credential not found.")
VERIFICATION_FAILED = Rejected(AuthErrorKind.verification_failed, "Verification failed.")
STORE_UNAVAILABLE = Rejected(
    AuthErrorKind.store_unavailable,
    "Service temporarily unavailable. Please try again.",
)
UNAUTHORIZED = Rejected(AuthErrorKind.unauthorized, "Session expired or invalid.")
ADMIN_REQUIRED = Rejected(AuthErrorKind.forbidden, "Admin access required.")
