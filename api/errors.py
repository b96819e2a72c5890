"""
api/errors.py -- Map auth.errors.Rejected results onto HTTP responses.

Route handlers turn ceremony and session results into HTTP errors here by
calling raise_rejected(result). auth/dependencies.py raises its own 401/403
for the bearer-token dependencies, since auth/ does not import from api/.
The HTTPException handler in api/main.py wraps the detail dict in the
ErrorResponse envelope:

    {"error": {"code": "<kind>", "message": "...", "detail": "<field>|null"}}
"""

from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException

from auth.errors import AuthErrorKind, Rejected

STATUS_BY_KIND: dict[AuthErrorKind, int] = {
    AuthErrorKind.malformed_input: 400,
    AuthErrorKind.challenge_expired: 400,
    AuthErrorKind.credential_not_found: 404,
    AuthErrorKind.conflict: 409,
    AuthErrorKind.verification_failed: 400,
    AuthErrorKind.unauthorized: 401,
    AuthErrorKind.forbidden: 403,
    AuthErrorKind.store_unavailable: 503,
}


def error_detail(code: str, message: str, detail: str | None = None) -> dict:
    return {"code": code, "message": message, "detail": detail}


def raise_rejected(rejected: Rejected) -> NoReturn:
    """Raise the HTTPException for a Rejected result."""
    raise HTTPException(
        status_code=STATUS_BY_KIND[rejected.kind],
        detail=error_detail(rejected.kind.value, rejected.message, rejected.field),
    )


def raise_error(status_code: int, code: str, message: str) -> NoReturn:
    """Raise a structured HTTPException for failures outside the auth core."""
    raise HTTPException(status_code=status_code, detail=error_detail(code, message))
