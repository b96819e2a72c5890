"""
auth/ceremony.py -- Verify WebAuthn registration and authentication responses.

Every call walks the same states:

    Issued --(response arrives)--> Verifying --> Verified | Rejected

and holds nothing between calls. The only state shared with the issuing
request is the challenge entry in the ephemeral store, consumed here with
EphemeralStore.pop() so a nonce can be verified at most once no matter how
many copies of the response are in flight.

Results are a tagged union: Verified on success, auth.errors.Rejected for
every expected failure. Store outages (sqlalchemy OperationalError) are
reported as store_unavailable; anything else is a bug and raises.

Signature counters (anti-clone):
  A reported counter that does not move past the stored one means the
  private key may exist on two devices. The response is rejected unless both
  counters are zero, which is what authenticators without a counter (most
  synced passkeys) always report. allow_zero_counters=False turns that
  exemption off.

Logging: credential ids and counter values only. Never key material, never
full session tokens.

Layer rule: no imports from api/, messages/, or storage/.
"""

from __future__ import annotations

import binascii
import json
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, OperationalError
from webauthn import verify_authentication_response, verify_registration_response
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url, parse_authenticator_data
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidAuthenticatorDataStructure,
    InvalidCBORData,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
)

from auth.challenges import LOGIN_CHALLENGE, challenge_key
from auth.errors import (
    ADMIN_REQUIRED,
    CHALLENGE_EXPIRED,
    CREDENTIAL_NOT_FOUND,
    STORE_UNAVAILABLE,
    VERIFICATION_FAILED,
    AuthErrorKind,
    Rejected,
    malformed,
)
from auth.models import Credential, RelyingParty, User, is_admin
from auth.sessions import create_session
from auth.store import UserStore
from cache.store import EphemeralStore

logger = logging.getLogger("forum.auth")

# Everything py_webauthn raises for a response that does not verify.
_VERIFY_ERRORS = (
    InvalidRegistrationResponse,
    InvalidAuthenticationResponse,
    InvalidJSONStructure,
    InvalidCBORData,
    InvalidAuthenticatorDataStructure,
    ValueError,
    KeyError,
    TypeError,
)

DUPLICATE_CREDENTIAL = Rejected(AuthErrorKind.conflict, "This passkey is already registered.")


@dataclass(frozen=True)
class Verified:
    """A successful ceremony: the authenticated user and their new session token."""

    user: User
    token: str
    credential_id: str


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _decode_b64url(value) -> bytes | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return base64url_to_bytes(value)
    except (binascii.Error, ValueError):
        return None


def extract_challenge(response: dict) -> str | Rejected:
    """Return the base64url nonce the authenticator signed over.

    The nonce lives inside response.clientDataJSON, itself base64url JSON.
    Any step that fails yields malformed_input naming the field.
    """
    inner = response.get("response") if isinstance(response, dict) else None
    if not isinstance(inner, dict):
        return malformed("response", "Missing authenticator response.")
    raw = _decode_b64url(inner.get("clientDataJSON"))
    if raw is None:
        return malformed("response.clientDataJSON", "clientDataJSON is not valid base64url.")
    try:
        client_data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return malformed("response.clientDataJSON", "clientDataJSON is not valid JSON.")
    challenge = client_data.get("challenge") if isinstance(client_data, dict) else None
    if not isinstance(challenge, str) or not challenge:
        return malformed("response.clientDataJSON", "clientDataJSON has no challenge.")
    return challenge


def _credential_id(response: dict) -> str | Rejected:
    """Canonical base64url credential id (no padding) from response.id."""
    raw = _decode_b64url(response.get("id"))
    if raw is None:
        return malformed("id", "Credential id is not valid base64url.")
    return bytes_to_base64url(raw)


def _reported_sign_count(response: dict) -> int | None:
    raw = _decode_b64url(response["response"].get("authenticatorData"))
    if raw is None:
        return None
    try:
        return parse_authenticator_data(raw).sign_count
    except _VERIFY_ERRORS:
        return None


def counter_acceptable(stored: int, reported: int, allow_zero_counters: bool = True) -> bool:
    """Anti-clone rule: the counter must strictly increase, except 0 -> 0 when allowed."""
    if reported > stored:
        return True
    return allow_zero_counters and stored == 0 and reported == 0


# ---------------------------------------------------------------------------
# Challenge consumption
# ---------------------------------------------------------------------------


def _consume(kv: EphemeralStore, response: dict) -> tuple[str, str] | Rejected:
    """Extract and atomically consume the challenge. Returns (nonce, bound value)."""
    nonce = extract_challenge(response)
    if isinstance(nonce, Rejected):
        return nonce
    bound = kv.pop(challenge_key(nonce))
    if bound is None:
        logger.info("Challenge %s... unknown, expired, or already used", nonce[:8])
        return CHALLENGE_EXPIRED
    return nonce, bound


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def verify_registration(
    kv: EphemeralStore,
    users: UserStore,
    rp: RelyingParty,
    response: dict,
    session_ttl_seconds: int,
) -> Verified | Rejected:
    """Verify an attestation response and bind the new credential to its user.

    The user is whoever the consumed challenge was issued for. Nothing is
    written unless the attestation verifies.
    """
    try:
        return _verify_registration(kv, users, rp, response, session_ttl_seconds)
    except OperationalError:
        logger.exception("Store unavailable during registration")
        return STORE_UNAVAILABLE


def _verify_registration(kv, users, rp, response, session_ttl_seconds):
    consumed = _consume(kv, response)
    if isinstance(consumed, Rejected):
        return consumed
    nonce, user_id = consumed
    if user_id == LOGIN_CHALLENGE:
        logger.warning("Authentication challenge presented to registration")
        return CHALLENGE_EXPIRED

    user = users.get_by_id(user_id)
    if user is None:
        logger.info("Registration target user %s no longer exists", user_id)
        return CHALLENGE_EXPIRED

    try:
        verified = verify_registration_response(
            credential=response,
            expected_challenge=base64url_to_bytes(nonce),
            expected_rp_id=rp.id,
            expected_origin=rp.origin,
        )
    except _VERIFY_ERRORS as exc:
        logger.warning("Registration verification failed for user %s: %s", user.id, exc)
        return VERIFICATION_FAILED

    transports = response["response"].get("transports")
    if not isinstance(transports, list):
        transports = []
    credential = Credential(
        id=bytes_to_base64url(verified.credential_id),
        user_id=user.id,
        public_key=verified.credential_public_key,
        sign_count=verified.sign_count,
        transports=[t for t in transports if isinstance(t, str)],
    )
    try:
        users.insert_credential(credential)
    except IntegrityError:
        logger.warning("Credential %s already registered", credential.id)
        return DUPLICATE_CREDENTIAL

    logger.info(
        "Registered credential %s for user %s (sign_count=%d)", credential.id, user.id, credential.sign_count
    )
    token = create_session(kv, user.id, session_ttl_seconds)
    return Verified(user=user, token=token, credential_id=credential.id)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def verify_authentication(
    kv: EphemeralStore,
    users: UserStore,
    rp: RelyingParty,
    response: dict,
    session_ttl_seconds: int,
    allow_zero_counters: bool = True,
    require_admin: bool = False,
) -> Verified | Rejected:
    """Verify an assertion, advance the credential counter, and mint a session.

    With require_admin, a genuine assertion from a non-admin still advances
    the counter but yields forbidden and no session.
    """
    try:
        return _verify_authentication(
            kv, users, rp, response, session_ttl_seconds, allow_zero_counters, require_admin
        )
    except OperationalError:
        logger.exception("Store unavailable during authentication")
        return STORE_UNAVAILABLE


def _verify_authentication(kv, users, rp, response, session_ttl_seconds, allow_zero_counters, require_admin):
    consumed = _consume(kv, response)
    if isinstance(consumed, Rejected):
        return consumed
    nonce, bound = consumed
    if bound != LOGIN_CHALLENGE:
        logger.warning("Registration challenge presented to authentication")
        return CHALLENGE_EXPIRED

    credential_id = _credential_id(response)
    if isinstance(credential_id, Rejected):
        return credential_id
    credential = users.get_credential(credential_id)
    if credential is None:
        logger.info("Unknown credential %s", credential_id)
        return CREDENTIAL_NOT_FOUND

    reported = _reported_sign_count(response)
    if reported is None:
        return malformed("response.authenticatorData", "authenticatorData could not be parsed.")
    if not counter_acceptable(credential.sign_count, reported, allow_zero_counters):
        logger.warning(
            "Counter check failed for credential %s (stored=%d, reported=%d)",
            credential.id,
            credential.sign_count,
            reported,
        )
        return VERIFICATION_FAILED

    try:
        verified = verify_authentication_response(
            credential=response,
            expected_challenge=base64url_to_bytes(nonce),
            expected_rp_id=rp.id,
            expected_origin=rp.origin,
            credential_public_key=credential.public_key,
            credential_current_sign_count=credential.sign_count,
        )
    except _VERIFY_ERRORS as exc:
        logger.warning("Assertion verification failed for credential %s: %s", credential.id, exc)
        return VERIFICATION_FAILED

    if not users.update_credential_counter(credential.id, credential.sign_count, verified.new_sign_count):
        logger.warning(
            "Counter for credential %s changed concurrently (expected=%d, new=%d)",
            credential.id,
            credential.sign_count,
            verified.new_sign_count,
        )
        return VERIFICATION_FAILED

    user = users.get_by_id(credential.user_id)
    if user is None:
        return CREDENTIAL_NOT_FOUND
    if require_admin and not is_admin(user):
        logger.warning("Non-admin user %s attempted admin login", user.id)
        return ADMIN_REQUIRED

    logger.info(
        "Authenticated user %s with credential %s (sign_count %d -> %d)",
        user.id,
        credential.id,
        credential.sign_count,
        verified.new_sign_count,
    )
    token = create_session(kv, user.id, session_ttl_seconds)
    return Verified(user=user, token=token, credential_id=credential.id)
