"""
auth/challenges.py -- Issue single-use WebAuthn challenges.

Each ceremony starts here. The options returned are the WebAuthn JSON the
browser passes to navigator.credentials.create() / .get(); the challenge
inside them is also the lookup key stored in the ephemeral store:

    challenge:<base64url nonce> -> user id    (registration)
    challenge:<base64url nonce> -> "login"    (authentication)

The verify step (auth/ceremony.py) finds the entry again by reading the
nonce back out of the signed clientDataJSON, so the two HTTP requests of a
ceremony are correlated by nothing but this entry.

Store failures propagate (sqlalchemy.exc.OperationalError); the API layer
reports them as store_unavailable.

Layer rule: no imports from api/, messages/, or storage/.
"""

from __future__ import annotations

import json
import logging

from webauthn import generate_authentication_options, generate_registration_options, options_to_json
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from auth.models import Credential, RelyingParty, User
from cache.store import EphemeralStore

logger = logging.getLogger("forum.auth")

CHALLENGE_PREFIX = "challenge:"
LOGIN_CHALLENGE = "login"  # value marking a challenge not yet bound to a user


def challenge_key(nonce: str) -> str:
    return f"{CHALLENGE_PREFIX}{nonce}"


def _descriptor(credential: Credential) -> PublicKeyCredentialDescriptor:
    transports = []
    for name in credential.transports:
        try:
            transports.append(AuthenticatorTransport(name))
        except ValueError:
            continue  # transport unknown to this library version
    return PublicKeyCredentialDescriptor(
        id=base64url_to_bytes(credential.id),
        transports=transports or None,
    )


def issue_registration_challenge(
    kv: EphemeralStore,
    rp: RelyingParty,
    user: User,
    excluded: list[Credential],
    ttl_seconds: int,
) -> dict:
    """Generate creation options for user and remember the nonce -> user id.

    excluded lists the credentials the user already owns so the authenticator
    refuses to register the same hardware twice.
    """
    options = generate_registration_options(
        rp_id=rp.id,
        rp_name=rp.name,
        user_id=user.id.encode("utf-8"),
        user_name=user.username,
        user_display_name=user.username,
        exclude_credentials=[_descriptor(c) for c in excluded],
        authenticator_selection=AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.REQUIRED,
            user_verification=UserVerificationRequirement.PREFERRED,
        ),
    )
    nonce = bytes_to_base64url(options.challenge)
    kv.put(challenge_key(nonce), user.id, ttl_seconds)
    logger.info("Registration challenge issued for user %s (rp=%s, excluded=%d)", user.id, rp.id, len(excluded))
    return json.loads(options_to_json(options))


def issue_authentication_challenge(kv: EphemeralStore, rp: RelyingParty, ttl_seconds: int) -> dict:
    """Generate request options for a login whose user is not known yet.

    allowCredentials is left empty: the passkey is discoverable and the user
    is identified by the credential id that comes back in the assertion.
    """
    options = generate_authentication_options(
        rp_id=rp.id,
        user_verification=UserVerificationRequirement.PREFERRED,
    )
    nonce = bytes_to_base64url(options.challenge)
    kv.put(challenge_key(nonce), LOGIN_CHALLENGE, ttl_seconds)
    logger.info("Authentication challenge issued (rp=%s)", rp.id)
    return json.loads(options_to_json(options))
