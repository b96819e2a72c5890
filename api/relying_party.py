"""
api/relying_party.py -- Resolve the WebAuthn relying party for a request.

RP_ID and ORIGIN come from configuration. When either is unset the value is
taken from the request URL (hostname and scheme://host[:port]), which is what
a single-origin deployment behind no proxy wants. Deployments behind a proxy
or serving the UI from another origin must set both.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import RelyingParty
from core.config import get_settings


def relying_party(request: Request) -> RelyingParty:
    """FastAPI dependency returning the RelyingParty for this request."""
    settings = get_settings()
    rp_id = settings.rp_id or (request.url.hostname or "localhost")
    origin = settings.origin or f"{request.url.scheme}://{request.url.netloc}"
    return RelyingParty(id=rp_id, name=settings.rp_name, origin=origin)
