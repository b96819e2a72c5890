"""
api/routes/v1/users.py -- User profile endpoints.

Routes:
  GET  /api/v1/users/me         -- full record of the authenticated user
  POST /api/v1/users/me/avatar  -- upload a new avatar image (object storage)
  GET  /api/v1/users/{id}       -- public profile (no email) of any user

Avatars are written to avatars/<user id>/<uuid>.<ext> and the user's avatar
column holds the object's public URL. The upload is multipart/form-data with
a single "avatar" file field, capped at 2 MB.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, Request, UploadFile

from api.errors import raise_error
from api.models import MAX_AVATAR_BYTES, AvatarResponse, PublicProfileResponse, UserResponse
from auth.dependencies import get_current_user
from auth.models import User

logger = logging.getLogger("forum.api")

AVATAR_KEY_PREFIX = "avatars/"

# Auth policy:
# - GET  /api/v1/users/me:         requires auth (get_current_user)
# - POST /api/v1/users/me/avatar:  requires auth (get_current_user)
# - GET  /api/v1/users/{id}:       public
router = APIRouter()


def _avatar_extension(filename: str | None) -> str:
    _, dot, ext = (filename or "").rpartition(".")
    ext = ext.lower()
    return ext if dot and ext.isalnum() and len(ext) <= 5 else "jpg"


@router.get("/users/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(current_user)


@router.post("/users/me/avatar", response_model=AvatarResponse)
async def upload_avatar(
    request: Request,
    avatar: UploadFile,
    current_user: User = Depends(get_current_user),
) -> AvatarResponse:
    """Store an image in object storage and point the user's avatar at it."""
    objects = request.app.state.objects
    if objects is None:
        raise_error(503, "storage_unavailable", "Avatar uploads require object storage.")
    content_type = avatar.content_type or ""
    if not content_type.startswith("image/"):
        raise_error(422, "validation_error", "Avatar must be an image file.")

    # Size guard -- read up to the limit + 1 byte; reject if over
    data = await avatar.read(MAX_AVATAR_BYTES + 1)
    if len(data) > MAX_AVATAR_BYTES:
        raise_error(422, "validation_error", "Avatar must be 2 MB or smaller.")

    key = f"{AVATAR_KEY_PREFIX}{current_user.id}/{uuid.uuid4()}.{_avatar_extension(avatar.filename)}"
    await asyncio.to_thread(objects.put, key, data, content_type)
    url = objects.url_for(key)
    try:
        request.app.state.user_store.update_user(current_user.id, avatar=url)
    except Exception:
        objects.delete(key)
        raise
    logger.info("User %s uploaded avatar %s (%d bytes)", current_user.id, key, len(data))
    return AvatarResponse(message="Avatar updated.", avatar_url=url)


@router.get("/users/{user_id}", response_model=PublicProfileResponse)
def profile(request: Request, user_id: str) -> PublicProfileResponse:
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise_error(404, "not_found", "User not found.")
    return PublicProfileResponse.from_user(user)
