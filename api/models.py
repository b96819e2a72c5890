"""
API request and response models for the forum REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
messages/models.py, which own the internal domain representation. Route
handlers map between the two.

WebAuthn options and responses are passed through as plain dicts: their
shape is defined by the WebAuthn JSON serialization and validated by
py_webauthn, not here.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import User
from messages.models import ConversationSummary

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Letters, digits, underscore, hyphen, and CJK ideographs.
USERNAME_PATTERN = r"^[a-zA-Z0-9_\-一-龥]+$"

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_MESSAGE_LENGTH = 10000
MAX_AVATAR_BYTES = 2 * 1024 * 1024


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterChallengeRequest(BaseModel):
    """Request body for POST /api/v1/auth/register/challenge."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: EmailStr


class RegisterVerifyRequest(BaseModel):
    """Request body for POST /api/v1/auth/register/verify.

    response is the RegistrationResponseJSON produced by the browser.
    """

    response: dict[str, Any]


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/admin/users/{id}. Omitted fields are unchanged."""

    level: Optional[int] = Field(default=None, ge=1, le=100)
    role: Optional[RoleEnum] = None


class SendMessageRequest(BaseModel):
    """Request body for POST /api/v1/messages."""

    model_config = ConfigDict(str_strip_whitespace=True)

    recipient_username: str = Field(min_length=1, max_length=50)
    body: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class VerifiedResponse(BaseModel):
    """Response for a successful registration or login ceremony."""

    model_config = ConfigDict(frozen=True)

    verified: bool = True
    token: str


class UserResponse(BaseModel):
    """Full user record. Returned to the user themselves and to admins."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    role: str
    level: int
    avatar: Optional[str] = None
    profile_bio: Optional[str] = None
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            level=user.level,
            avatar=user.avatar,
            profile_bio=user.profile_bio,
            created_at=user.created_at or "",
        )


class PublicProfileResponse(BaseModel):
    """Public view of a user. No email."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    level: int
    avatar: Optional[str] = None
    profile_bio: Optional[str] = None
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "PublicProfileResponse":
        return cls(
            id=user.id,
            username=user.username,
            level=user.level,
            avatar=user.avatar,
            profile_bio=user.profile_bio,
            created_at=user.created_at or "",
        )


class SessionResponse(BaseModel):
    """Response for GET /api/v1/auth/session."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    user: Optional[UserResponse] = None


class PasskeyResponse(BaseModel):
    """One of the caller's registered credentials. Key material is never returned."""

    model_config = ConfigDict(frozen=True)

    id: str
    transports: list[str]
    sign_count: int
    created_at: str
    last_used_at: Optional[str] = None


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    page_size: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> "Pagination":
        return cls(page=page, page_size=page_size, total=total, total_pages=-(-total // page_size))


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: list[UserResponse]
    pagination: Pagination


class ConversationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    partner_id: str
    partner_username: str
    partner_avatar: Optional[str] = None
    last_message_at: Optional[str] = None
    last_message_excerpt: Optional[str] = None
    unread_count: int

    @classmethod
    def from_summary(cls, summary: ConversationSummary) -> "ConversationResponse":
        return cls(
            id=summary.id,
            partner_id=summary.partner_id,
            partner_username=summary.partner_username,
            partner_avatar=summary.partner_avatar,
            last_message_at=summary.last_message_at,
            last_message_excerpt=summary.last_message_excerpt,
            unread_count=summary.unread_count,
        )


class ConversationListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: list[ConversationResponse]
    pagination: Pagination


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    author_id: str
    author_username: Optional[str] = None
    body: str
    created_at: str


class MessageListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: list[MessageResponse]
    pagination: Pagination


class MessageSentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: int
    conversation_id: int


class AvatarResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    avatar_url: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
