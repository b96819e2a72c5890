"""
messages/models.py -- Domain dataclasses for private messaging.

A message body is one of two variants, never guessed from its content:

    Inline(text)  -- the text lives in the database row
    Stored(key)   -- the text lives in object storage under key

Persisted as body_kind ("inline" | "stored") + body (text or key).

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

BODY_INLINE = "inline"
BODY_STORED = "stored"

UNAVAILABLE_BODY = "[message unavailable]"


@dataclass(frozen=True)
class Inline:
    text: str


@dataclass(frozen=True)
class Stored:
    key: str


MessageBody = Union[Inline, Stored]


def body_to_row(body: MessageBody) -> tuple[str, str]:
    """Return (body_kind, body) column values for a body variant."""
    if isinstance(body, Inline):
        return BODY_INLINE, body.text
    return BODY_STORED, body.key


def body_from_row(kind: str, value: str) -> MessageBody:
    if kind == BODY_INLINE:
        return Inline(value)
    if kind == BODY_STORED:
        return Stored(value)
    raise ValueError(f"Unknown body kind: {kind!r}")


@dataclass
class Conversation:
    """A two-party thread. user1_id < user2_id, so each pair has one conversation."""

    user1_id: str
    user2_id: str
    id: int | None = None
    created_at: str | None = None
    last_message_at: str | None = None
    last_message_excerpt: str | None = None
    user1_unread_count: int = 0
    user2_unread_count: int = 0

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)


@dataclass
class ConversationSummary:
    """One row of a user's inbox, seen from that user's side."""

    id: int
    partner_id: str
    partner_username: str
    partner_avatar: str | None
    last_message_at: str | None
    last_message_excerpt: str | None
    unread_count: int


@dataclass
class Message:
    conversation_id: int
    author_id: str
    body: MessageBody
    id: int | None = None
    created_at: str | None = None
    author_username: str | None = None
