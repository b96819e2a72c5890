"""
messages/store.py -- SQLAlchemy Core persistence for conversations and messages.

Pattern: Repository + Data Mapper, same as auth/store.py. Tables are declared
on auth.store.metadata so user foreign keys resolve and create_all() orders
them after users.

Invariants kept here:
  - conversations.(user1_id, user2_id) is unique and user1_id < user2_id.
  - A message insert and its conversation update (last message time,
    excerpt, recipient unread count) commit in one transaction.

Schema migration:
  Databases created before body_kind existed stored every body in object
  storage. _ensure_body_kind_column() adds the column with DEFAULT 'stored'
  so those rows read back as Stored(key) without a data migration.

Layer rule: no imports from api/ or storage/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    inspect,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.store import metadata, users
from core.config import get_settings
from core.db import make_engine
from messages.models import Conversation, ConversationSummary, Message, MessageBody, body_from_row, body_to_row

logger = logging.getLogger("forum.messages")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

conversations = Table(
    "conversations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user1_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("user2_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("last_message_at", String(32)),
    Column("last_message_excerpt", Text),
    Column("user1_unread_count", Integer, nullable=False, server_default="0"),
    Column("user2_unread_count", Integer, nullable=False, server_default="0"),
    UniqueConstraint("user1_id", "user2_id", name="uq_conversation_pair"),
)

private_messages = Table(
    "private_messages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "conversation_id", Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    ),
    Column("author_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("body_kind", String(10), nullable=False, server_default="stored"),  # "inline" | "stored"
    Column("body", Text, nullable=False),  # text (inline) or object key (stored)
    Column("created_at", String(32), nullable=False),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MessageStore:
    """Repository for Conversation and Message entities.

    Usage:
        store = MessageStore()
        conv = store.get_or_create_conversation(alice_id, bob_id)
        store.add_message(conv, alice_id, Inline("hi"), excerpt="hi")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)
        self._ensure_body_kind_column()

    def _ensure_body_kind_column(self) -> None:
        """Add body_kind to private_messages if this database predates it.

        Existing rows are backfilled as 'stored' by the column default.
        """
        columns = {c["name"] for c in inspect(self.engine).get_columns("private_messages")}
        if "body_kind" in columns:
            return
        with self.engine.connect() as conn:
            conn.execute(
                text("ALTER TABLE private_messages ADD COLUMN body_kind VARCHAR(10) NOT NULL DEFAULT 'stored'")
            )
            conn.commit()
        logger.info("Added private_messages.body_kind; existing rows marked as stored")

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def get_conversation(self, conversation_id: int) -> Conversation | None:
        with self.engine.connect() as conn:
            row = conn.execute(conversations.select().where(conversations.c.id == conversation_id)).fetchone()
        return _row_to_conversation(row) if row is not None else None

    def get_or_create_conversation(self, user_a: str, user_b: str) -> Conversation:
        """Return the conversation between two users, creating it on first contact."""
        user1_id, user2_id = sorted((user_a, user_b))
        existing = self._find_conversation(user1_id, user2_id)
        if existing is not None:
            return existing
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    conversations.insert().values(
                        user1_id=user1_id, user2_id=user2_id, created_at=now, last_message_at=now
                    )
                )
                conn.commit()
        except IntegrityError:
            # Lost a race with a concurrent first message; the row exists now.
            pass
        created = self._find_conversation(user1_id, user2_id)
        if created is None:
            raise LookupError(f"Conversation {user1_id}/{user2_id} missing after insert")
        return created

    def _find_conversation(self, user1_id: str, user2_id: str) -> Conversation | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                conversations.select().where(
                    (conversations.c.user1_id == user1_id) & (conversations.c.user2_id == user2_id)
                )
            ).fetchone()
        return _row_to_conversation(row) if row is not None else None

    def list_conversations(self, user_id: str, limit: int = 20, offset: int = 0) -> list[ConversationSummary]:
        """Return user_id's conversations, most recently active first."""
        partner = users.alias("partner")
        is_user1 = conversations.c.user1_id == user_id
        stmt = (
            select(
                conversations,
                partner.c.id.label("partner_id"),
                partner.c.username.label("partner_username"),
                partner.c.avatar.label("partner_avatar"),
            )
            .select_from(
                conversations.join(
                    partner,
                    or_(
                        is_user1 & (partner.c.id == conversations.c.user2_id),
                        (conversations.c.user2_id == user_id) & (partner.c.id == conversations.c.user1_id),
                    ),
                )
            )
            .order_by(conversations.c.last_message_at.desc(), conversations.c.id.desc())
            .limit(limit)
            .offset(offset)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            ConversationSummary(
                id=r.id,
                partner_id=r.partner_id,
                partner_username=r.partner_username,
                partner_avatar=r.partner_avatar,
                last_message_at=r.last_message_at,
                last_message_excerpt=r.last_message_excerpt,
                unread_count=r.user1_unread_count if r.user1_id == user_id else r.user2_unread_count,
            )
            for r in rows
        ]

    def count_conversations(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(conversations)
                .where((conversations.c.user1_id == user_id) | (conversations.c.user2_id == user_id))
            ).scalar()
        return result or 0

    def mark_read(self, conversation: Conversation, user_id: str) -> None:
        """Zero user_id's unread counter on conversation."""
        column = "user1_unread_count" if user_id == conversation.user1_id else "user2_unread_count"
        with self.engine.connect() as conn:
            conn.execute(conversations.update().where(conversations.c.id == conversation.id).values({column: 0}))
            conn.commit()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, conversation: Conversation, author_id: str, body: MessageBody, excerpt: str) -> Message:
        """Insert a message and bump the conversation for the recipient in one transaction."""
        kind, value = body_to_row(body)
        now = _now_iso()
        unread = conversations.c.user2_unread_count if author_id == conversation.user1_id else conversations.c.user1_unread_count
        with self.engine.begin() as conn:
            result = conn.execute(
                private_messages.insert().values(
                    conversation_id=conversation.id,
                    author_id=author_id,
                    body_kind=kind,
                    body=value,
                    created_at=now,
                )
            )
            conn.execute(
                conversations.update()
                .where(conversations.c.id == conversation.id)
                .values({"last_message_at": now, "last_message_excerpt": excerpt, unread.name: unread + 1})
            )
        return Message(
            id=result.inserted_primary_key[0],
            conversation_id=conversation.id,
            author_id=author_id,
            body=body,
            created_at=now,
        )

    def list_messages(self, conversation_id: int, limit: int = 20, offset: int = 0) -> list[Message]:
        """Return a page of messages in conversation_id, oldest first."""
        stmt = (
            select(private_messages, users.c.username.label("author_username"))
            .select_from(private_messages.join(users, users.c.id == private_messages.c.author_id))
            .where(private_messages.c.conversation_id == conversation_id)
            .order_by(private_messages.c.created_at, private_messages.c.id)
            .limit(limit)
            .offset(offset)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_message(r) for r in rows]

    def count_messages(self, conversation_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(private_messages)
                .where(private_messages.c.conversation_id == conversation_id)
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=row.id,
        user1_id=row.user1_id,
        user2_id=row.user2_id,
        created_at=row.created_at,
        last_message_at=row.last_message_at,
        last_message_excerpt=row.last_message_excerpt,
        user1_unread_count=row.user1_unread_count,
        user2_unread_count=row.user2_unread_count,
    )


def _row_to_message(row) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        author_id=row.author_id,
        body=body_from_row(row.body_kind, row.body),
        created_at=row.created_at,
        author_username=row.author_username,
    )
