"""
api/routes/v1/messages.py -- Private message endpoints.

Routes:
  GET  /api/v1/messages                    -- caller's conversations, most recent first
  GET  /api/v1/messages/{conversation_id}  -- messages in a conversation (participants only)
  POST /api/v1/messages                    -- send a message to a user by username

Reading a conversation clears the caller's unread count for it.

Bodies go to object storage when it is configured and inline otherwise
(messages/bodies.py). app.state.objects is None when storage is off.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request

from api.errors import raise_error
from api.models import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ConversationListResponse,
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
    MessageSentResponse,
    Pagination,
    SendMessageRequest,
)
from auth.dependencies import get_current_user
from auth.models import User
from messages.bodies import discard_body, make_excerpt, read_body, write_body
from messages.store import MessageStore

logger = logging.getLogger("forum.api")

# Auth policy: every route requires auth (get_current_user).
router = APIRouter()


@router.get("/messages", response_model=ConversationListResponse)
def list_conversations(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
) -> ConversationListResponse:
    store: MessageStore = request.app.state.message_store
    summaries = store.list_conversations(current_user.id, limit=page_size, offset=(page - 1) * page_size)
    return ConversationListResponse(
        data=[ConversationResponse.from_summary(s) for s in summaries],
        pagination=Pagination.build(page, page_size, store.count_conversations(current_user.id)),
    )


@router.get("/messages/{conversation_id}", response_model=MessageListResponse)
def list_messages(
    request: Request,
    conversation_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
) -> MessageListResponse:
    """Return a page of messages, oldest first, and mark the conversation read.

    Non-participants get 403 whether or not the conversation exists.
    """
    store: MessageStore = request.app.state.message_store
    conversation = store.get_conversation(conversation_id)
    if conversation is None or not conversation.has_participant(current_user.id):
        raise_error(403, "forbidden", "You are not a participant in this conversation.")

    objects = request.app.state.objects
    messages = store.list_messages(conversation_id, limit=page_size, offset=(page - 1) * page_size)
    data = [
        MessageResponse(
            id=m.id,
            author_id=m.author_id,
            author_username=m.author_username,
            body=read_body(objects, m.body, m.id),
            created_at=m.created_at or "",
        )
        for m in messages
    ]
    store.mark_read(conversation, current_user.id)
    return MessageListResponse(
        data=data,
        pagination=Pagination.build(page, page_size, store.count_messages(conversation_id)),
    )


@router.post("/messages", response_model=MessageSentResponse, status_code=201)
def send_message(
    request: Request,
    body: SendMessageRequest,
    current_user: User = Depends(get_current_user),
) -> MessageSentResponse:
    recipient = request.app.state.user_store.get_by_username(body.recipient_username)
    if recipient is None:
        raise_error(404, "not_found", "Recipient not found.")
    if recipient.id == current_user.id:
        raise_error(422, "validation_error", "You cannot send a message to yourself.")

    store: MessageStore = request.app.state.message_store
    conversation = store.get_or_create_conversation(current_user.id, recipient.id)
    objects = request.app.state.objects
    stored_body = write_body(objects, body.body)
    try:
        message = store.add_message(conversation, current_user.id, stored_body, make_excerpt(body.body))
    except Exception:
        discard_body(objects, stored_body)
        raise
    logger.info(
        "User %s sent message %s in conversation %s", current_user.id, message.id, conversation.id
    )
    return MessageSentResponse(message_id=message.id, conversation_id=conversation.id)
