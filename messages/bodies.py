"""
messages/bodies.py -- Choose, write, and read message body storage.

write_body() picks the variant: Stored when an ObjectStore is configured,
Inline otherwise. discard_body() removes the object again when the message
row could not be recorded. read_body() resolves either variant to text; a Stored body
whose object cannot be fetched reads as UNAVAILABLE_BODY and is logged, so
one bad object never fails a whole conversation page.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
import uuid

from botocore.exceptions import BotoCoreError, ClientError

from messages.models import UNAVAILABLE_BODY, Inline, MessageBody, Stored
from storage.objects import ObjectStore

logger = logging.getLogger("forum.messages")

BODY_KEY_PREFIX = "pm-body/"
EXCERPT_LENGTH = 50

_TAG_RE = re.compile(r"<[^>]*>?")


def make_excerpt(text: str) -> str:
    """Plain-text preview for the inbox: tags stripped, first 50 characters."""
    return _TAG_RE.sub("", text)[:EXCERPT_LENGTH]


def write_body(objects: ObjectStore | None, text: str) -> MessageBody:
    """Persist text where it belongs and return the variant to record.

    Upload failures propagate: a message whose body was not saved must not
    be recorded.
    """
    if objects is None:
        return Inline(text)
    key = f"{BODY_KEY_PREFIX}{uuid.uuid4()}"
    objects.put(key, text.encode("utf-8"), "text/plain; charset=utf-8")
    return Stored(key)


def read_body(objects: ObjectStore | None, body: MessageBody, message_id: int | None = None) -> str:
    if isinstance(body, Inline):
        return body.text
    if objects is None:
        logger.warning("Message %s body is in object storage but none is configured", message_id)
        return UNAVAILABLE_BODY
    try:
        data = objects.get(body.key)
    except (ClientError, BotoCoreError):
        logger.exception("Failed to fetch body for message %s (key=%s)", message_id, body.key)
        return UNAVAILABLE_BODY
    if data is None:
        logger.warning("Body object missing for message %s (key=%s)", message_id, body.key)
        return UNAVAILABLE_BODY
    return data.decode("utf-8", errors="replace")


def discard_body(objects: ObjectStore | None, body: MessageBody) -> None:
    """Delete the object behind a Stored body whose message row was never written."""
    if not isinstance(body, Stored) or objects is None:
        return
    try:
        objects.delete(body.key)
    except (ClientError, BotoCoreError):
        logger.exception("Failed to delete orphaned body object (key=%s)", body.key)
