"""
cache/store.py -- TTL key-value store for challenges and sessions.

Holds short-lived entries that must expire on their own:

    challenge:<nonce>  -> user id being registered, or "login"
    session:<token>    -> user id

Expiry is enforced on read (an entry past its expires_at is invisible to
get() and pop()) and physically removed by purge_expired(), which the API
lifespan runs periodically.

Single-use reads:
  pop() is one DELETE ... RETURNING statement. The row is removed and its
  value returned atomically, so two concurrent callers presenting the same
  key cannot both receive the value. This is what makes a WebAuthn challenge
  single-use under concurrent verification.

Usage:
    kv = EphemeralStore()
    kv.put("challenge:abc", "login", ttl_seconds=300)
    kv.pop("challenge:abc")    # "login"
    kv.pop("challenge:abc")    # None
    kv.purge_expired()         # call periodically to trim old entries
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from sqlalchemy import Column, Float, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.db import make_engine

logger = logging.getLogger("forum.kv")

_metadata = MetaData()

_entries = Table(
    "kv_entries",
    _metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),  # unix seconds
)


class EphemeralStore:
    """Key-value store with per-entry TTL.

    clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(self, db_url: str | None = None, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store value under key for ttl_seconds, replacing any existing entry."""
        expires_at = self._clock() + ttl_seconds
        with self.engine.begin() as conn:
            conn.execute(_entries.delete().where(_entries.c.key == key))
            conn.execute(_entries.insert().values(key=key, value=value, expires_at=expires_at))

    def get(self, key: str) -> str | None:
        """Return the live value for key, or None if absent or expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _entries.select().where((_entries.c.key == key) & (_entries.c.expires_at > self._clock()))
            ).fetchone()
        return row.value if row is not None else None

    def pop(self, key: str) -> str | None:
        """Atomically remove key and return its value if it was live.

        An expired entry is not returned (and stays for purge_expired()).
        """
        with self.engine.begin() as conn:
            row = conn.execute(
                _entries.delete()
                .where((_entries.c.key == key) & (_entries.c.expires_at > self._clock()))
                .returning(_entries.c.value)
            ).first()
        return row.value if row is not None else None

    def delete(self, key: str) -> None:
        """Remove key. Absence is not an error."""
        with self.engine.begin() as conn:
            conn.execute(_entries.delete().where(_entries.c.key == key))

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_entries.delete().where(_entries.c.expires_at <= self._clock()))
        if result.rowcount:
            logger.info("Purged %d expired entries", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
