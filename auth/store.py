"""
auth/store.py -- SQLAlchemy Core persistence layer for users and passkeys.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_credential are the mappers. Route and ceremony code
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Credential counters:
  update_credential_counter() is a compare-and-set: the UPDATE only matches
  when the stored counter still equals the value the caller verified against.
  A concurrent verification that already advanced the counter makes the
  second write match zero rows, and the caller treats that as a failure.

Cascades:
  credentials.user_id is ON DELETE CASCADE. SQLite only enforces foreign keys
  when PRAGMA foreign_keys=ON is set, which _set_sqlite_pragmas() does on
  every pooled connection (core/db.py).

Layer rule: no imports from api/, messages/, or storage/.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import ROLE_ADMIN, Credential, User
from core.config import get_settings
from core.db import make_engine

# ---------------------------------------------------------------------------
# Schema
#
# metadata is shared with messages/store.py so that message tables can carry
# real foreign keys to users.id.
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("level", Integer, nullable=False, server_default="1"),
    Column("avatar", Text),
    Column("profile_bio", Text),
    Column("created_at", String(32), nullable=False),
)

_credentials = Table(
    "credentials",
    metadata,
    Column("id", String(512), primary_key=True),  # base64url credential id
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("public_key", LargeBinary, nullable=False),  # COSE_Key bytes
    Column("sign_count", Integer, nullable=False, server_default="0"),
    Column("transports", Text),  # JSON array
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Credential entities.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(username="alice", email="alice@example.com"))
        store.insert_credential(Credential(id=cred_id, user_id=user_id, public_key=pk))
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers turn that into a 409.
        """
        user_id = str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=user.email,
                    role=user.role,
                    level=user.level,
                    avatar=user.avatar,
                    profile_bio=user.profile_bio,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, limit: int = 20, offset: int = 0) -> list[User]:
        """Return a page of users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                users.select().order_by(users.c.created_at.desc()).limit(limit).offset(offset)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(users)).scalar() or 0

    def count_admins(self) -> int:
        """Return the number of admin users. Guards demotion and deletion of the last admin."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users).where(users.c.role == ROLE_ADMIN)).scalar()
        return result or 0

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, level, avatar, profile_bio.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - {"role", "level", "avatar", "profile_bio"}
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user. Credentials go with it (ON DELETE CASCADE).

        Sessions are not touched here: they live in the ephemeral store and are
        cleaned up lazily the next time they are resolved.
        """
        with self.engine.connect() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Credential queries
    # ------------------------------------------------------------------

    def get_credential(self, credential_id: str) -> Credential | None:
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.id == credential_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def list_credentials(self, user_id: str) -> list[Credential]:
        """Return every credential owned by user_id, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _credentials.select().where(_credentials.c.user_id == user_id).order_by(_credentials.c.created_at)
            ).fetchall()
        return [_row_to_credential(r) for r in rows]

    def count_credentials(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_credentials).where(_credentials.c.user_id == user_id)
            ).scalar()
        return result or 0

    def insert_credential(self, credential: Credential) -> None:
        """Persist a newly registered credential.

        Raises sqlalchemy.exc.IntegrityError if the credential id is already
        registered (to anyone) or the owning user no longer exists.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _credentials.insert().values(
                    id=credential.id,
                    user_id=credential.user_id,
                    public_key=credential.public_key,
                    sign_count=credential.sign_count,
                    transports=json.dumps(credential.transports),
                    created_at=_now_iso(),
                )
            )
            conn.commit()

    def update_credential_counter(self, credential_id: str, expected: int, new: int) -> bool:
        """Advance the signature counter from expected to new in one statement.

        Returns False if the stored counter is no longer `expected` (another
        verification got there first) or the credential is gone.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _credentials.update()
                .where((_credentials.c.id == credential_id) & (_credentials.c.sign_count == expected))
                .values(sign_count=new, last_used_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        role=row.role,
        level=row.level,
        avatar=row.avatar,
        profile_bio=row.profile_bio,
        created_at=row.created_at,
    )


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        user_id=row.user_id,
        public_key=bytes(row.public_key),
        sign_count=row.sign_count,
        transports=json.loads(row.transports) if row.transports else [],
        created_at=row.created_at,
        last_used_at=row.last_used_at,
    )
