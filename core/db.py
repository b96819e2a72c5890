"""
core/db.py -- Engine construction shared by every SQLAlchemy-backed store.

UserStore, MessageStore and EphemeralStore may point at the same database
URL. They all build their engines here so they agree on connection setup.

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/,
messages/, or storage/.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    WAL lets readers proceed while a writer holds the lock. SQLite only
    enforces ON DELETE CASCADE with foreign_keys=ON. Both are set
    per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(db_url: str) -> Engine:
    """Create an Engine, applying the SQLite connection hooks when relevant."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine
