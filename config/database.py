"""
LUXE — Database Layer

SQLite connections for the session / ledger / bonus-state store.
Connections run in autocommit mode; multi-statement writes go through
transaction(), which takes the write lock up front (BEGIN IMMEDIATE) so a
compare-and-swap and the balance update commit or roll back together.

Usage:
    from config.database import open_db, init_db, transaction

    init_db("luxe.db", SCHEMA_SQL)
    db = open_db("luxe.db")
    with transaction(db):
        db.execute(...)
    db.close()
"""

import logging
import sqlite3
from contextlib import contextmanager

logger = logging.getLogger("luxe.db")


class _SqliteDict(dict):
    """Makes sqlite rows behave like a dict with .get() support."""
    pass


def _sqlite_dict_factory(cursor, row):
    d = _SqliteDict()
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def open_db(path: str) -> sqlite3.Connection:
    """Open a SQLite connection with dict rows, WAL and a busy timeout."""
    conn = sqlite3.connect(path, timeout=10, isolation_level=None)
    conn.row_factory = _sqlite_dict_factory
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db(path: str, schema_sql: str) -> None:
    """Create tables if missing."""
    conn = open_db(path)
    try:
        conn.executescript(schema_sql)
    finally:
        conn.close()
    logger.info(f"SQLite schema ready at {path}")


@contextmanager
def transaction(conn: sqlite3.Connection):
    """Run a block atomically; any exception rolls everything back."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")
