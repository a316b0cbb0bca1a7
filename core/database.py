"""
core/database.py -- Engine construction shared by every repository.

One relational store backs the whole application. auth/store.py and
orgs/store.py each own their tables but run against the same Engine, so the
connection pool is shared and bounded in one place.

SQLite is the default (single file next to the project) and what the test
suite uses; PostgreSQL is a connection string change.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import MetaData, Table, create_engine, event
from sqlalchemy.engine import Connection, Engine

from core.errors import ErrorKind, StoreError

# Single MetaData so foreign keys between users and organization tables resolve.
metadata = MetaData()


def _sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(
    db_url: str,
    pool_size: int = 30,
    max_overflow: int = 0,
    pool_recycle: int = 900,
) -> Engine:
    """Create the application Engine and make sure every table exists.

    Pool arguments only apply to server databases; SQLite uses SQLAlchemy's
    default pool for file and shared-memory URLs.
    """
    if db_url.startswith("sqlite"):
        # FastAPI runs sync route handlers in a thread pool, so the same
        # connection may be used from several threads.
        engine = create_engine(db_url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _sqlite_pragmas)
    else:
        engine = create_engine(
            db_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
        )

    # Import for side effects: each module registers its tables on `metadata`.
    import auth.store  # noqa: F401
    import orgs.store  # noqa: F401

    metadata.create_all(engine)
    return engine


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def versioned_update(conn: Connection, table: Table, entity, **values) -> None:
    """Apply an optimistic-concurrency UPDATE to one row and sync the entity.

    The WHERE clause pins both the primary key and the version the caller
    read. Zero affected rows means the row is gone or another request won the
    race; both surface as StoreError(NOT_FOUND) and the entity is left
    untouched. On success the version is incremented by exactly one.
    """
    now = utc_now_iso()
    result = conn.execute(
        table.update()
        .where((table.c.id == entity.id) & (table.c.version == entity.version))
        .values(version=table.c.version + 1, updated_at=now, **values)
    )
    if result.rowcount == 0:
        raise StoreError(
            ErrorKind.NOT_FOUND,
            "Try again later.",
            reason=f"{table.name} id={entity.id} version={entity.version} not found or stale",
        )
    entity.version += 1
    entity.updated_at = now
    for key, value in values.items():
        if hasattr(entity, key):
            setattr(entity, key, value)
