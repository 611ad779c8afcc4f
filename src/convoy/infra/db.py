"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a connection with bounded connect/statement/lock timeouts
- txn(): Context manager for short, safe transactions
- fetchone/fetchall: Query helpers
- for_update(): SELECT ... FOR UPDATE helper

Every connection carries a statement_timeout and lock_timeout so no call into
the backing store can block an ingestion worker indefinitely. Connection and
timeout failures surface as BackingStoreUnavailable.
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

from convoy.errors import BackingStoreUnavailable


def get_conn(
    dsn: str | None = None,
    *,
    connect_timeout_s: int | None = None,
    statement_timeout_ms: int | None = None,
    lock_timeout_ms: int | None = None,
) -> PgConnection:
    """Get a new database connection.

    Args:
        dsn: Connection string. Defaults to DATABASE_URL.
        connect_timeout_s: Defaults to DB_CONNECT_TIMEOUT_S or 5.
        statement_timeout_ms: Defaults to DB_STATEMENT_TIMEOUT_MS or 5000.
        lock_timeout_ms: Defaults to DB_LOCK_TIMEOUT_MS or 3000.

    Returns:
        psycopg2 connection object.

    Raises:
        RuntimeError: If no DSN is available.
        BackingStoreUnavailable: On connection failure.
    """
    dsn = dsn or os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    if connect_timeout_s is None:
        connect_timeout_s = int(os.environ.get("DB_CONNECT_TIMEOUT_S", "5"))
    if statement_timeout_ms is None:
        statement_timeout_ms = int(os.environ.get("DB_STATEMENT_TIMEOUT_MS", "5000"))
    if lock_timeout_ms is None:
        lock_timeout_ms = int(os.environ.get("DB_LOCK_TIMEOUT_MS", "3000"))

    options = f"-c statement_timeout={statement_timeout_ms} -c lock_timeout={lock_timeout_ms}"
    try:
        return psycopg2.connect(dsn, connect_timeout=connect_timeout_s, options=options)
    except psycopg2.OperationalError as e:
        raise BackingStoreUnavailable(f"database connection failed: {e}") from e


@contextmanager
def txn(conn: PgConnection | None = None, **conn_kwargs: Any) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception. Operational errors
    (timeouts, dropped connections) are re-raised as BackingStoreUnavailable.

    Example:
        with txn() as cur:
            cur.execute("INSERT INTO t (x) VALUES (%s)", (1,))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn(**conn_kwargs)

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        _safe_rollback(conn)
        raise BackingStoreUnavailable(str(e)) from e
    except Exception:
        _safe_rollback(conn)
        raise
    finally:
        if owns_conn:
            conn.close()


def _safe_rollback(conn: PgConnection) -> None:
    # A dropped connection cannot roll back; the server discards the txn.
    try:
        conn.rollback()
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        pass


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row."""
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> list[tuple[Any, ...]]:
    """Execute query and fetch all rows."""
    cur.execute(query, params)
    return cur.fetchall()


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    nowait: bool = False,
    skip_locked: bool = False,
) -> tuple[Any, ...] | None:
    """Execute SELECT ... FOR UPDATE and fetch one row.

    Appends FOR UPDATE clause to the query. Use within a transaction
    to lock the selected row until commit/rollback.

    Raises:
        ValueError: If both nowait and skip_locked are True.
    """
    if nowait and skip_locked:
        raise ValueError("Cannot use both nowait and skip_locked")

    suffix = " FOR UPDATE"
    if nowait:
        suffix += " NOWAIT"
    elif skip_locked:
        suffix += " SKIP LOCKED"

    full_query = query.rstrip().rstrip(";") + suffix
    cur.execute(full_query, params)
    return cur.fetchone()
