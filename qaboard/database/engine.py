"""
qaboard.database.engine — Database Connection & Async Bridge
=============================================================

**Why this file exists:**
Every store operation is ``async`` so callers can keep a room refreshing
while a post is in flight.  SQLAlchemy (and plain file I/O for the local
document) is **synchronous**; calling it straight from a coroutine would
freeze every other task until it returns.

The bridge:

    1. A facade method awaits a store method  (async world).
    2. The store calls ``await run_blocking(some_function, arg1, arg2)``.
    3. ``run_blocking`` ships the synchronous function to a thread pool via
       ``asyncio.to_thread()``.
    4. The blocking work happens on a background thread.
    5. The result is awaited back in the store and mapped to an entity.

Usage::

    from qaboard.database.engine import create_db_engine, init_db, run_blocking

    engine = create_db_engine(url)
    init_db(engine)

    rows = await run_blocking(fetch_rows, engine, room_id)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session

from qaboard.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    """SQLite ignores ``ON DELETE CASCADE`` unless asked per connection."""

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_engine(url: str, *, timeout: float = 10.0, **kwargs) -> Engine:
    """Build a SQLAlchemy :class:`Engine` for the remote backend.

    Server databases get a small pool:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout`` — fail after *timeout* s if no connection is free.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    SQLite URLs (used by tests and single-machine setups) skip the pool
    sizing, which SQLite's pools don't accept, and turn on foreign keys.

    Raises
    ------
    RuntimeError
        If *url* is empty.
    """
    if not url:
        raise RuntimeError(
            "Remote database URL is empty.  "
            "Set QABOARD_REMOTE_URL or enable force_local."
        )

    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", timeout)
        engine = create_engine(url, echo=False, connect_args=connect_args, **kwargs)
        _enable_sqlite_foreign_keys(engine)
    else:
        engine = create_engine(
            url,
            echo=False,        # Set True for SQL debugging
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,   # Reconnect stale connections automatically
            pool_timeout=timeout,
            pool_recycle=3600,
            **kwargs,
        )
    logger.info("Database engine created → %s", engine.url.host or engine.url.database)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`qaboard.database.models`.

    Safe to call on every startup — ``CREATE TABLE IF NOT EXISTS`` under
    the hood.

    .. note::

        A shared database is migrated with Alembic (``alembic upgrade
        head``); ``create_all`` covers fresh SQLite files and tests.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(RoomRow(name="Algorithms", code="ABC123"))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_blocking(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** function on a background thread.

    Every store call goes through this wrapper::

        result = await run_blocking(my_sync_function, engine, question_id)

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the event loop is never
    blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
