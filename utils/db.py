"""
Postgres connection helpers shared by the room store and the reward ledger.

Blocking psycopg2 calls are pushed to the default executor with ``run_sync``
so a slow query never stalls other rooms' workflows.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from contextlib import contextmanager
from typing import Any, Callable

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

import config

log = logging.getLogger(__name__)

# ── Connection ────────────────────────────────────────────────────────

_pool: ThreadedConnectionPool | None = None


def get_pool() -> ThreadedConnectionPool:
    global _pool
    if _pool is None:
        if not config.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not configured")
        _pool = ThreadedConnectionPool(config.DB_POOL_MIN, config.DB_POOL_MAX, config.DATABASE_URL)
        log.info("Postgres pool opened (%d-%d connections)", config.DB_POOL_MIN, config.DB_POOL_MAX)
    return _pool


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None


@contextmanager
def get_cursor():
    """Yield a dict cursor inside one transaction (commit on success, rollback on error)."""
    pool = get_pool()
    conn = pool.getconn()
    try:
        with conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                yield cur
    finally:
        pool.putconn(conn)


async def run_sync(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
