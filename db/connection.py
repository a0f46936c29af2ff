"""
PostgreSQL Connection Pools

Two independent stores are used:
- "tracking": rate change notification records (read/write)
- "legacy":   practice matters table (read, plus attorney re-sync)

All modules use get_connection(), never create connections directly.

Usage:
    from db.connection import get_connection, TRACKING

    with get_connection(TRACKING) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM rate_change_notifications WHERE rate_change_year = %s", (year,))
        rows = cursor.fetchall()
"""
import os
import logging
from contextlib import contextmanager
from typing import Dict

from psycopg2.pool import ThreadedConnectionPool
from psycopg2.extras import RealDictCursor

from config import get_config

logger = logging.getLogger(__name__)

TRACKING = "tracking"
LEGACY = "legacy"

# Module-level pools, initialized lazily on first get_connection() call
_pools: Dict[str, ThreadedConnectionPool] = {}


def _get_database_url(database: str) -> str:
    """Connection string for the named store. Raises ConfigurationError if unset."""
    config = get_config()
    if database == TRACKING:
        return config.require_tracking_database()
    if database == LEGACY:
        return config.require_legacy_database()
    raise ValueError(f"Unknown database: {database}")


def get_pool(database: str = TRACKING) -> ThreadedConnectionPool:
    """Get or create the connection pool for one store."""
    pool = _pools.get(database)
    if pool is None:
        url = _get_database_url(database)
        min_conn = int(os.environ.get("PG_POOL_MIN", "1"))
        max_conn = int(os.environ.get("PG_POOL_MAX", "10"))
        pool = ThreadedConnectionPool(minconn=min_conn, maxconn=max_conn, dsn=url)
        _pools[database] = pool
        logger.info("PostgreSQL %s pool initialized (min=%d, max=%d)", database, min_conn, max_conn)
    return pool


def close_pools():
    """Close every connection pool. Call on application shutdown."""
    for database, pool in list(_pools.items()):
        pool.closeall()
        logger.info("PostgreSQL %s pool closed", database)
    _pools.clear()


@contextmanager
def get_connection(database: str = TRACKING, autocommit: bool = False):
    """
    Get a connection from the pool as a context manager.

    Commits on success, rolls back on exception, always returns to pool.
    Uses RealDictCursor by default so rows come back as dicts.

    Args:
        database: TRACKING or LEGACY
        autocommit: If True, set connection to autocommit mode (for DDL).
    """
    pool = get_pool(database)
    conn = pool.getconn()
    conn.cursor_factory = RealDictCursor
    if autocommit:
        conn.autocommit = True
    try:
        yield conn
        if not autocommit:
            conn.commit()
    except Exception:
        if not autocommit:
            conn.rollback()
        raise
    finally:
        conn.autocommit = False
        pool.putconn(conn)
