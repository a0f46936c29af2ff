"""
db/: PostgreSQL Database Layer

All data access goes through this package.

Usage:
    from db.connection import get_connection, TRACKING, LEGACY
    from db.notifications import mark_sent, mark_not_applicable, revert
    from db.matters import get_open_matters, get_matters_for_clients

Connection pools are initialized on first use from the connection strings
in EngineConfig.
"""
from db.connection import get_connection, get_pool, close_pools, TRACKING, LEGACY


def ensure_all_tables():
    """Initialize the tracking tables. Call once at application startup."""
    from db.notifications import ensure_notification_tables

    ensure_notification_tables()


__all__ = [
    "get_connection",
    "get_pool",
    "close_pools",
    "ensure_all_tables",
    "TRACKING",
    "LEGACY",
]
