"""
Dashboard Data Access Layer - Base Class
Read-only access to the practice and tracking databases.
"""
from config import EngineConfig, get_config


class DashboardData:
    """Read-only data access for the dashboard."""

    def __init__(self, config: EngineConfig = None):
        self.config = config or get_config()

    def require_databases(self) -> None:
        """Raise ConfigurationError unless both stores are configured."""
        self.config.require_legacy_database()
        self.config.require_tracking_database()
