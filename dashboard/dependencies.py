"""
FastAPI dependencies shared by the route modules.

The service owns one httpx client and is created on first use, then reused
for the life of the process. Tests swap both through app.dependency_overrides.
"""
from typing import Optional

from config import get_config
from dashboard.models import DashboardData
from rate_changes import RateChangeService

_service: Optional[RateChangeService] = None


def get_rate_change_service() -> RateChangeService:
    global _service
    if _service is None:
        _service = RateChangeService.from_config(get_config())
    return _service


def get_dashboard_data() -> DashboardData:
    return DashboardData(get_config())


async def close_rate_change_service() -> None:
    """Close the shared service's HTTP client. Call on application shutdown."""
    global _service
    if _service is not None:
        await _service.aclose()
        _service = None
