"""
Dashboard Data Access Layer - Package Init
Combines all data access mixins into a single DashboardData class.
"""
from dashboard.models.base import DashboardData as _BaseDashboardData
from dashboard.models.rate_changes import RateChangeDataMixin


class DashboardData(
    _BaseDashboardData,
    RateChangeDataMixin,
):
    """
    Unified DashboardData class combining all domain-specific mixins.
    """
    pass


__all__ = ['DashboardData']
