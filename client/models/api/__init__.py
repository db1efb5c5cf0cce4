"""
Pydantic models for the REST boundary
"""
from .responses import (
    ApiResponse,
    Pagination,
    StatCard,
    DashboardStats,
    ReportsStats,
    UserActivity,
    LocationCount,
    ActivityItem,
    AnalyticsSnapshot,
)

__all__ = [
    'ApiResponse',
    'Pagination',
    'StatCard',
    'DashboardStats',
    'ReportsStats',
    'UserActivity',
    'LocationCount',
    'ActivityItem',
    'AnalyticsSnapshot',
]
