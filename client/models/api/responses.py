"""
Pydantic models for REST response envelopes

Every endpoint answers `{success, message, data, ...}`; list endpoints add
`pagination`, report lists may add `stats`, notification lists add
`unreadCount`.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Any, Dict


class Pagination(BaseModel):
    """Pagination block of list endpoints"""
    page: int = 1
    limit: int = 0
    total: int = 0
    pages: int = 0


class ApiResponse(BaseModel):
    """Generic response envelope"""
    success: bool = False
    message: str = ""
    data: Any = None
    error: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None  # may carry aggregate noise such as `_id: null`
    pagination: Optional[Pagination] = None
    unread_count: Optional[int] = Field(default=None, alias="unreadCount")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @property
    def items(self) -> List[Dict[str, Any]]:
        """`data` as a list of raw entity dicts (empty when absent)"""
        if isinstance(self.data, list):
            return self.data
        return []


class StatCard(BaseModel):
    """One dashboard tile: current value plus trend against a previous period"""
    value: float = 0
    trend: float = 0
    trend_type: str = Field(default="up", alias="trendType")
    description: str = ""

    model_config = {"populate_by_name": True}


class DashboardStats(BaseModel):
    """Payload of GET /dashboard/stats and of `dashboard_update` events"""
    active_reports: StatCard = Field(default_factory=StatCard, alias="activeReports")
    verified_incidents: StatCard = Field(default_factory=StatCard, alias="verifiedIncidents")
    active_citizens: StatCard = Field(default_factory=StatCard, alias="activeCitizens")
    avg_response_time: StatCard = Field(default_factory=StatCard, alias="avgResponseTime")
    alerts_today: StatCard = Field(default_factory=StatCard, alias="alertsToday")

    model_config = {"populate_by_name": True, "extra": "allow"}


class ReportsStats(BaseModel):
    total_reports: int = Field(default=0, alias="totalReports")
    verified_reports: int = Field(default=0, alias="verifiedReports")
    pending_reports: int = Field(default=0, alias="pendingReports")
    rejected_reports: int = Field(default=0, alias="rejectedReports")

    model_config = {"populate_by_name": True}


class UserActivity(BaseModel):
    total_users: int = Field(default=0, alias="totalUsers")
    active_users: int = Field(default=0, alias="activeUsers")
    new_users_this_week: int = Field(default=0, alias="newUsersThisWeek")

    model_config = {"populate_by_name": True}


class LocationCount(BaseModel):
    location: Optional[str] = None
    count: int = 0


class ActivityItem(BaseModel):
    type: str  # 'report', 'comment' or 'verification'
    description: str = ""
    timestamp: Optional[datetime] = None
    user: Optional[str] = None


class AnalyticsSnapshot(BaseModel):
    """
    Payload of GET /analytics plus derived fields.

    avg_response_time stays None: the server does not report it and the
    client does not make one up.
    """
    reports_stats: ReportsStats = Field(default_factory=ReportsStats, alias="reportsStats")
    user_activity: UserActivity = Field(default_factory=UserActivity, alias="userActivity")
    reports_by_severity: Dict[str, int] = Field(default_factory=dict, alias="reportsBySeverity")
    reports_by_location: List[LocationCount] = Field(default_factory=list, alias="reportsByLocation")
    recent_activity: List[ActivityItem] = Field(default_factory=list, alias="recentActivity")
    avg_response_time: Optional[float] = Field(default=None, alias="avgResponseTime")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def verification_rate(self) -> int:
        """Verified share of all reports, as a rounded percentage"""
        total = self.reports_stats.total_reports
        if total <= 0:
            return 0
        return round(self.reports_stats.verified_reports / total * 100)
