"""
View controllers - one per screen of the disaster-reporting client

Each controller owns a ViewStore and keeps it in step with the REST API
(initial fetch + polling) and the realtime channel (incremental events).
"""

from .base import BaseController, MutationResult
from .admin_panel import AdminPanelController
from .analytics import AnalyticsController
from .comments import CommentsController
from .dashboard import DashboardController
from .live_map import LiveMapController, MapMarker
from .my_reports import MyReportsController
from .notifications import NotificationsController
from .user_management import UserManagementController

__all__ = [
    'BaseController',
    'MutationResult',
    'AdminPanelController',
    'AnalyticsController',
    'CommentsController',
    'DashboardController',
    'LiveMapController',
    'MapMarker',
    'MyReportsController',
    'NotificationsController',
    'UserManagementController',
]
