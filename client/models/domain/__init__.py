"""
Domain Models - Transport-agnostic data structures

These models represent the entities the views hold, independent of the REST
and WebSocket wire formats.

Architecture:
- Domain models are frozen dataclasses (immutable snapshots)
- `from_api` classmethods translate the `_id` / camelCase JSON shape
- Reconcilers replace snapshots wholesale, never mutate them
"""

from .report import Report, ReportStatus, Severity, Coordinates, Media, Votes
from .user import User, UserRole
from .notification import Notification, NotificationType
from .comment import Comment, MAX_COMMENT_LENGTH
from .realtime_event import RealtimeEvent, EventType, MalformedEventError
from .stats import AggregateStats

__all__ = [
    # Entities
    'Report',
    'User',
    'Notification',
    'Comment',

    # Report value objects
    'ReportStatus',
    'Severity',
    'Coordinates',
    'Media',
    'Votes',

    # Enums
    'UserRole',
    'NotificationType',

    # Realtime envelope
    'RealtimeEvent',
    'EventType',
    'MalformedEventError',

    # Derived counters
    'AggregateStats',

    # Limits
    'MAX_COMMENT_LENGTH',
]
