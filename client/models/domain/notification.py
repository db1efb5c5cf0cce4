"""
Notification domain model
"""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from utils.datetime_utils import parse_api_datetime


class NotificationType(str, Enum):
    """Why the recipient is being notified"""
    REPORT_VERIFIED = "REPORT_VERIFIED"
    REPORT_REJECTED = "REPORT_REJECTED"
    REPORT_LIKED = "REPORT_LIKED"
    REPORT_DISLIKED = "REPORT_DISLIKED"
    COMMENT_ADDED = "COMMENT_ADDED"
    REPORT_COMMENTED = "REPORT_COMMENTED"


@dataclass(frozen=True)
class Notification:
    id: str
    recipient: Optional[str] = None
    type: Optional[NotificationType] = None
    title: str = ""
    message: str = ""
    related_report_id: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Notification":
        related = data.get('relatedReport')
        if isinstance(related, dict):
            related = related.get('_id')
        raw_type = data.get('type')
        try:
            ntype = NotificationType(raw_type) if raw_type else None
        except ValueError:
            # Newer server versions may add types; keep the notification
            ntype = None

        return cls(
            id=str(data.get('_id') or data.get('id')),
            recipient=data.get('recipient'),
            type=ntype,
            title=data.get('title', ''),
            message=data.get('message', ''),
            related_report_id=str(related) if related else None,
            is_read=bool(data.get('isRead', False)),
            read_at=parse_api_datetime(data.get('readAt')),
            created_at=parse_api_datetime(data.get('createdAt')),
        )

    def with_changes(self, **changes) -> "Notification":
        return replace(self, **changes)
