"""
User domain model
"""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from utils.datetime_utils import parse_api_datetime


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class User:
    """
    User snapshot as listed by the admin user-management endpoints.

    Note: ids are Mongo ObjectIds (`_id`), not the short client ids.
    """
    id: str
    name: str = ""
    email: str = ""
    role: UserRole = UserRole.USER

    # Moderation
    is_blocked: bool = False
    is_verified: bool = False

    # Credits and reputation system
    credits: int = 0
    verified_reports_count: int = 0

    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=str(data.get('_id') or data.get('id')),
            name=data.get('name', ''),
            email=data.get('email', ''),
            role=UserRole(data.get('role', UserRole.USER.value)),
            is_blocked=bool(data.get('isBlocked', False)),
            is_verified=bool(data.get('isVerified', False)),
            credits=int(data.get('credits', 0)),
            verified_reports_count=int(data.get('verifiedReportsCount', 0)),
            created_at=parse_api_datetime(data.get('createdAt')),
        )

    def with_changes(self, **changes) -> "User":
        return replace(self, **changes)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def matches_search(self, term: str) -> bool:
        """Case-insensitive match on name or email"""
        if not term:
            return True
        t = term.lower()
        return t in self.name.lower() or t in self.email.lower()
