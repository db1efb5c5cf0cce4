"""
Disaster report domain model
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from utils.datetime_utils import parse_api_datetime


class ReportStatus(str, Enum):
    """Verification status set by admins"""
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class Severity(str, Enum):
    """Reported severity level"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Media:
    url: str
    type: str  # 'image' or 'video'
    public_id: Optional[str] = None


@dataclass(frozen=True)
class Votes:
    """Up/down vote tally; `users` holds ids of everyone who voted"""
    up: int = 0
    down: int = 0
    users: Tuple[str, ...] = ()

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> "Votes":
        if not data:
            return cls()
        return cls(
            up=int(data.get('up', 0)),
            down=int(data.get('down', 0)),
            users=tuple(str(u) for u in data.get('users', [])),
        )

    def with_vote(self, user_id: str, vote_type: str) -> "Votes":
        """Local projection of a vote; the server's tally replaces it on confirm"""
        if user_id in self.users:
            return self
        if vote_type == 'up':
            return Votes(up=self.up + 1, down=self.down, users=self.users + (user_id,))
        return Votes(up=self.up, down=self.down + 1, users=self.users + (user_id,))


def _ref_id(value) -> Optional[str]:
    """Populated references arrive as objects, unpopulated ones as plain ids"""
    if value is None:
        return None
    if isinstance(value, dict):
        ref = value.get('_id') or value.get('id')
        return str(ref) if ref is not None else None
    return str(value)


@dataclass(frozen=True)
class Report:
    """
    Disaster report snapshot as served by the REST API.

    Snapshots are immutable: every change produces a new instance through
    `with_changes`, so several views can hold the same report safely.

    ID format: Mongo ObjectId (24 hex chars), sent as `_id`.
    """
    id: str
    title: str = ""
    description: str = ""
    disaster_type: str = ""
    severity: Severity = Severity.LOW
    location: str = ""
    coordinates: Optional[Coordinates] = None
    media: Optional[Media] = None
    status: ReportStatus = ReportStatus.PENDING

    # Author
    author: Optional[str] = None
    author_name: Optional[str] = None

    # Engagement
    votes: Votes = field(default_factory=Votes)
    views: int = 0

    # Verification
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Report":
        """Build a snapshot from the API's `_id` / camelCase JSON shape"""
        coords = data.get('coordinates')
        media = data.get('media')
        author = data.get('author')
        author_name = data.get('authorName')
        if author_name is None and isinstance(author, dict):
            author_name = author.get('name')

        return cls(
            id=str(data.get('_id') or data.get('id')),
            title=data.get('title', ''),
            description=data.get('description', ''),
            disaster_type=data.get('disasterType', ''),
            severity=Severity(data.get('severity', Severity.LOW.value)),
            location=data.get('location', ''),
            coordinates=(
                Coordinates(float(coords['latitude']), float(coords['longitude']))
                if coords and coords.get('latitude') is not None and coords.get('longitude') is not None
                else None
            ),
            media=(
                Media(url=media['url'], type=media.get('type', 'image'), public_id=media.get('publicId'))
                if media and media.get('url') else None
            ),
            status=ReportStatus(data.get('status', ReportStatus.PENDING.value)),
            author=_ref_id(author),
            author_name=author_name,
            votes=Votes.from_api(data.get('votes')),
            views=int(data.get('views', 0)),
            verified_by=_ref_id(data.get('verifiedBy')),
            verified_at=parse_api_datetime(data.get('verifiedAt')),
            created_at=parse_api_datetime(data.get('createdAt')),
            updated_at=parse_api_datetime(data.get('updatedAt')),
        )

    def with_changes(self, **changes) -> "Report":
        return replace(self, **changes)

    @property
    def is_pending(self) -> bool:
        return self.status == ReportStatus.PENDING

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    @property
    def has_coordinates(self) -> bool:
        return self.coordinates is not None

    def matches_search(self, query: str) -> bool:
        """Case-insensitive match on title or location (map and admin search box)"""
        if not query:
            return True
        q = query.lower()
        return q in self.title.lower() or q in self.location.lower()
