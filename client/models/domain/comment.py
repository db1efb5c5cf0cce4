"""
Comment domain model
"""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from utils.datetime_utils import parse_api_datetime

MAX_COMMENT_LENGTH = 500


@dataclass(frozen=True)
class Comment:
    """
    One comment under a report.

    `author` is the author's user id; the server may populate it as an
    object, in which case the display name is taken from it.
    """
    id: str
    content: str = ""
    report_id: Optional[str] = None
    author: Optional[str] = None
    author_name: str = ""
    author_avatar: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Comment":
        author = data.get('author')
        report = data.get('report')
        if isinstance(report, dict):
            report = report.get('_id') or report.get('id')
        author_name = data.get('authorName')
        author_avatar = data.get('authorAvatar') or None
        if isinstance(author, dict):
            author_name = author_name or author.get('name')
            author_avatar = author_avatar or author.get('avatar') or None
            author = author.get('_id') or author.get('id')

        return cls(
            id=str(data.get('_id') or data.get('id')),
            content=data.get('content', ''),
            report_id=str(report) if report else None,
            author=str(author) if author else None,
            author_name=author_name or '',
            author_avatar=author_avatar,
            created_at=parse_api_datetime(data.get('createdAt')),
            updated_at=parse_api_datetime(data.get('updatedAt')),
        )

    def with_changes(self, **changes) -> "Comment":
        return replace(self, **changes)

    @property
    def initials(self) -> str:
        """Up to two initials for the avatar fallback"""
        return ''.join(word[0] for word in self.author_name.split() if word)[:2].upper()
