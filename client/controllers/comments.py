"""
CommentsController - the comment list under one report

Reading is public; posting, editing and deleting need a session. The server
sends no realtime event for comments, so the list follows this client's own
mutations and the poll. `total` starts from the server's pagination total
and moves with inserts and removals.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from controllers.base import BaseController, MutationResult
from middleware.session import SessionContext
from models.api.responses import ApiResponse
from models.domain.comment import MAX_COMMENT_LENGTH, Comment
from services.aggregate_stats import comment_stats_reconciler
from services.entity_list import EntityListReconciler
from services.view_store import ViewStore

logger = logging.getLogger(__name__)


def parse_comments(items: List[Dict[str, Any]]) -> List[Comment]:
    comments = []
    for raw in items:
        try:
            comments.append(Comment.from_api(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed comment: {e}")
    return comments


def _comment_from_response(response: ApiResponse) -> Optional[Comment]:
    data = response.data if isinstance(response.data, dict) else {}
    raw = data.get('comment')
    return Comment.from_api(raw) if isinstance(raw, dict) else None


class CommentsController(BaseController):

    realtime = False

    def __init__(self, context: SessionContext, report_id: str):
        name = f"comments:{report_id}"
        super().__init__(
            context,
            ViewStore(EntityListReconciler(), comment_stats_reconciler(), name=name),
            name=name,
        )
        self.report_id = report_id
        self.cache_prefix = name

    async def fetch(self) -> Tuple[List[Comment], int]:
        response = await self.cache.get(self.cache_prefix, self._fetch_comments)
        comments = parse_comments(response.items)
        total = response.pagination.total if response.pagination else len(comments)
        return comments, total

    async def _fetch_comments(self) -> ApiResponse:
        return await self.api.get_comments(self.report_id, page=1, limit=self.settings.comments_page_size)

    def apply_snapshot(self, snapshot, check_drift: bool):
        comments, total = snapshot
        self.store.replace(comments, server_stats={'total': max(total, len(comments))})

    @property
    def comments(self) -> Tuple[Comment, ...]:
        return self.store.entities

    @property
    def total(self) -> int:
        return self.store.stats['total']

    # =========================================================================
    # Mutations
    # =========================================================================

    def _check_content(self, action: str, content: str) -> Optional[MutationResult]:
        if not content:
            return MutationResult(ok=False, action=action, message="Please enter a comment")
        if len(content) > MAX_COMMENT_LENGTH:
            return MutationResult(
                ok=False,
                action=action,
                message=f"Comment cannot be more than {MAX_COMMENT_LENGTH} characters",
            )
        return None

    def _check_owner(self, action: str, comment_id: str, allow_admin: bool) -> Optional[MutationResult]:
        comment = self.store.find(comment_id)
        if comment is None:
            return None
        if comment.author == self.context.session.user_id:
            return None
        if allow_admin and self.context.is_admin:
            return None
        return self.denied(action, f"Not authorized to {action} this comment")

    async def add(self, content: str) -> MutationResult:
        """Post a comment; the stored comment is prepended once the server returns it"""
        refused = self.check_mutation("comment")
        if refused:
            return refused
        content = (content or "").strip()
        invalid = self._check_content("comment", content)
        if invalid:
            return invalid

        return await self.run_mutation(
            "comment",
            lambda: self.api.create_comment(self.report_id, content),
            success_message="Comment added successfully",
            failure_message="Failed to add comment",
            authoritative=_comment_from_response,
            insert=True,
        )

    async def edit(self, comment_id: str, content: str) -> MutationResult:
        refused = self.check_mutation("edit")
        if refused:
            return refused
        content = (content or "").strip()
        refused = self._check_content("edit", content) or self._check_owner("edit", comment_id, allow_admin=False)
        if refused:
            return refused

        change = self.store.begin_update(comment_id, {'content': content})
        return await self.run_mutation(
            "edit",
            lambda: self.api.update_comment(comment_id, content),
            change,
            success_message="Comment updated successfully",
            failure_message="Failed to update comment",
            authoritative=_comment_from_response,
        )

    async def delete(self, comment_id: str) -> MutationResult:
        """Authors delete their own comments; admins may delete any"""
        refused = self.check_mutation("delete") or self._check_owner("delete", comment_id, allow_admin=True)
        if refused:
            return refused

        change = self.store.begin_remove(comment_id)
        return await self.run_mutation(
            "delete",
            lambda: self.api.delete_comment(comment_id),
            change,
            success_message="Comment deleted successfully",
            failure_message="Failed to delete comment",
        )
