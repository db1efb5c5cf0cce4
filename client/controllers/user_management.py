"""
UserManagementController - paginated admin user list

Admin only. Pages of `users_page_size` users sorted by credits (desc by
default), client-side search and status filters, counters
total / active / blocked / admins over the loaded page.
"""
import logging
from typing import List, Optional, Tuple

from controllers.base import BaseController, MutationResult
from middleware.session import SessionContext
from models.api.responses import ApiResponse, Pagination
from models.domain.realtime_event import EventType, RealtimeEvent
from models.domain.user import User, UserRole
from services.aggregate_stats import user_stats_reconciler
from services.entity_list import EntityListReconciler
from services.view_store import ViewStore

logger = logging.getLogger(__name__)

STATUS_FILTERS = ('all', 'active', 'blocked')


class UserManagementController(BaseController):

    requires_admin = True
    cache_prefix = "admin-users"

    def __init__(self, context: SessionContext):
        super().__init__(
            context,
            ViewStore(EntityListReconciler(), user_stats_reconciler(), name="user-management"),
            name="user-management",
        )
        self.page = 1
        self.sort_by = 'credits'
        self.sort_order = 'desc'
        self.pagination = Pagination()

        self.search = ""
        self.status_filter = 'all'

        self.on(EventType.NEW_USER, self.handle_new_user)
        self.on(EventType.USER_UPDATED, self.handle_user_updated)

    # =========================================================================
    # Reads
    # =========================================================================

    def _cache_key(self) -> str:
        return f"{self.cache_prefix}:{self.page}:{self.sort_by}:{self.sort_order}"

    async def fetch(self) -> Tuple[List[User], Pagination]:
        response = await self.cache.get(self._cache_key(), self._fetch_users)
        users = [User.from_api(raw) for raw in response.items]
        return users, response.pagination or Pagination(page=self.page, total=len(users))

    async def _fetch_users(self) -> ApiResponse:
        return await self.api.get_users(
            page=self.page,
            limit=self.settings.users_page_size,
            sort_by=self.sort_by,
            sort_order=self.sort_order,
        )

    def apply_snapshot(self, snapshot, check_drift: bool):
        users, pagination = snapshot
        self.pagination = pagination
        self.store.replace(users, check_drift=check_drift)

    def clear_view(self):
        super().clear_view()
        self.pagination = Pagination()

    async def go_to_page(self, page: int) -> bool:
        pages = max(self.pagination.pages, 1)
        self.page = max(1, min(page, pages))
        return await self.refresh()

    async def sort(self, field: str) -> bool:
        """Toggle the order when re-sorting by the same field"""
        if self.sort_by == field:
            self.sort_order = 'asc' if self.sort_order == 'desc' else 'desc'
        else:
            self.sort_by = field
            self.sort_order = 'desc'
        return await self.refresh()

    def set_filters(self, search: str = "", status: str = 'all'):
        if status not in STATUS_FILTERS:
            raise ValueError(f"status must be one of {STATUS_FILTERS}, got {status!r}")
        self.search = search or ""
        self.status_filter = status

    @property
    def users(self) -> Tuple[User, ...]:
        return self.store.entities

    @property
    def filtered_users(self) -> Tuple[User, ...]:
        result = []
        for user in self.store.entities:
            if not user.matches_search(self.search):
                continue
            if self.status_filter == 'blocked' and not user.is_blocked:
                continue
            if self.status_filter == 'active' and user.is_blocked:
                continue
            result.append(user)
        return tuple(result)

    @property
    def total_users(self) -> int:
        """Server-wide count from pagination (the stats cover one page)"""
        return self.pagination.total

    # =========================================================================
    # Events
    # =========================================================================

    def handle_new_user(self, event: RealtimeEvent):
        user = _user_from_event(event)
        if user is None:
            # Bare notification: only the server knows where the user sorts
            self.spawn(self.refresh(fresh=True))
            return
        self.store.apply_insert(user)

    def handle_user_updated(self, event: RealtimeEvent):
        user = _user_from_event(event)
        if user is None:
            self.spawn(self.refresh(fresh=True))
            return
        self.store.apply_update(user.id, user)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def block(self, user_id: str) -> MutationResult:
        return await self._set_blocked(user_id, True)

    async def unblock(self, user_id: str) -> MutationResult:
        return await self._set_blocked(user_id, False)

    async def _set_blocked(self, user_id: str, blocked: bool) -> MutationResult:
        action = "block" if blocked else "unblock"
        refused = self.check_mutation(action, admin=True)
        if refused:
            return refused
        if user_id == self.context.session.user_id:
            return MutationResult(ok=False, action=action, message=f"You cannot {action} yourself")

        change = self.store.begin_update(user_id, {'is_blocked': blocked})
        call = self.api.block_user if blocked else self.api.unblock_user
        return await self.run_mutation(
            action,
            lambda: call(user_id),
            change,
            success_message=f"User {action}ed successfully",
            failure_message=f"Failed to {action} user",
            authoritative=_user_from_response,
        )

    async def delete(self, user_id: str) -> MutationResult:
        refused = self.check_mutation("delete", admin=True)
        if refused:
            return refused
        if user_id == self.context.session.user_id:
            return MutationResult(ok=False, action="delete", message="You cannot delete yourself")

        change = self.store.begin_remove(user_id)
        return await self.run_mutation(
            "delete",
            lambda: self.api.delete_user(user_id),
            change,
            success_message="User deleted successfully",
            failure_message="Failed to delete user",
        )

    async def set_role(self, user_id: str, role: str) -> MutationResult:
        role = UserRole(role)
        refused = self.check_mutation("set_role", admin=True)
        if refused:
            return refused

        # The role endpoint answers with a partial user; keep the local snapshot
        change = self.store.begin_update(user_id, {'role': role})
        return await self.run_mutation(
            "set_role",
            lambda: self.api.update_user_role(user_id, role.value),
            change,
            success_message="User role updated",
            failure_message="Failed to update user role",
        )


def _user_from_event(event: RealtimeEvent) -> Optional[User]:
    raw = event.get('user')
    return User.from_api(raw) if isinstance(raw, dict) and raw.get('_id') else None


def _user_from_response(response: ApiResponse) -> Optional[User]:
    data = response.data if isinstance(response.data, dict) else {}
    raw = data.get('user')
    return User.from_api(raw) if isinstance(raw, dict) and raw.get('_id') else None
