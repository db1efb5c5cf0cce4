"""
NotificationsController - the signed-in user's notification list

The unread counter starts from the server's `unreadCount`, moves with
read/delete transitions, and is overwritten by NOTIFICATION_COUNT_UPDATE.
"""
import logging
from typing import List, Optional, Tuple

from controllers.base import BaseController, MutationResult
from middleware.session import SessionContext
from models.domain.notification import Notification
from models.domain.realtime_event import EventType, RealtimeEvent
from services.aggregate_stats import notification_stats_reconciler
from services.entity_list import EntityListReconciler
from services.errors import SyncError
from services.view_store import ViewStore
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

UNREAD = 'unread'


class NotificationsController(BaseController):

    requires_auth = True
    cache_prefix = "notifications"

    def __init__(self, context: SessionContext):
        super().__init__(
            context,
            ViewStore(EntityListReconciler(), notification_stats_reconciler(), name="notifications"),
            name="notifications",
        )
        self.on(EventType.NEW_NOTIFICATION, self.handle_new_notification)
        self.on(EventType.NOTIFICATION_COUNT_UPDATE, self.handle_count_update)

    async def fetch(self) -> Tuple[List[Notification], int]:
        response = await self.cache.get(self.cache_prefix, self._fetch_notifications)
        notifications = [Notification.from_api(raw) for raw in response.items]
        unread = response.unread_count
        if unread is None:
            unread = sum(1 for n in notifications if not n.is_read)
        return notifications, unread

    async def _fetch_notifications(self):
        return await self.api.get_notifications(page=1, limit=self.settings.notifications_page_size)

    def apply_snapshot(self, snapshot, check_drift: bool):
        notifications, unread = snapshot
        self.store.replace(notifications, server_stats={'total': len(notifications), UNREAD: unread})

    @property
    def notifications(self) -> Tuple[Notification, ...]:
        return self.store.entities

    @property
    def unread_count(self) -> int:
        return self.store.stats[UNREAD]

    async def refresh_unread_count(self) -> Optional[int]:
        try:
            count = await self.api.get_unread_count()
        except SyncError as e:
            logger.warning(f"[{self.name}] Failed to refresh unread count: {e.message}")
            return None
        if self.mounted:
            self.store.set_counter(UNREAD, count)
        return count

    # =========================================================================
    # Events
    # =========================================================================

    def handle_new_notification(self, event: RealtimeEvent):
        raw = event.get('notification')
        if not isinstance(raw, dict):
            logger.warning(f"[{self.name}] NEW_NOTIFICATION without a notification payload")
            return
        notification = Notification.from_api(raw)
        self.store.apply_insert(notification)
        logger.info(f"[{self.name}] {notification.title or 'New notification'}")

    def handle_count_update(self, event: RealtimeEvent):
        count = event.get('unreadCount')
        if count is None:
            return
        self.store.set_counter(UNREAD, int(count))

    # =========================================================================
    # Mutations
    # =========================================================================

    async def mark_as_read(self, notification_id: str) -> MutationResult:
        refused = self.check_mutation("mark_as_read")
        if refused:
            return refused

        current = self.store.find(notification_id)
        if current is not None and current.is_read:
            return MutationResult(ok=True, action="mark_as_read", message="Already read")

        change = self.store.begin_update(notification_id, {'is_read': True, 'read_at': utcnow()})
        return await self.run_mutation(
            "mark_as_read",
            lambda: self.api.mark_notification_read(notification_id),
            change,
            success_message="Notification marked as read",
            failure_message="Failed to mark notification as read",
        )

    async def mark_all_as_read(self) -> MutationResult:
        refused = self.check_mutation("mark_all_as_read")
        if refused:
            return refused

        read_at = utcnow()
        unread = [n for n in self.store.entities if not n.is_read]
        changes = [
            change for change in (
                self.store.begin_update(n.id, {'is_read': True, 'read_at': read_at}) for n in unread
            )
            if change is not None
        ]

        try:
            response = await self.api.mark_all_notifications_read()
        except Exception as e:
            for change in reversed(changes):
                self.store.rollback(change)
            error = e.message if isinstance(e, SyncError) else str(e)
            logger.warning(f"[{self.name}] mark_all_as_read failed: {error}")
            return MutationResult(
                ok=False,
                action="mark_all_as_read",
                message="Failed to mark all notifications as read",
                error=error,
            )

        for change in changes:
            self.store.confirm(change)
        # Unread notifications beyond the loaded page are read now too
        self.store.set_counter(UNREAD, 0)
        self.cache.invalidate_prefix(self.cache_prefix)
        return MutationResult(
            ok=True,
            action="mark_all_as_read",
            message=response.message or "All notifications marked as read",
        )

    async def delete(self, notification_id: str) -> MutationResult:
        refused = self.check_mutation("delete")
        if refused:
            return refused

        change = self.store.begin_remove(notification_id)
        return await self.run_mutation(
            "delete",
            lambda: self.api.delete_notification(notification_id),
            change,
            success_message="Notification deleted",
            failure_message="Failed to delete notification",
        )
