"""
Base controller for realtime views

Every view follows the same lifecycle:
1. mount(): authoritative fetch through RequestCache -> ViewStore.replace()
2. open a RealtimeChannel (when signed in) and send ADMIN_AUTH / USER_AUTH
3. reconcile each event through the dispatch table
4. poll on an interval and replace state wholesale (drift correction)
5. unmount(): close the channel, cancel polling, clear the view, ignore late
   results

User mutations go through run_mutation(): optimistic change, REST call,
confirm on success, rollback + a short message naming the action on failure.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from middleware.session import SessionContext
from models.api.responses import ApiResponse
from models.domain.realtime_event import EventType, RealtimeEvent
from services.errors import AuthorizationError, ConflictError, SyncError
from services.realtime_channel import ChannelHandlers, RealtimeChannel
from services.view_store import OptimisticChange, ViewState, ViewStore
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

EventHandler = Callable[[RealtimeEvent], Any]


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a user action, ready to show as a toast"""
    ok: bool
    action: str
    message: str = ""
    error: Optional[str] = None


class BaseController:
    """
    Base class for all view controllers

    Subclasses implement:
    - fetch(): authoritative read (through self.cache), returns a snapshot
    - apply_snapshot(snapshot, check_drift): commit it to self.store
    and register event handlers with self.on(EventType.X, handler).
    """

    requires_admin = False
    requires_auth = False
    realtime = True
    cache_prefix = "view"

    def __init__(
        self,
        context: SessionContext,
        store: ViewStore,
        name: str,
        poll_interval: Optional[float] = None,
    ):
        self.context = context
        self.settings = context.settings
        self.api = context.api
        self.cache = context.cache
        self.store = store
        self.name = name
        self.poll_interval = (
            poll_interval if poll_interval is not None else self.settings.poll_interval_seconds
        )

        self.mounted = False
        self.loading = False
        self.error: Optional[str] = None
        self.access_denied = False
        self.last_updated: Optional[datetime] = None

        self.channel: Optional[RealtimeChannel] = None
        self.channel_authenticated = False
        self._channel_opened = 0

        self._handlers: Dict[str, EventHandler] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        # Metrics
        self.events_processed = 0
        self.events_failed = 0

    @property
    def state(self) -> ViewState:
        return self.store.state

    @property
    def auth_event(self) -> EventType:
        return EventType.ADMIN_AUTH if self.requires_admin else EventType.USER_AUTH

    def on(self, event_type: EventType, handler: EventHandler):
        """Register the reconcile step for one event type"""
        self._handlers[event_type.value] = handler

    def subscribe(self, callback: Callable[[ViewState], None]) -> Callable[[], None]:
        return self.store.subscribe(callback)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def mount(self) -> bool:
        """
        Load the view and start realtime delivery and polling.

        Returns False when the view cannot be shown (not signed in, not an
        admin); `error` / `access_denied` say why.
        """
        if self.mounted:
            return True

        if self.requires_admin and not self.context.is_admin:
            self.access_denied = True
            self.error = "Access denied"
            logger.warning(f"[{self.name}] Access denied: admin role required")
            return False
        if (self.requires_auth or self.requires_admin) and not self.context.is_authenticated:
            self.error = "Please log in"
            logger.warning(f"[{self.name}] Not mounted: no session")
            return False

        self.mounted = True
        self.access_denied = False
        self.context.attach(self)
        logger.info(f"[{self.name}] Mounting")

        await self.refresh()

        if self.mounted and self.realtime and self.context.is_authenticated:
            await self._open_channel()

        if self.mounted and self.poll_interval and self.poll_interval > 0:
            self._poll_task = asyncio.ensure_future(self._poll_loop())

        return self.mounted

    async def unmount(self):
        if not self.mounted:
            return
        self.mounted = False

        tasks = list(self._background)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
        for task in tasks:
            if task is not asyncio.current_task():
                task.cancel()
        for task in tasks:
            if task is asyncio.current_task():
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"[{self.name}] Background task failed during unmount: {e}")
        self._background.clear()
        self._poll_task = None

        if self.channel is not None:
            await self.channel.close()
            self.channel = None
        self.channel_authenticated = False

        self.clear_view()
        self.context.detach(self)
        logger.info(
            f"[{self.name}] Unmounted. "
            f"Events processed: {self.events_processed}, Failed: {self.events_failed}"
        )

    def clear_view(self):
        """Drop everything loaded for the current identity"""
        self.store.clear()
        self.error = None
        self.last_updated = None

    # =========================================================================
    # Authoritative reads
    # =========================================================================

    async def fetch(self) -> Any:
        raise NotImplementedError(f"{self.__class__.__name__} must implement fetch()")

    def apply_snapshot(self, snapshot: Any, check_drift: bool):
        raise NotImplementedError(f"{self.__class__.__name__} must implement apply_snapshot()")

    async def refresh(self, fresh: bool = False, check_drift: bool = False) -> bool:
        """
        Fetch and replace state wholesale.

        `fresh` drops this view's cache entries first. Results arriving after
        unmount are discarded.
        """
        if fresh:
            self.cache.invalidate_prefix(self.cache_prefix)

        self.loading = True
        try:
            snapshot = await self.fetch()
        except AuthorizationError as e:
            self.access_denied = True
            self.error = "Access denied"
            logger.warning(f"[{self.name}] Fetch refused: {e.message}")
            return False
        except SyncError as e:
            self.error = e.message
            logger.error(f"[{self.name}] Fetch failed: {e.message}")
            return False
        except (KeyError, TypeError, ValueError) as e:
            self.error = "Unexpected response from server"
            logger.error(f"[{self.name}] Unparseable fetch result: {e}", exc_info=True)
            return False
        finally:
            self.loading = False

        if not self.mounted:
            logger.debug(f"[{self.name}] Discarding fetch result after unmount")
            return False

        self.error = None
        self.apply_snapshot(snapshot, check_drift)
        self.last_updated = utcnow()
        return True

    async def poll(self):
        """One poll tick: wholesale replacement with drift logging"""
        await self.refresh(fresh=True, check_drift=True)

    async def _poll_loop(self):
        logger.debug(f"[{self.name}] Polling every {self.poll_interval}s")
        while self.mounted:
            try:
                await asyncio.sleep(self.poll_interval)
                if not self.mounted:
                    break
                await self.poll()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[{self.name}] Poll error: {e}", exc_info=True)

    def spawn(self, coro: Awaitable) -> Optional[asyncio.Task]:
        """Run a refetch in the background; cancelled on unmount"""
        if not self.mounted:
            if inspect.iscoroutine(coro):
                coro.close()
            return None
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # =========================================================================
    # Realtime
    # =========================================================================

    async def _open_channel(self):
        self.channel = self.context.create_channel()
        await self.channel.connect(
            self.settings.ws_url,
            ChannelHandlers(
                on_message=self._on_event,
                on_open=self._on_open,
                on_close=self._on_close,
                on_error=self._on_error,
            ),
        )

    async def _on_open(self):
        self._channel_opened += 1
        self.channel_authenticated = False
        session = self.context.session
        if session is not None and self.channel is not None:
            await self.channel.send(
                RealtimeEvent.build(self.auth_event, token=session.token, role=session.role)
            )
        if self._channel_opened > 1 and self.mounted:
            # Events may have been missed while disconnected
            logger.info(f"[{self.name}] Reconnected; refetching")
            self.spawn(self.refresh(fresh=True, check_drift=True))

    def _on_close(self):
        self.channel_authenticated = False
        logger.info(f"[{self.name}] Realtime channel closed")

    def _on_error(self, error: BaseException):
        logger.warning(f"[{self.name}] Realtime channel error: {error}")

    async def _on_event(self, event: RealtimeEvent):
        if not self.mounted:
            return

        handler = self._handlers.get(event.type)
        if handler is None:
            self._on_control_event(event)
            return

        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
            self.events_processed += 1
        except Exception as e:
            self.events_failed += 1
            logger.error(f"[{self.name}] Failed to apply {event.type}: {e}", exc_info=True)

    def _on_control_event(self, event: RealtimeEvent):
        kind = event.known_type
        if kind == EventType.AUTH_SUCCESS:
            self.channel_authenticated = True
            logger.info(f"[{self.name}] Realtime channel authenticated")
        elif kind == EventType.AUTH_ERROR:
            logger.warning(f"[{self.name}] Realtime auth failed: {event.get('message')}")
        elif kind == EventType.ERROR:
            logger.warning(f"[{self.name}] Server reported: {event.get('message')}")
        else:
            logger.debug(f"[{self.name}] Ignoring event {event.type}")

    # =========================================================================
    # Mutations
    # =========================================================================

    def denied(self, action: str, reason: str) -> MutationResult:
        logger.warning(f"[{self.name}] {action} denied: {reason}")
        return MutationResult(ok=False, action=action, message="Access denied", error=reason)

    def check_mutation(self, action: str, admin: bool = False) -> Optional[MutationResult]:
        """A failed MutationResult if the action may not run, else None"""
        if not self.mounted:
            return MutationResult(ok=False, action=action, message="View is not loaded")
        if not self.context.is_authenticated:
            return self.denied(action, "Please log in first.")
        if admin and not self.context.is_admin:
            return self.denied(action, f"Only admin users can {action} this.")
        return None

    async def run_mutation(
        self,
        action: str,
        call: Callable[[], Awaitable[ApiResponse]],
        change: Optional[OptimisticChange] = None,
        success_message: str = "",
        failure_message: str = "",
        authoritative: Optional[Callable[[ApiResponse], Any]] = None,
        insert: bool = False,
    ) -> MutationResult:
        """
        Finish a two-phase change: perform the REST call, then confirm or
        roll back `change` (None when nothing was applied locally).

        Never raises for a failed call; any error rolls back and comes back
        as MutationResult(ok=False).

        `insert` adds the authoritative snapshot to the view when nothing was
        applied locally (creates, whose id only the server knows).
        """
        try:
            response = await call()
        except SyncError as e:
            if change is not None:
                self.store.rollback(change)
            if isinstance(e, ConflictError):
                self.spawn(self.refresh(fresh=True))
            logger.warning(f"[{self.name}] {action} failed: {e.message}")
            return MutationResult(
                ok=False,
                action=action,
                message=failure_message or f"Failed to {action}",
                error=e.message,
            )
        except Exception as e:
            if change is not None:
                self.store.rollback(change)
            logger.error(f"[{self.name}] {action} failed unexpectedly: {e}", exc_info=True)
            return MutationResult(
                ok=False,
                action=action,
                message=failure_message or f"Failed to {action}",
                error=str(e),
            )

        snapshot = None
        if authoritative is not None:
            try:
                snapshot = authoritative(response)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[{self.name}] Ignoring unparseable {action} response: {e}")
        if change is not None:
            self.store.confirm(change, snapshot)
        elif snapshot is not None and self.mounted:
            if insert:
                self.store.apply_insert(snapshot)
            else:
                self.store.apply_update(self.store.lists.id_of(snapshot), snapshot)

        # Cached pages predate this change
        self.cache.invalidate_prefix(self.cache_prefix)
        logger.info(f"[{self.name}] {action} succeeded")
        return MutationResult(ok=True, action=action, message=success_message or response.message)
