"""
DashboardController - headline stat cards + recent report feed

- `dashboard-stats` is read through the cache; `dashboard_update` events
  replace it, ANALYTICS_UPDATE triggers a fresh read
- the feed holds the newest `feed_page_size` reports (optionally for one
  state) and accepts optimistic votes
"""
import asyncio
import logging
from typing import List, Optional, Tuple

from controllers.base import MutationResult
from controllers.reports import ReportViewController, parse_reports
from middleware.session import SessionContext
from models.api.responses import ApiResponse, DashboardStats
from models.domain.realtime_event import EventType, RealtimeEvent
from models.domain.report import Report, Votes
from services.aggregate_stats import report_stats_reconciler
from services.entity_list import EntityListReconciler
from services.errors import SyncError
from services.view_store import ViewStore

logger = logging.getLogger(__name__)

STATS_KEY = "dashboard-stats"
VOTE_TYPES = ('up', 'down')


class DashboardController(ReportViewController):

    cache_prefix = "dashboard"

    def __init__(self, context: SessionContext, state: Optional[str] = None):
        super().__init__(
            context,
            ViewStore(EntityListReconciler(), report_stats_reconciler(), name="dashboard"),
            name="dashboard",
        )
        self.region = state
        self.dashboard_stats: Optional[DashboardStats] = None

        self.register_report_events(new_reports=False)
        self.on(EventType.DASHBOARD_UPDATE, self.handle_dashboard_update)
        self.on(EventType.ANALYTICS_UPDATE, self.handle_analytics_update)

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch(self) -> Tuple[DashboardStats, List[Report]]:
        stats_response, feed_response = await asyncio.gather(
            self.cache.get(STATS_KEY, self.api.get_dashboard_stats),
            self.cache.get(self._feed_key(), self._fetch_feed),
        )
        stats = DashboardStats.model_validate(stats_response.data or {})
        return stats, parse_reports(feed_response.items)

    def _feed_key(self) -> str:
        return f"{self.cache_prefix}-feed:{self.region or 'all'}"

    async def _fetch_feed(self) -> ApiResponse:
        return await self.api.get_reports(limit=self.settings.feed_page_size, state=self.region)

    def apply_snapshot(self, snapshot, check_drift: bool):
        stats, reports = snapshot
        self.dashboard_stats = stats
        self.store.replace(reports, check_drift=check_drift)

    def clear_view(self):
        super().clear_view()
        self.dashboard_stats = None

    async def refresh_stats(self) -> bool:
        """Fresh stat cards only (the feed is kept)"""
        self.cache.clear_key(STATS_KEY)
        try:
            response = await self.cache.get(STATS_KEY, self.api.get_dashboard_stats)
            stats = DashboardStats.model_validate(response.data or {})
        except (SyncError, ValueError) as e:
            logger.error(f"[{self.name}] Stats refresh failed: {e}")
            return False
        if not self.mounted:
            return False
        self.dashboard_stats = stats
        return True

    async def set_region(self, state: Optional[str]) -> bool:
        self.region = None if state in (None, '', 'all') else state
        return await self.refresh()

    @property
    def feed(self) -> Tuple[Report, ...]:
        return self.store.entities

    # =========================================================================
    # Events
    # =========================================================================

    def handle_dashboard_update(self, event: RealtimeEvent):
        stats = event.get('stats')
        if isinstance(stats, dict):
            self.dashboard_stats = DashboardStats.model_validate(stats)

    def handle_analytics_update(self, event: RealtimeEvent):
        self.spawn(self.refresh_stats())

    # =========================================================================
    # Mutations
    # =========================================================================

    async def vote(self, report_id: str, vote_type: str) -> MutationResult:
        """
        Optimistic up/down vote; the server's vote counts replace the local
        projection on success.
        """
        if vote_type not in VOTE_TYPES:
            raise ValueError(f"vote_type must be 'up' or 'down', got {vote_type!r}")

        refused = self.check_mutation("vote")
        if refused:
            return refused

        user_id = self.context.session.user_id
        current = self.store.find(report_id)
        if current is not None and user_id in current.votes.users:
            return MutationResult(
                ok=False, action="vote", message="You have already voted on this report"
            )

        change = None
        if current is not None:
            change = self.store.begin_update(report_id, {'votes': current.votes.with_vote(user_id, vote_type)})

        def with_server_votes(response: ApiResponse) -> Optional[Report]:
            data = response.data if isinstance(response.data, dict) else {}
            snapshot = self.store.find(report_id)
            if snapshot is None or not isinstance(data.get('votes'), dict):
                return None
            return snapshot.with_changes(votes=Votes.from_api(data['votes']))

        return await self.run_mutation(
            "vote",
            lambda: self.api.vote_report(report_id, vote_type),
            change,
            success_message="Vote recorded",
            failure_message="Failed to record vote",
            authoritative=with_server_votes,
        )
