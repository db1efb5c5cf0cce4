"""
AnalyticsController - platform-wide report and user statistics

The authoritative numbers come from GET /analytics (refreshed every 5
minutes). Between refreshes NEW_REPORT events bump the status and severity
counters incrementally; any other report change or ANALYTICS_UPDATE asks
the server again, since a count cannot be adjusted without the old state.

Reports seen over the channel since the last refresh are kept as the
store's entity list, so a repeated NEW_REPORT is not counted twice.
"""
import asyncio
import logging
from typing import Dict, Optional

from controllers.reports import ReportViewController
from middleware.session import SessionContext
from models.api.responses import AnalyticsSnapshot
from models.domain.realtime_event import EventType, RealtimeEvent
from models.domain.report import Severity
from services.aggregate_stats import SEVERITY_COUNTERS, severity_stats_reconciler
from services.entity_list import EntityListReconciler
from services.view_store import ViewStore

logger = logging.getLogger(__name__)

ANALYTICS_KEY = "analytics"


class AnalyticsController(ReportViewController):

    requires_auth = True
    cache_prefix = ANALYTICS_KEY

    def __init__(self, context: SessionContext):
        super().__init__(
            context,
            ViewStore(EntityListReconciler(), severity_stats_reconciler(), name="analytics"),
            name="analytics",
            poll_interval=context.settings.analytics_refresh_seconds,
        )
        self.snapshot: Optional[AnalyticsSnapshot] = None
        self._refetch: Optional[asyncio.Task] = None

        self.on(EventType.NEW_REPORT, self.handle_new_report)
        for event_type in (
            EventType.REPORT_UPDATED,
            EventType.REPORT_DELETED,
            EventType.REPORT_VERIFIED,
            EventType.REPORT_REJECTED,
            EventType.REPORT_VERIFICATION,
            EventType.ANALYTICS_UPDATE,
        ):
            self.on(event_type, self.handle_refetch)

    async def fetch(self) -> AnalyticsSnapshot:
        response = await self.cache.get(ANALYTICS_KEY, self.api.get_analytics)
        return AnalyticsSnapshot.model_validate(response.data or {})

    def apply_snapshot(self, snapshot: AnalyticsSnapshot, check_drift: bool):
        self.snapshot = snapshot
        reports = snapshot.reports_stats
        counters = {
            'total': reports.total_reports,
            'pending': reports.pending_reports,
            'verified': reports.verified_reports,
            'rejected': reports.rejected_reports,
        }
        for severity in Severity:
            counters[severity.value.lower()] = snapshot.reports_by_severity.get(severity.value, 0)
        self.store.replace([], server_stats=counters)

    def clear_view(self):
        super().clear_view()
        self.snapshot = None

    def handle_refetch(self, event: RealtimeEvent):
        if self._refetch is not None and not self._refetch.done():
            logger.debug(f"[{self.name}] Refetch already running; {event.type} folded into it")
            return
        self._refetch = self.spawn(self.refresh(fresh=True))

    # =========================================================================
    # Derived figures (incremental counters included)
    # =========================================================================

    @property
    def total_reports(self) -> int:
        return self.store.stats['total']

    @property
    def verification_rate(self) -> int:
        """Verified share of all reports as a rounded percentage"""
        total = self.store.stats['total']
        if total <= 0:
            return 0
        return round(self.store.stats['verified'] / total * 100)

    @property
    def reports_by_severity(self) -> Dict[str, int]:
        return {name.upper(): self.store.stats[name] for name in SEVERITY_COUNTERS}

    @property
    def avg_response_time(self) -> Optional[float]:
        """Only what the server reports; never estimated"""
        return self.snapshot.avg_response_time if self.snapshot else None
