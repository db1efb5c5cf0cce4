"""
MyReportsController - the signed-in user's own reports (profile view)

Counters (total / pending / verified / rejected) start from the server's
`stats` block. Reports by other users never enter this view; an own report
that does not match the status filter is left to the server's counts.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from controllers.base import MutationResult
from controllers.reports import ReportViewController, parse_reports, report_from_event, report_from_response
from middleware.session import SessionContext
from models.api.responses import ApiResponse
from models.domain.realtime_event import RealtimeEvent
from models.domain.report import Report, ReportStatus, Severity
from services.aggregate_stats import user_report_stats_reconciler
from services.entity_list import EntityListReconciler
from services.view_store import ViewStore

logger = logging.getLogger(__name__)


class MyReportsController(ReportViewController):

    requires_auth = True
    cache_prefix = "my-reports"

    def __init__(self, context: SessionContext):
        super().__init__(
            context,
            ViewStore(EntityListReconciler(), user_report_stats_reconciler(), name="my-reports"),
            name="my-reports",
        )
        self.status: Optional[str] = None
        self.register_report_events()

    # =========================================================================
    # Reads
    # =========================================================================

    def _cache_key(self) -> str:
        return f"{self.cache_prefix}:{self.status or 'all'}"

    async def fetch(self) -> Tuple[List[Report], Optional[Dict[str, Any]]]:
        response = await self.cache.get(self._cache_key(), self._fetch_reports)
        return parse_reports(response.items), response.stats

    async def _fetch_reports(self) -> ApiResponse:
        return await self.api.get_user_reports(
            page=1,
            limit=self.settings.my_reports_page_size,
            sort_by='createdAt',
            sort_order='desc',
            status=self.status,
        )

    def apply_snapshot(self, snapshot, check_drift: bool):
        reports, server_stats = snapshot
        self.store.replace(reports, server_stats=server_stats, check_drift=check_drift)

    async def set_status_filter(self, status: Optional[str]) -> bool:
        """'all' or empty shows every status"""
        self.status = None if status in (None, '', 'all') else ReportStatus(status.upper()).value
        return await self.refresh()

    @property
    def reports(self) -> Tuple[Report, ...]:
        return self.store.entities

    def is_own(self, report: Report) -> bool:
        session = self.context.session
        return session is not None and report.author == session.user_id

    # =========================================================================
    # Events
    # =========================================================================

    def handle_new_report(self, event: RealtimeEvent) -> Optional[Report]:
        report = report_from_event(event)
        if report is None or not self.is_own(report):
            return None
        if self.status and report.status.value != self.status:
            # Not listed under this filter, but the server's counters move
            self.spawn(self.refresh(fresh=True))
            return None
        return super().handle_new_report(event)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def delete(self, report_id: str) -> MutationResult:
        """Owner delete; admins may delete any report they see here"""
        refused = self.check_mutation("delete")
        if refused:
            return refused

        report = self.store.find(report_id)
        if report is not None and not self.is_own(report) and not self.context.is_admin:
            return self.denied("delete", "You can only delete your own reports.")

        change = self.store.begin_remove(report_id)
        return await self.run_mutation(
            "delete",
            lambda: self.api.delete_report(report_id),
            change,
            success_message="Report deleted successfully",
            failure_message="Failed to delete report",
        )

    async def submit(
        self,
        title: str,
        description: str,
        disaster_type: str,
        severity: str,
        location: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> MutationResult:
        """
        Create a report. The stored report is listed once the server returns
        it; the NEW_REPORT broadcast for the same id is then a no-op.
        """
        refused = self.check_mutation("submit")
        if refused:
            return refused

        body: Dict[str, Any] = {
            'title': title.strip(),
            'description': description.strip(),
            'disasterType': disaster_type,
            'severity': Severity(severity.upper()).value,
            'location': location.strip(),
        }
        if latitude is not None and longitude is not None:
            body['coordinates'] = {'latitude': latitude, 'longitude': longitude}

        return await self.run_mutation(
            "submit",
            lambda: self.api.create_report(body),
            success_message="Report submitted successfully",
            failure_message="Failed to submit report",
            authoritative=report_from_response,
            insert=self.status in (None, ReportStatus.PENDING.value),
        )
