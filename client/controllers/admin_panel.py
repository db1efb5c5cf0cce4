"""
AdminPanelController - moderation view over all reports

Admin only. Loads up to `admin_page_size` reports (newest first) with
server-side severity/status/search filters and a client-side location
filter. Counters: total / pending / verified / rejected / critical.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from controllers.base import MutationResult
from controllers.reports import ReportViewController, parse_reports, report_from_response
from middleware.session import SessionContext
from models.api.responses import ApiResponse
from models.domain.realtime_event import EventType, RealtimeEvent
from models.domain.report import Report, ReportStatus, Severity
from services.aggregate_stats import report_stats_reconciler
from services.entity_list import EntityListReconciler
from services.errors import AuthorizationError, ConflictError, SyncError
from services.view_store import ViewStore
from utils.datetime_utils import to_api_datetime, utcnow

logger = logging.getLogger(__name__)


class AdminPanelController(ReportViewController):

    requires_admin = True
    cache_prefix = "admin-reports"

    def __init__(self, context: SessionContext):
        super().__init__(
            context,
            ViewStore(EntityListReconciler(), report_stats_reconciler(), name="admin-panel"),
            name="admin-panel",
        )
        self.severity: Optional[str] = None
        self.status: Optional[str] = None
        self.search: Optional[str] = None
        self.location: Optional[str] = None

        # Latest report that arrived over the channel, until acknowledged
        self.new_report_alert: Optional[Report] = None
        self.has_new_reports = False

        self.register_report_events()

    # =========================================================================
    # Reads
    # =========================================================================

    def _cache_key(self) -> str:
        return f"{self.cache_prefix}:{self.severity or 'all'}:{self.status or 'all'}:{self.search or ''}"

    async def fetch(self) -> Tuple[List[Report], Optional[Dict[str, Any]]]:
        response = await self.cache.get(self._cache_key(), self._fetch_reports)
        return parse_reports(response.items), response.stats

    async def _fetch_reports(self) -> ApiResponse:
        params = dict(
            page=1,
            limit=self.settings.admin_page_size,
            sort_by='createdAt',
            sort_order='desc',
            severity=self.severity,
            status=self.status,
        )
        try:
            return await self.api.get_admin_reports(search=self.search, **params)
        except AuthorizationError:
            raise
        except SyncError as e:
            logger.warning(f"[{self.name}] Admin reports endpoint failed ({e.message}); falling back to /reports")
            return await self.api.get_reports(**params)

    def apply_snapshot(self, snapshot, check_drift: bool):
        reports, server_stats = snapshot
        self.store.replace(reports, server_stats=server_stats, check_drift=check_drift)

    def clear_view(self):
        super().clear_view()
        self.acknowledge_new_reports()

    async def set_filters(
        self,
        severity: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> bool:
        """Server-side filters; 'all' or empty means no filter"""
        self.severity = None if severity in (None, '', 'all') else Severity(severity.upper()).value
        self.status = None if status in (None, '', 'all') else ReportStatus(status.upper()).value
        self.search = search or None
        return await self.refresh()

    def set_location_filter(self, location: Optional[str]):
        self.location = None if location in (None, '', 'all') else location

    @property
    def reports(self) -> Tuple[Report, ...]:
        return self.store.entities

    @property
    def filtered_reports(self) -> Tuple[Report, ...]:
        """Reports matching the client-side location filter"""
        if not self.location:
            return self.store.entities
        return tuple(r for r in self.store.entities if self.location in r.location)

    @property
    def locations(self) -> List[str]:
        return sorted({r.location for r in self.store.entities if r.location})

    # =========================================================================
    # Events
    # =========================================================================

    def handle_new_report(self, event: RealtimeEvent) -> Optional[Report]:
        report = super().handle_new_report(event)
        if report is not None:
            self.new_report_alert = report
            self.has_new_reports = True
            logger.info(
                f"[{self.name}] New report: \"{report.title}\" "
                f"(severity={report.severity.value}, location={report.location})"
            )
        return report

    def acknowledge_new_reports(self):
        self.new_report_alert = None
        self.has_new_reports = False

    # =========================================================================
    # Mutations
    # =========================================================================

    async def verify(self, report_id: str) -> MutationResult:
        return await self._set_status(
            report_id, ReportStatus.VERIFIED, "verify",
            "Report verified successfully", "Failed to verify report",
        )

    async def reject(self, report_id: str) -> MutationResult:
        return await self._set_status(
            report_id, ReportStatus.REJECTED, "reject",
            "Report rejected", "Failed to reject report",
        )

    async def _set_status(
        self,
        report_id: str,
        status: ReportStatus,
        action: str,
        success_message: str,
        failure_message: str,
    ) -> MutationResult:
        refused = self.check_mutation(action, admin=True)
        if refused:
            return refused

        session = self.context.session
        verified_at = utcnow()
        change = self.store.begin_update(report_id, {
            'status': status,
            'verified_by': session.user_id,
            'verified_at': verified_at,
        })

        async def call():
            try:
                return await self.api.verify_report(report_id, status.value)
            except (AuthorizationError, ConflictError):
                raise
            except SyncError as e:
                logger.info(f"[{self.name}] Admin {action} failed ({e.message}); trying a plain update")
                return await self.api.update_report(report_id, {'status': status.value})

        result = await self.run_mutation(
            action, call, change,
            success_message=success_message,
            failure_message=failure_message,
            authoritative=report_from_response,
        )

        if result.ok and self.channel is not None:
            notice = EventType.REPORT_VERIFIED if status == ReportStatus.VERIFIED else EventType.REPORT_REJECTED
            await self.channel.send(RealtimeEvent.build(
                notice,
                reportId=report_id,
                verifiedBy=session.name or session.user_id,
                verifiedAt=to_api_datetime(verified_at),
            ))
        return result

    async def delete(self, report_id: str) -> MutationResult:
        refused = self.check_mutation("delete", admin=True)
        if refused:
            return refused

        change = self.store.begin_remove(report_id)
        return await self.run_mutation(
            "delete",
            lambda: self.api.delete_report(report_id),
            change,
            success_message="Report deleted successfully",
            failure_message="Failed to delete report",
        )

    async def edit(
        self,
        report_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        severity: Optional[str] = None,
        location: Optional[str] = None,
    ) -> MutationResult:
        refused = self.check_mutation("edit", admin=True)
        if refused:
            return refused

        patch: Dict[str, Any] = {}
        body: Dict[str, Any] = {}
        if title is not None:
            patch['title'] = body['title'] = title
        if description is not None:
            patch['description'] = body['description'] = description
        if severity is not None:
            patch['severity'] = Severity(severity.upper())
            body['severity'] = patch['severity'].value
        if location is not None:
            patch['location'] = body['location'] = location
        if not patch:
            return MutationResult(ok=True, action="edit", message="Nothing to update")

        change = self.store.begin_update(report_id, patch)
        return await self.run_mutation(
            "edit",
            lambda: self.api.update_report(report_id, body),
            change,
            success_message="Report updated successfully",
            failure_message="Failed to update report",
            authoritative=report_from_response,
        )

