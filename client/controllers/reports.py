"""
Shared reconcile steps for views holding a list of reports
"""
import logging
from typing import Any, Dict, List, Optional

from controllers.base import BaseController
from models.api.responses import ApiResponse
from models.domain.realtime_event import EventType, RealtimeEvent
from models.domain.report import Report, ReportStatus
from utils.datetime_utils import parse_api_datetime

logger = logging.getLogger(__name__)

_STATUS_BY_EVENT = {
    EventType.REPORT_VERIFIED.value: ReportStatus.VERIFIED,
    EventType.REPORT_REJECTED.value: ReportStatus.REJECTED,
}


def parse_reports(items: List[Dict[str, Any]]) -> List[Report]:
    """Parse a page of raw reports, skipping (and logging) unusable ones"""
    reports = []
    for raw in items:
        try:
            reports.append(Report.from_api(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed report {raw.get('_id') if isinstance(raw, dict) else raw!r}: {e}")
    return reports


def report_from_response(response: ApiResponse) -> Optional[Report]:
    """The stored report a mutation answers with as data.report, if any"""
    data = response.data if isinstance(response.data, dict) else {}
    raw = data.get('report')
    return Report.from_api(raw) if isinstance(raw, dict) else None


def report_from_event(event: RealtimeEvent) -> Optional[Report]:
    raw = event.get('report')
    if not isinstance(raw, dict):
        logger.warning(f"{event.type} without a report payload")
        return None
    return Report.from_api(raw)


def status_patch(event: RealtimeEvent) -> Optional[Dict[str, Any]]:
    """
    Patch for REPORT_VERIFIED / REPORT_REJECTED / REPORT_VERIFICATION.

    The first two imply their status; REPORT_VERIFICATION carries it.
    """
    status = _STATUS_BY_EVENT.get(event.type)
    if status is None:
        try:
            status = ReportStatus(event.get('status'))
        except ValueError:
            logger.warning(f"{event.type} with unknown status {event.get('status')!r}")
            return None

    patch: Dict[str, Any] = {'status': status}
    if event.get('verifiedBy') is not None:
        patch['verified_by'] = str(event.get('verifiedBy'))
    verified_at = parse_api_datetime(event.get('verifiedAt'))
    if verified_at is not None:
        patch['verified_at'] = verified_at
    return patch


class ReportViewController(BaseController):
    """
    Registers the report event handlers:
    - NEW_REPORT: insert (a known id is a transition, so echoes are harmless)
    - REPORT_UPDATED: replace the stored snapshot if the report is in view
    - REPORT_DELETED: remove
    - REPORT_VERIFIED / REPORT_REJECTED / REPORT_VERIFICATION: status patch
    """

    def register_report_events(self, new_reports: bool = True):
        if new_reports:
            self.on(EventType.NEW_REPORT, self.handle_new_report)
        self.on(EventType.REPORT_UPDATED, self.handle_report_updated)
        self.on(EventType.REPORT_DELETED, self.handle_report_deleted)
        self.on(EventType.REPORT_VERIFIED, self.handle_report_status)
        self.on(EventType.REPORT_REJECTED, self.handle_report_status)
        self.on(EventType.REPORT_VERIFICATION, self.handle_report_status)

    def handle_new_report(self, event: RealtimeEvent) -> Optional[Report]:
        """Returns the report if it was not in view before"""
        report = report_from_event(event)
        if report is None:
            return None
        is_new = self.store.find(report.id) is None
        self.store.apply_insert(report)
        return report if is_new else None

    def handle_report_updated(self, event: RealtimeEvent):
        report = report_from_event(event)
        if report is not None:
            self.store.apply_update(report.id, report)

    def handle_report_deleted(self, event: RealtimeEvent):
        report_id = event.get('reportId')
        if report_id:
            self.store.apply_remove(str(report_id))

    def handle_report_status(self, event: RealtimeEvent):
        report_id = event.get('reportId')
        patch = status_patch(event)
        if report_id and patch:
            self.store.apply_update(str(report_id), patch)
