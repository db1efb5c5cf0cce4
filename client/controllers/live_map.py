"""
LiveMapController - map markers for reports with coordinates

Loads the newest `map_page_size` reports, keeps them current through the
realtime channel when signed in, and re-polls every 2 minutes. Severity,
status and search filters are applied client-side to the markers.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from controllers.reports import ReportViewController, parse_reports
from middleware.session import SessionContext
from models.domain.report import Report, ReportStatus, Severity
from services.aggregate_stats import severity_stats_reconciler
from services.entity_list import EntityListReconciler
from services.view_store import ViewStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapMarker:
    id: str
    latitude: float
    longitude: float
    title: str
    location: str
    severity: Severity
    status: ReportStatus

    @classmethod
    def from_report(cls, report: Report) -> Optional["MapMarker"]:
        if report.coordinates is None:
            return None
        return cls(
            id=report.id,
            latitude=report.coordinates.latitude,
            longitude=report.coordinates.longitude,
            title=report.title,
            location=report.location,
            severity=report.severity,
            status=report.status,
        )


class LiveMapController(ReportViewController):

    cache_prefix = "map-reports"

    def __init__(self, context: SessionContext):
        super().__init__(
            context,
            ViewStore(EntityListReconciler(), severity_stats_reconciler(), name="live-map"),
            name="live-map",
        )
        self.severity: Optional[Severity] = None
        self.status: Optional[ReportStatus] = None
        self.search: str = ""

        # Reports first seen on the most recent poll
        self.new_report_count = 0

        self.register_report_events()

    async def fetch(self) -> List[Report]:
        response = await self.cache.get(self.cache_prefix, self._fetch_reports)
        return parse_reports(response.items)

    async def _fetch_reports(self):
        return await self.api.get_reports(
            limit=self.settings.map_page_size,
            sort_by='createdAt',
            sort_order='desc',
        )

    def apply_snapshot(self, snapshot: List[Report], check_drift: bool):
        self.store.replace(snapshot, check_drift=check_drift)

    def clear_view(self):
        super().clear_view()
        self.new_report_count = 0

    async def poll(self):
        known = {r.id for r in self.store.entities}
        if not await self.refresh(fresh=True, check_drift=True):
            return
        fresh_ids = [r.id for r in self.store.entities if r.id not in known]
        self.new_report_count = len(fresh_ids) if known else 0
        if self.new_report_count:
            logger.info(f"[{self.name}] {self.new_report_count} new report(s) added to the map")

    def set_filters(
        self,
        severity: Optional[str] = None,
        status: Optional[str] = None,
        search: str = "",
    ):
        self.severity = None if severity in (None, '', 'all') else Severity(severity.upper())
        self.status = None if status in (None, '', 'all') else ReportStatus(status.upper())
        self.search = search or ""

    def _matches(self, report: Report) -> bool:
        if self.severity is not None and report.severity != self.severity:
            return False
        if self.status is not None and report.status != self.status:
            return False
        return report.matches_search(self.search)

    @property
    def markers(self) -> Tuple[MapMarker, ...]:
        """Filtered markers, newest first"""
        return tuple(
            MapMarker.from_report(r)
            for r in self.store.entities
            if r.has_coordinates and self._matches(r)
        )

    @property
    def severity_counts(self) -> Dict[str, int]:
        """Legend counts over the filtered markers"""
        counts = {s.value: 0 for s in Severity}
        for marker in self.markers:
            counts[marker.severity.value] += 1
        return counts
