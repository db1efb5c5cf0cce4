"""
AggregateStatsReconciler - keep derived counters in step with list mutations.

Counters are organised in independent dimensions (status, severity, ...).
An entity contributes to `total` plus at most one counter per dimension, so
dimensions add up independently: a PENDING + CRITICAL report counts towards
both `pending` and `critical`.

Incremental updates are the normal path. `recompute` rescans a list and is
the fallback for drift (reconnect gaps, polls, missing server stats).
Decrements below zero clamp to 0 and log: they mean an event was missed or
applied twice upstream.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from models.domain.report import Report, ReportStatus, Severity
from models.domain.stats import AggregateStats

logger = logging.getLogger(__name__)

TOTAL = 'total'


@dataclass(frozen=True)
class StatDimension:
    """
    One categorical axis of an entity.

    `categorize` maps an entity to the counter it feeds on this axis, or None
    when the entity feeds no counter here (e.g. non-critical severity).
    """
    name: str
    categorize: Callable[[Any], Optional[str]]
    counters: Tuple[str, ...]


class AggregateStatsReconciler:
    """Pure counter operations over a fixed set of dimensions."""

    def __init__(self, dimensions: Sequence[StatDimension], name: str = "stats"):
        self.dimensions = tuple(dimensions)
        self.name = name

    @property
    def counter_names(self) -> Tuple[str, ...]:
        names = [TOTAL]
        for dim in self.dimensions:
            names.extend(c for c in dim.counters if c not in names)
        return tuple(names)

    def empty(self) -> AggregateStats:
        return AggregateStats.zeroed(self.counter_names)

    def baseline(self, server_stats: Optional[Mapping[str, Any]]) -> AggregateStats:
        """
        Stats from a server-supplied payload, with every declared counter
        present (missing ones are 0). Extra server counters are kept.
        """
        counters = dict(self.empty().counters)
        for key, value in (server_stats or {}).items():
            if key.startswith('_'):
                continue
            try:
                counters[key] = max(0, int(value))
            except (TypeError, ValueError):
                logger.warning(f"[{self.name}] Ignoring non-numeric server counter {key}={value!r}")
        return AggregateStats(counters=counters)

    def categories(self, entity: Any) -> List[str]:
        """Every counter (besides total) this entity currently feeds"""
        result = []
        for dim in self.dimensions:
            category = dim.categorize(entity)
            if category is not None:
                result.append(category)
        return result

    def on_insert(self, stats: AggregateStats, entity: Any) -> AggregateStats:
        counters = dict(stats.counters)
        self._adjust(counters, TOTAL, +1)
        for category in self.categories(entity):
            self._adjust(counters, category, +1)
        return AggregateStats(counters=counters)

    def on_transition(self, stats: AggregateStats, old_entity: Any, new_entity: Any) -> AggregateStats:
        """Move counts for every dimension whose category changed"""
        counters = dict(stats.counters)
        changed = False
        for dim in self.dimensions:
            old_category = dim.categorize(old_entity)
            new_category = dim.categorize(new_entity)
            if old_category == new_category:
                continue
            changed = True
            if old_category is not None:
                self._adjust(counters, old_category, -1)
            if new_category is not None:
                self._adjust(counters, new_category, +1)
        if not changed:
            return stats
        return AggregateStats(counters=counters)

    def on_remove(self, stats: AggregateStats, entity: Any) -> AggregateStats:
        counters = dict(stats.counters)
        self._adjust(counters, TOTAL, -1)
        for category in self.categories(entity):
            self._adjust(counters, category, -1)
        return AggregateStats(counters=counters)

    def recompute(self, stats: Optional[AggregateStats], entities: Iterable[Any]) -> AggregateStats:
        """
        Full rescan. `stats` is the current (possibly drifted) value; it is
        only compared against the fresh result for logging.
        """
        fresh = self.empty()
        for entity in entities:
            fresh = self.on_insert(fresh, entity)

        if stats is not None:
            drift = {
                name: (stats[name], fresh[name])
                for name in set(stats.counters) | set(fresh.counters)
                if stats[name] != fresh[name]
            }
            if drift:
                logger.warning(f"[{self.name}] Stats drift corrected on recompute: {drift}")
        return fresh

    def _adjust(self, counters: Dict[str, int], name: str, delta: int):
        value = counters.get(name, 0) + delta
        if value < 0:
            logger.warning(
                f"[{self.name}] Counter '{name}' would go negative ({value}); clamping to 0. "
                f"Missed or duplicated event upstream?"
            )
            value = 0
        counters[name] = value


# =============================================================================
# Presets used by the controllers
# =============================================================================

STATUS_COUNTERS = tuple(s.value.lower() for s in ReportStatus)  # pending, verified, rejected
SEVERITY_COUNTERS = tuple(s.value.lower() for s in Severity)    # low, medium, high, critical


def _report_status(report: Report) -> Optional[str]:
    return report.status.value.lower()


def _critical_only(report: Report) -> Optional[str]:
    return 'critical' if report.severity == Severity.CRITICAL else None


def _report_severity(report: Report) -> Optional[str]:
    return report.severity.value.lower()


def report_stats_reconciler() -> AggregateStatsReconciler:
    """total / pending / verified / rejected / critical (admin panel counters)"""
    return AggregateStatsReconciler(
        [
            StatDimension('status', _report_status, STATUS_COUNTERS),
            StatDimension('severity', _critical_only, ('critical',)),
        ],
        name="report-stats",
    )


def user_report_stats_reconciler() -> AggregateStatsReconciler:
    """total / pending / verified / rejected (profile counters)"""
    return AggregateStatsReconciler(
        [StatDimension('status', _report_status, STATUS_COUNTERS)],
        name="user-report-stats",
    )


def severity_stats_reconciler() -> AggregateStatsReconciler:
    """Status counters plus one counter per severity level (analytics)"""
    return AggregateStatsReconciler(
        [
            StatDimension('status', _report_status, STATUS_COUNTERS),
            StatDimension('severity', _report_severity, SEVERITY_COUNTERS),
        ],
        name="severity-stats",
    )


def user_stats_reconciler() -> AggregateStatsReconciler:
    """total / active / blocked / admins"""
    return AggregateStatsReconciler(
        [
            StatDimension('blocked', lambda u: 'blocked' if u.is_blocked else 'active', ('active', 'blocked')),
            StatDimension('role', lambda u: 'admins' if u.is_admin else None, ('admins',)),
        ],
        name="user-stats",
    )


def notification_stats_reconciler() -> AggregateStatsReconciler:
    """total / unread"""
    return AggregateStatsReconciler(
        [StatDimension('read', lambda n: None if n.is_read else 'unread', ('unread',))],
        name="notification-stats",
    )


def comment_stats_reconciler() -> AggregateStatsReconciler:
    """total only; the server's count covers pages not loaded"""
    return AggregateStatsReconciler([], name="comment-stats")
