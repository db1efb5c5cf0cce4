"""
ViewStore - one view's entity list + aggregate stats + optimistic ledger.

Every event and every user mutation goes through the same three steps:
1. Look up the stored snapshot for the id (the "old" entity)
2. Apply the EntityListReconciler operation
3. Apply the matching AggregateStatsReconciler operation

Because an insert of a present id is a transition, not an increment, and an
update to identical values changes nothing, applying the same change twice
(optimistic update + the realtime echo) is safe in either order.

Optimistic changes are explicit two-phase records:
    begin_*()  -> OptimisticChange(phase=PENDING_LOCAL)
    confirm()  -> CONFIRMED (optionally replacing with the server snapshot)
    rollback() -> ROLLED_BACK (inverse reconciler operation)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Generic, Iterable, Mapping, Optional, Tuple, TypeVar

from models.domain.stats import AggregateStats
from services.aggregate_stats import AggregateStatsReconciler
from services.entity_list import EntityListReconciler
from utils.id_generator import generate_change_id, generate_subscription_id

logger = logging.getLogger(__name__)

E = TypeVar('E')


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    REMOVE = "remove"


class ChangePhase(str, Enum):
    PENDING_LOCAL = "pending_local"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass
class OptimisticChange:
    """
    A local change applied before the server confirmed it.

    `before` / `after` are the snapshots around the change (None when the
    entity did not exist on that side); `before_index` is where a removed
    entity sat, so rollback can put it back in place.
    """
    kind: ChangeKind
    entity_id: str
    before: Any = None
    after: Any = None
    before_index: Optional[int] = None
    phase: ChangePhase = ChangePhase.PENDING_LOCAL
    change_id: str = field(default_factory=generate_change_id)

    @property
    def is_pending(self) -> bool:
        return self.phase == ChangePhase.PENDING_LOCAL


@dataclass(frozen=True)
class ViewState(Generic[E]):
    """Immutable view model; a new instance is published for every change."""
    entities: Tuple[E, ...] = ()
    stats: AggregateStats = field(default_factory=AggregateStats)
    pending_ids: FrozenSet[str] = frozenset()
    version: int = 0


Subscriber = Callable[[ViewState], None]


class ViewStore(Generic[E]):
    """
    Reconciled state for one view. Synchronous: call only from the event loop
    thread, never across an await in the middle of an operation.
    """

    def __init__(
        self,
        list_reconciler: EntityListReconciler,
        stats_reconciler: AggregateStatsReconciler,
        name: str = "view",
    ):
        self.lists = list_reconciler
        self.counters = stats_reconciler
        self.name = name
        self._state: ViewState = ViewState(stats=stats_reconciler.empty())
        self._changes: Dict[str, OptimisticChange] = {}
        self._subscribers: Dict[str, Subscriber] = {}

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def entities(self) -> Tuple[E, ...]:
        return self._state.entities

    @property
    def stats(self) -> AggregateStats:
        return self._state.stats

    def find(self, entity_id: str) -> Optional[E]:
        return self.lists.find(self._state.entities, entity_id)

    def pending_changes(self) -> Tuple[OptimisticChange, ...]:
        return tuple(self._changes.values())

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a re-render callback; returns an unsubscribe function"""
        subscription_id = generate_subscription_id()
        self._subscribers[subscription_id] = callback

        def unsubscribe():
            self._subscribers.pop(subscription_id, None)

        return unsubscribe

    # =========================================================================
    # Reconcile steps (events, confirmed results)
    # =========================================================================

    def apply_insert(self, entity: E) -> bool:
        """Prepend a new entity, or treat a known id as a transition"""
        entity_id = self.lists.id_of(entity)
        old = self.find(entity_id)
        entities = self.lists.insert(self._state.entities, entity)
        if old is None:
            stats = self.counters.on_insert(self._state.stats, entity)
        else:
            if old == entity:
                return False
            stats = self.counters.on_transition(self._state.stats, old, entity)
        self._commit(entities, stats)
        return True

    def apply_update(self, entity_id: str, patch_or_replacement: Any) -> bool:
        """Merge/replace a present entity; absent ids are a benign miss"""
        old = self.find(entity_id)
        if old is None:
            return False
        entities = self.lists.update(self._state.entities, entity_id, patch_or_replacement)
        new = self.lists.find(entities, entity_id)
        if new == old:
            return False
        stats = self.counters.on_transition(self._state.stats, old, new)
        self._commit(entities, stats)
        return True

    def apply_remove(self, entity_id: str) -> bool:
        old = self.find(entity_id)
        if old is None:
            return False
        entities = self.lists.remove(self._state.entities, entity_id)
        stats = self.counters.on_remove(self._state.stats, old)
        self._commit(entities, stats)
        return True

    def replace(
        self,
        entities: Iterable[E],
        server_stats: Optional[Mapping[str, Any]] = None,
        check_drift: bool = False,
    ):
        """
        Wholesale replacement from an authoritative fetch (initial load, poll).

        Server-supplied stats win; otherwise stats are recomputed from the
        list. With `check_drift`, a difference between the incremental stats
        and the recomputed ones is logged. Pending optimistic changes are
        dropped: the fetch already reflects whatever the server accepted.
        """
        new_entities = self.lists.replace_all(entities)
        if server_stats is not None:
            stats = self.counters.baseline(server_stats)
        else:
            previous = self._state.stats if check_drift else None
            stats = self.counters.recompute(previous, new_entities)
        if self._changes:
            logger.debug(f"[{self.name}] Dropping {len(self._changes)} pending changes on replace")
            self._changes.clear()
        self._commit(new_entities, stats)

    def recompute(self):
        """Rebuild stats from the current list (after a reconnect gap)"""
        stats = self.counters.recompute(self._state.stats, self._state.entities)
        if stats != self._state.stats:
            self._commit(self._state.entities, stats)

    def set_counter(self, name: str, value: int):
        """Authoritative counter from the server (e.g. unread notification count)"""
        value = max(0, int(value))
        if self._state.stats.get(name) == value and name in self._state.stats:
            return
        self._commit(self._state.entities, self._state.stats.with_counters({name: value}))

    def clear(self):
        """
        Empty the view (unmount / logout).

        Pending changes are discarded: a request that settles later can no
        longer confirm or roll back into the emptied view.
        """
        for change in self._changes.values():
            change.phase = ChangePhase.ROLLED_BACK
        self._changes.clear()
        self._state = ViewState(stats=self.counters.empty(), version=self._state.version + 1)
        self._notify()

    # =========================================================================
    # Optimistic two-phase changes
    # =========================================================================

    def begin(self, kind: ChangeKind, entity_id: str, patch: Any = None) -> Optional[OptimisticChange]:
        """Dispatch to begin_insert/begin_update/begin_remove by `kind`"""
        kind = ChangeKind(kind)
        if kind == ChangeKind.INSERT:
            if patch is None:
                raise ValueError("insert needs the entity snapshot")
            return self.begin_insert(patch)
        if kind == ChangeKind.UPDATE:
            return self.begin_update(entity_id, patch or {})
        return self.begin_remove(entity_id)

    def begin_update(self, entity_id: str, patch: Any) -> Optional[OptimisticChange]:
        """
        Apply `patch` locally and record it as pending.

        Returns None when the entity is not in this view (nothing to show
        optimistically; the caller still performs the request).
        """
        before = self.find(entity_id)
        if before is None:
            return None
        self.apply_update(entity_id, patch)
        change = OptimisticChange(
            kind=ChangeKind.UPDATE,
            entity_id=entity_id,
            before=before,
            after=self.find(entity_id),
        )
        return self._track(change)

    def begin_remove(self, entity_id: str) -> Optional[OptimisticChange]:
        before_index = self.lists.index_of(self._state.entities, entity_id)
        if before_index is None:
            return None
        before = self._state.entities[before_index]
        self.apply_remove(entity_id)
        change = OptimisticChange(
            kind=ChangeKind.REMOVE,
            entity_id=entity_id,
            before=before,
            before_index=before_index,
        )
        return self._track(change)

    def begin_insert(self, entity: E) -> OptimisticChange:
        entity_id = self.lists.id_of(entity)
        before = self.find(entity_id)
        self.apply_insert(entity)
        change = OptimisticChange(
            kind=ChangeKind.INSERT,
            entity_id=entity_id,
            before=before,
            after=entity,
        )
        return self._track(change)

    def confirm(self, change: OptimisticChange, authoritative: Optional[E] = None):
        """
        The server accepted the change. The optimistic state stands unless
        the server returned its own snapshot, which then replaces it.
        """
        if not change.is_pending:
            logger.debug(f"[{self.name}] confirm() on settled change {change.change_id}")
            return
        change.phase = ChangePhase.CONFIRMED
        self._changes.pop(change.change_id, None)

        # The snapshot only replaces an entity still in view; a delete that
        # arrived meanwhile stands
        if authoritative is not None and change.kind != ChangeKind.REMOVE:
            if not self.apply_update(change.entity_id, authoritative):
                self._publish_pending()
        else:
            self._publish_pending()

    def rollback(self, change: OptimisticChange):
        """
        The server refused the change: undo it with the inverse operation.

        If a newer snapshot (e.g. a realtime event) already replaced the
        optimistic one, the server has spoken and the entity is left alone.
        """
        if not change.is_pending:
            logger.debug(f"[{self.name}] rollback() on settled change {change.change_id}")
            return
        change.phase = ChangePhase.ROLLED_BACK
        self._changes.pop(change.change_id, None)

        current = self.find(change.entity_id)
        reverted = False

        if change.kind == ChangeKind.REMOVE:
            if current is None:
                entities = self.lists.restore(self._state.entities, change.before, change.before_index or 0)
                stats = self.counters.on_insert(self._state.stats, change.before)
                self._commit(entities, stats)
                reverted = True
        elif current is not None and current == change.after:
            if change.before is None:
                reverted = self.apply_remove(change.entity_id)
            else:
                reverted = self.apply_update(change.entity_id, change.before)

        if not reverted:
            logger.info(
                f"[{self.name}] Rollback of {change.kind.value} on {change.entity_id} skipped: "
                f"superseded by a newer snapshot"
            )
            self._publish_pending()

    # =========================================================================
    # Internals
    # =========================================================================

    def _track(self, change: OptimisticChange) -> OptimisticChange:
        self._changes[change.change_id] = change
        self._publish_pending()
        return change

    def _pending_ids(self) -> FrozenSet[str]:
        return frozenset(c.entity_id for c in self._changes.values())

    def _publish_pending(self):
        pending = self._pending_ids()
        if pending != self._state.pending_ids:
            self._commit(self._state.entities, self._state.stats)

    def _commit(self, entities: Tuple[E, ...], stats: AggregateStats):
        self._state = ViewState(
            entities=entities,
            stats=stats,
            pending_ids=self._pending_ids(),
            version=self._state.version + 1,
        )
        self._notify()

    def _notify(self):
        for callback in list(self._subscribers.values()):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"[{self.name}] Subscriber failed: {e}", exc_info=True)
