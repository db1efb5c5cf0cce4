"""
Tests for ViewStore: reconcile steps, optimistic confirm/rollback, and
convergence when events and confirmations arrive in different orders.
"""

import pytest

from models.domain.report import ReportStatus
from services.aggregate_stats import report_stats_reconciler
from services.entity_list import EntityListReconciler
from services.view_store import ChangeKind, ChangePhase, ViewStore


@pytest.fixture
def store():
    return ViewStore(EntityListReconciler(), report_stats_reconciler(), name="test-view")


@pytest.fixture
def loaded(store, make_report):
    store.replace([
        make_report('r3', severity='CRITICAL'),
        make_report('r2'),
        make_report('r1', status='VERIFIED'),
    ])
    return store


def assert_consistent(store):
    """Incremental counters must equal a recompute over the list"""
    assert store.stats == store.counters.recompute(None, store.entities)


class TestReconcileSteps:
    """Events applied straight to the store"""

    def test_replace_recomputes_stats(self, loaded):
        assert loaded.stats.to_dict() == {
            'total': 3, 'pending': 2, 'verified': 1, 'rejected': 0, 'critical': 1,
        }

    def test_replace_prefers_server_stats(self, store, make_report):
        store.replace([make_report('r1')], server_stats={'_id': None, 'total': 40, 'pending': 12})
        assert store.stats['total'] == 40
        assert store.stats['pending'] == 12

    def test_duplicate_insert_counts_once(self, loaded, make_report):
        report = make_report('r4')
        assert loaded.apply_insert(report) is True
        assert loaded.apply_insert(report) is False

        assert loaded.stats['total'] == 4
        assert_consistent(loaded)

    def test_insert_of_known_id_is_transition(self, loaded, make_report):
        loaded.apply_insert(make_report('r2', status='REJECTED'))

        assert loaded.stats['total'] == 3
        assert loaded.stats['rejected'] == 1
        assert_consistent(loaded)

    def test_update_absent_is_noop(self, loaded):
        version = loaded.state.version
        assert loaded.apply_update('missing', {'status': ReportStatus.VERIFIED}) is False
        assert loaded.state.version == version

    def test_remove_twice(self, loaded):
        assert loaded.apply_remove('r3') is True
        assert loaded.apply_remove('r3') is False
        assert loaded.stats['critical'] == 0
        assert_consistent(loaded)

    def test_set_counter(self, loaded):
        loaded.set_counter('pending', 7)
        assert loaded.stats['pending'] == 7
        loaded.set_counter('pending', -3)
        assert loaded.stats['pending'] == 0

    def test_recompute_fixes_drift(self, loaded):
        loaded.set_counter('total', 99)
        loaded.recompute()
        assert loaded.stats['total'] == 3

    def test_clear(self, loaded):
        loaded.clear()
        assert loaded.entities == ()
        assert loaded.stats['total'] == 0

    def test_clear_discards_pending_changes(self, loaded):
        removal = loaded.begin_remove('r3')
        loaded.clear()

        assert removal.phase == ChangePhase.ROLLED_BACK
        assert loaded.state.pending_ids == frozenset()

        loaded.rollback(removal)
        assert loaded.entities == ()
        assert loaded.stats['critical'] == 0


class TestSubscribers:
    """Every change publishes a new ViewState"""

    def test_subscriber_receives_states(self, store, make_report):
        seen = []
        store.subscribe(seen.append)

        store.apply_insert(make_report('r1'))
        store.apply_update('r1', {'title': 'Renamed'})

        assert [s.version for s in seen] == [1, 2]
        assert seen[-1].entities[0].title == 'Renamed'

    def test_unsubscribe(self, store, make_report):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()
        store.apply_insert(make_report('r1'))
        assert seen == []

    def test_failing_subscriber_does_not_block_others(self, store, make_report):
        seen = []

        def broken(state):
            raise RuntimeError("render failed")

        store.subscribe(broken)
        store.subscribe(seen.append)
        store.apply_insert(make_report('r1'))

        assert len(seen) == 1


class TestOptimisticChanges:
    """begin -> confirm / rollback"""

    def test_begin_update_marks_pending(self, loaded):
        change = loaded.begin_update('r2', {'status': ReportStatus.VERIFIED})

        assert change.kind == ChangeKind.UPDATE
        assert change.is_pending
        assert loaded.state.pending_ids == frozenset({'r2'})
        assert loaded.find('r2').status == ReportStatus.VERIFIED
        assert loaded.stats['verified'] == 2

    def test_begin_update_absent_returns_none(self, loaded):
        assert loaded.begin_update('missing', {'title': 'x'}) is None
        assert loaded.pending_changes() == ()

    def test_confirm_keeps_optimistic_state(self, loaded):
        change = loaded.begin_update('r2', {'status': ReportStatus.VERIFIED})
        loaded.confirm(change)

        assert change.phase == ChangePhase.CONFIRMED
        assert loaded.state.pending_ids == frozenset()
        assert loaded.find('r2').status == ReportStatus.VERIFIED

    def test_confirm_with_server_snapshot(self, loaded, make_report):
        change = loaded.begin_update('r2', {'status': ReportStatus.VERIFIED})
        loaded.confirm(change, make_report('r2', status='VERIFIED', verifiedBy='admin-1'))

        assert loaded.find('r2').verified_by == 'admin-1'
        assert_consistent(loaded)

    def test_confirm_does_not_resurrect_deleted_entity(self, loaded, make_report):
        change = loaded.begin_update('r2', {'status': ReportStatus.VERIFIED})
        loaded.apply_remove('r2')
        loaded.confirm(change, make_report('r2', status='VERIFIED'))

        assert loaded.find('r2') is None
        assert_consistent(loaded)

    def test_rollback_update(self, loaded):
        before = loaded.stats
        change = loaded.begin_update('r2', {'status': ReportStatus.REJECTED})
        loaded.rollback(change)

        assert change.phase == ChangePhase.ROLLED_BACK
        assert loaded.find('r2').status == ReportStatus.PENDING
        assert loaded.stats == before
        assert loaded.state.pending_ids == frozenset()

    def test_rollback_remove_restores_position(self, loaded):
        change = loaded.begin_remove('r2')
        assert [r.id for r in loaded.entities] == ['r3', 'r1']

        loaded.rollback(change)
        assert [r.id for r in loaded.entities] == ['r3', 'r2', 'r1']
        assert_consistent(loaded)

    def test_rollback_insert_removes(self, loaded, make_report):
        change = loaded.begin_insert(make_report('r9'))
        loaded.rollback(change)

        assert loaded.find('r9') is None
        assert loaded.stats['total'] == 3

    def test_rollback_skipped_when_superseded(self, loaded, make_report):
        change = loaded.begin_update('r2', {'status': ReportStatus.VERIFIED})
        # Realtime event from another admin lands before our request fails
        loaded.apply_update('r2', make_report('r2', status='REJECTED'))
        loaded.rollback(change)

        assert loaded.find('r2').status == ReportStatus.REJECTED
        assert_consistent(loaded)

    def test_settled_change_ignored(self, loaded):
        change = loaded.begin_update('r2', {'status': ReportStatus.VERIFIED})
        loaded.confirm(change)
        loaded.rollback(change)

        assert change.phase == ChangePhase.CONFIRMED
        assert loaded.find('r2').status == ReportStatus.VERIFIED

    def test_begin_dispatch(self, loaded, make_report):
        assert loaded.begin(ChangeKind.UPDATE, 'r1', {'title': 'x'}).kind == ChangeKind.UPDATE
        assert loaded.begin('remove', 'r3').kind == ChangeKind.REMOVE
        assert loaded.begin(ChangeKind.INSERT, 'r7', make_report('r7')).kind == ChangeKind.INSERT
        with pytest.raises(ValueError):
            loaded.begin(ChangeKind.INSERT, 'r8')


class TestConvergence:
    """Optimistic change and its realtime echo, in either order"""

    def test_echo_after_confirm(self, loaded):
        change = loaded.begin_update('r2', {'status': ReportStatus.VERIFIED})
        loaded.confirm(change)
        loaded.apply_update('r2', {'status': ReportStatus.VERIFIED})

        assert loaded.stats['verified'] == 2
        assert_consistent(loaded)

    def test_echo_before_confirm(self, loaded, make_report):
        change = loaded.begin_update('r2', {'status': ReportStatus.VERIFIED})
        loaded.apply_insert(make_report('r2', status='VERIFIED'))
        loaded.confirm(change)

        assert loaded.stats['verified'] == 2
        assert loaded.stats['pending'] == 1
        assert_consistent(loaded)

    def test_delete_echo_after_optimistic_remove(self, loaded):
        change = loaded.begin_remove('r3')
        loaded.apply_remove('r3')
        loaded.confirm(change)

        assert loaded.stats['total'] == 2
        assert loaded.stats['critical'] == 0
        assert_consistent(loaded)
