# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for the SyncEngine (full pull + offline write queue)
# =============================================================================

from datetime import datetime

import pytest


class FlakyRemote:
    """Wraps an InMemoryRemote and fails selected operations"""

    def __init__(self, inner, failing_collections=(), failing_methods=()):
        self.inner = inner
        self.failing_collections = set(failing_collections)
        self.failing_methods = set(failing_methods)

    def _guard(self, method, collection):
        if collection in self.failing_collections or method in self.failing_methods:
            raise ConnectionError(f"{method} {collection}: network unreachable")

    def select(self, collection, filters=None, gte=None, order_by=None):
        self._guard("select", collection)
        return self.inner.select(collection, filters, gte, order_by)

    def upsert(self, collection, record):
        self._guard("upsert", collection)
        return self.inner.upsert(collection, record)

    def update(self, collection, filters, changes):
        self._guard("update", collection)
        return self.inner.update(collection, filters, changes)

    def delete(self, collection, filters):
        self._guard("delete", collection)
        return self.inner.delete(collection, filters)


class TestSyncPhases:
    """Test the OFFLINE / ONLINE_IDLE / SYNCING state machine"""

    def test_starts_offline(self, sync_engine):
        from school_core.offline.sync_engine import SyncPhase

        assert sync_engine.phase == SyncPhase.OFFLINE
        assert sync_engine.status.last_sync is None

    def test_online_event_triggers_sync(self, sync_engine, connection_manager):
        """Reconnecting pulls every collection and ends ONLINE_IDLE"""
        from school_core.offline.sync_engine import SyncOutcome, SyncPhase

        before = datetime.now()
        connection_manager.set_online()

        status = sync_engine.status
        assert status.phase == SyncPhase.ONLINE_IDLE
        assert status.last_sync is not None and status.last_sync >= before
        assert status.last_report.outcome == SyncOutcome.COMPLETED
        assert status.syncing is False

    def test_offline_event(self, sync_engine, connection_manager):
        """Any state goes OFFLINE on an offline event"""
        from school_core.offline.sync_engine import SyncPhase

        connection_manager.set_online()
        connection_manager.set_offline()

        assert sync_engine.phase == SyncPhase.OFFLINE

    def test_syncing_phase_observed_by_callbacks(self, sync_engine, connection_manager):
        """Status callbacks see SYNCING while the pull runs"""
        from school_core.offline.sync_engine import SyncPhase

        phases = []
        sync_engine.register_callback(lambda status: phases.append(status.phase))
        connection_manager.set_online()

        assert SyncPhase.SYNCING in phases
        assert phases[-1] == SyncPhase.ONLINE_IDLE


class TestFullSync:
    """Test pulling collections into the cache"""

    def test_full_sync_offline_is_skipped(self, sync_engine, remote):
        """No network call is made while offline"""
        from school_core.offline.sync_engine import SyncOutcome

        report = sync_engine.full_sync()

        assert report.outcome == SyncOutcome.SKIPPED
        assert remote.calls == []

    def test_full_sync_applies_pull_filters(self, sync_engine, connection_manager, local_db):
        """Only active learners, recent payments and current-year records are cached"""
        connection_manager.set_online()

        assert {r["id"] for r in local_db.get_all("learners")} == {"L001", "L002", "L003"}
        assert [r["id"] for r in local_db.get_all("fee_payments")] == ["P1"]
        assert [r["id"] for r in local_db.get_all("performance_records")] == ["R1"]
        assert local_db.count("grades") == 2
        assert local_db.count("alumni") == 1

    def test_full_sync_updates_status(self, sync_engine, connection_manager, local_db):
        """last_sync is set and storage usage is recomputed"""
        connection_manager.set_online()

        status = sync_engine.status
        assert status.storage_usage.usage > 0
        assert status.storage_usage.percentage > 0
        assert local_db.get_setting("last_successful_sync") == status.last_sync.isoformat()

    def test_partial_sync_keeps_other_collections(self, local_db, remote, connection_manager):
        """A failed collection keeps its cached data; the rest refresh"""
        from school_core.offline.sync_engine import SyncEngine, SyncOutcome
        from school_core.errors import SyncError

        local_db.put("teachers", {"id": "T0", "email": "old@school.ac.ke"})
        engine = SyncEngine(
            local_db=local_db,
            remote=FlakyRemote(remote, failing_collections={"teachers"}),
            connection_manager=connection_manager,
            sync_interval=3600,
        )
        connection_manager.set_online()

        report = engine.full_sync()

        assert report.outcome == SyncOutcome.PARTIAL
        assert "teachers" in report.failed
        assert report.succeeded["learners"] == 3
        assert [r["id"] for r in local_db.get_all("teachers")] == ["T0"]
        assert engine.status.last_sync is not None

        with pytest.raises(SyncError) as exc_info:
            report.raise_for_status()
        assert exc_info.value.partial
        assert "teachers" in exc_info.value.failed

    def test_failed_sync_leaves_cache_untouched(self, local_db, remote, connection_manager, sample_learners):
        """When every pull fails the cache and last_sync are unchanged"""
        from school_core.data.records import COLLECTIONS
        from school_core.offline.sync_engine import SyncEngine, SyncOutcome

        local_db.bulk_put("learners", sample_learners[:1])
        engine = SyncEngine(
            local_db=local_db,
            remote=FlakyRemote(remote, failing_collections=set(COLLECTIONS)),
            connection_manager=connection_manager,
        )
        connection_manager.set_online()

        report = engine.full_sync()

        assert report.outcome == SyncOutcome.FAILED
        assert not report.success
        assert local_db.get_all("learners") == sample_learners[:1]
        assert engine.status.last_sync is None

    def test_malformed_remote_rows_fail_only_their_collection(self, local_db, remote, connection_manager):
        """A bad row aborts its collection's batch, not the whole sync"""
        from school_core.offline.sync_engine import SyncEngine, SyncOutcome

        remote.upsert("grades", {"id": "G9"})   # missing name
        engine = SyncEngine(local_db=local_db, remote=remote, connection_manager=connection_manager)
        connection_manager.set_online()

        report = engine.full_sync()

        assert report.outcome == SyncOutcome.PARTIAL
        assert list(report.failed) == ["grades"]
        assert local_db.count("grades") == 0

    def test_concurrent_sync_is_skipped(self, sync_engine, connection_manager):
        """A second sync while one is running returns SKIPPED"""
        from school_core.offline.sync_engine import SyncOutcome

        connection_manager.set_online()
        sync_engine._sync_lock.acquire()
        try:
            report = sync_engine.full_sync()
        finally:
            sync_engine._sync_lock.release()

        assert report.outcome == SyncOutcome.SKIPPED


class TestSyncQueue:
    """Test offline write queue and replay"""

    def test_add_to_queue_assigns_id_for_create(self, sync_engine):
        """Creates without an id get a stable UUID"""
        from school_core.offline.sync_engine import QueueOperation

        item = sync_engine.add_to_queue("create", "grades", {"name": "Grade 9"})

        assert item.operation == QueueOperation.CREATE
        assert item.record_id and item.payload["id"] == item.record_id
        assert item.synced is False
        assert sync_engine.status.pending_count == 1

    def test_add_to_queue_validates(self, sync_engine):
        """Malformed creates and id-less deletes are rejected"""
        from school_core.errors import DataValidationError

        with pytest.raises(DataValidationError):
            sync_engine.add_to_queue("create", "learners", {"id": "L5"})
        with pytest.raises(DataValidationError):
            sync_engine.add_to_queue("delete", "learners")
        with pytest.raises(ValueError):
            sync_engine.add_to_queue("merge", "learners", {"id": "L5"})

    def test_process_queue_offline_does_nothing(self, sync_engine, remote):
        """Queued items wait while offline"""
        sync_engine.add_to_queue("delete", "learners", record_id="L001")

        report = sync_engine.process_queue()

        assert report.replayed == []
        assert report.skipped == 1
        assert remote.calls == []

    def test_replay_applies_each_operation(self, sync_engine, connection_manager, remote):
        """create -> upsert, update -> update by id, delete -> delete by id"""
        sync_engine.add_to_queue("create", "grades", {"id": "G9", "name": "Grade 9"})
        sync_engine.add_to_queue("update", "learners", {"status": "transferred"}, record_id="L002")
        sync_engine.add_to_queue("delete", "teachers", record_id="T2")

        connection_manager.set_online()

        assert sync_engine.pending_count == 0
        assert remote.select("grades", filters={"id": "G9"})[0]["name"] == "Grade 9"
        assert remote.select("learners", filters={"id": "L002"})[0]["status"] == "transferred"
        assert remote.select("teachers", filters={"id": "T2"}) == []

    def test_replay_is_idempotent(self, sync_engine, connection_manager, remote):
        """Replaying an already-applied item leaves the remote unchanged"""
        connection_manager.set_online()
        item = sync_engine.add_to_queue("create", "grades", {"id": "G9", "name": "Grade 9"})
        sync_engine._replay(item)
        sync_engine._replay(item)

        delete = sync_engine.add_to_queue("delete", "teachers", record_id="T2")
        sync_engine._replay(delete)
        sync_engine._replay(delete)

        assert len(remote.select("grades", filters={"id": "G9"})) == 1
        assert remote.select("teachers", filters={"id": "T2"}) == []

    def test_failed_replay_keeps_item(self, local_db, remote, connection_manager):
        """A failing item stays queued with its attempt count"""
        from school_core.offline.sync_engine import SyncEngine
        from school_core.errors import QueueReplayError

        engine = SyncEngine(
            local_db=local_db,
            remote=FlakyRemote(remote, failing_methods={"upsert"}),
            connection_manager=connection_manager,
            max_retry_attempts=2,
        )
        engine.add_to_queue("create", "grades", {"id": "G9", "name": "Grade 9"})
        engine.add_to_queue("delete", "teachers", record_id="T2")
        connection_manager.set_online()

        report = engine.process_queue()

        assert len(report.replayed) == 1
        assert len(report.errors) == 1
        assert isinstance(report.errors[0], QueueReplayError)
        pending = engine.queued_items()
        assert len(pending) == 1
        assert pending[0].record_id == "G9"
        assert pending[0].attempts == 1
        assert "network unreachable" in pending[0].last_error

        engine.process_queue()
        assert engine.queued_items()[0].attempts == 2

        # Past max_retry_attempts the item is kept but skipped
        report = engine.process_queue()
        assert report.skipped == 1
        assert report.errors == []
        assert engine.pending_count == 1

    def test_later_items_wait_for_failed_record(self, local_db, remote, connection_manager):
        """A delete queued after a failing create does not overtake it"""
        from school_core.offline.sync_engine import SyncEngine

        flaky = FlakyRemote(remote, failing_methods={"upsert"})
        engine = SyncEngine(local_db=local_db, remote=flaky, connection_manager=connection_manager)
        engine.add_to_queue("create", "grades", {"id": "GX", "name": "Grade X"})
        engine.add_to_queue("delete", "grades", record_id="GX")
        connection_manager.set_online()

        report = engine.process_queue()

        assert report.replayed == []
        assert report.skipped == 1
        assert [item.operation.value for item in engine.queued_items()] == ["create", "delete"]

        flaky.failing_methods.clear()
        report = engine.process_queue()

        assert len(report.replayed) == 2
        assert engine.pending_count == 0
        assert remote.select("grades", filters={"id": "GX"}) == []

    def test_exhausted_item_blocks_its_record(self, local_db, remote, connection_manager):
        """Items behind an item past max_retry_attempts stay queued too"""
        from school_core.offline.sync_engine import SyncEngine

        flaky = FlakyRemote(remote, failing_methods={"upsert"})
        engine = SyncEngine(
            local_db=local_db, remote=flaky, connection_manager=connection_manager, max_retry_attempts=1,
        )
        engine.add_to_queue("create", "grades", {"id": "GX", "name": "Grade X"})
        engine.add_to_queue("delete", "grades", record_id="GX")
        engine.add_to_queue("delete", "teachers", record_id="T2")
        connection_manager.set_online()
        engine.process_queue()
        flaky.failing_methods.clear()

        report = engine.process_queue()

        assert report.skipped == 2
        assert report.errors == []
        assert remote.select("grades", filters={"id": "GX"}) == []
        assert remote.select("teachers", filters={"id": "T2"}) == []
        assert engine.pending_count == 2

    def test_update_of_missing_remote_record_fails(self, sync_engine, connection_manager):
        """An update that matches nothing stays queued"""
        sync_engine.add_to_queue("update", "learners", {"status": "inactive"}, record_id="GHOST")
        connection_manager.set_online()

        assert sync_engine.pending_count == 1
        assert "does not exist" in sync_engine.queued_items()[0].last_error


class TestSyncAccessors:
    """Test the process-wide status accessors"""

    def test_get_sync_status_returns_snapshot(self, monkeypatch, local_db, remote, connection_manager):
        from school_core.offline import sync_engine as module
        from school_core.offline.sync_engine import SyncEngine, get_sync_status, reset_sync_engine

        engine = SyncEngine(local_db=local_db, remote=remote, connection_manager=connection_manager)
        monkeypatch.setattr(SyncEngine, "_instance", engine)
        monkeypatch.setattr(module, "_sync_engine", None)

        status = get_sync_status()
        status.syncing = True

        assert module.get_sync_engine() is engine
        assert get_sync_status().syncing is False

        reset_sync_engine()
        assert module._sync_engine is None
        assert SyncEngine._instance is None

    def test_status_display(self, sync_engine, connection_manager):
        connection_manager.set_online()

        display = sync_engine.get_status_display()

        assert display["phase"] == "online_idle"
        assert display["last_outcome"] == "completed"
        assert display["pending_count"] == 0
