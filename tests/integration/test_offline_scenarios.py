# =============================================================================
# tests/integration/test_offline_scenarios.py
# Integration Tests for the offline cache and sync lifecycle
# =============================================================================

from datetime import datetime

import pytest


class TestOfflineRoundTrip:
    """
    End-to-end offline scenario.

    Tests the flow:
    1. Device goes offline
    2. A learner is saved and read back from the cache with no network call
    3. Device reconnects and the automatic sync replays the write
    4. last_sync moves past the reconnect time
    """

    @pytest.fixture
    def app(self, local_db, remote, connection_manager, sync_engine):
        from school_core.offline.unified_data_service import OfflineDataService

        service = OfflineDataService(
            local_db=local_db,
            remote=remote,
            connection_manager=connection_manager,
            sync_engine=sync_engine,
        )
        service.initialize(start_sync=False)
        return service

    def test_offline_put_then_reconnect(self, app, local_db, remote, connection_manager, sync_engine):
        from school_core.offline.sync_engine import SyncPhase

        connection_manager.set_offline()
        app.save("learners", {"id": "L123", "admission_number": "ADM-123", "status": "active"})

        assert "L123" in {r["id"] for r in local_db.get_all("learners")}
        assert remote.calls == []
        assert app.pending_sync_count == 1

        reconnected_at = datetime.now()
        connection_manager.set_online()

        status = sync_engine.status
        assert status.phase == SyncPhase.ONLINE_IDLE
        assert status.last_sync >= reconnected_at
        assert app.pending_sync_count == 0
        assert remote.select("learners", filters={"id": "L123"})[0]["admission_number"] == "ADM-123"
        # The full pull after replay keeps the learner in the cache
        assert local_db.get("learners", "L123")["status"] == "active"

    def test_offline_reads_survive_failed_sync(self, app, local_db, remote, connection_manager, sync_engine, monkeypatch):
        connection_manager.set_online()
        cached = local_db.get_all("learners")
        assert cached

        connection_manager.set_offline()

        def unreachable(*args, **kwargs):
            raise ConnectionError("no route to host")

        monkeypatch.setattr(remote, "select", unreachable)
        connection_manager.set_online()

        report = sync_engine.status.last_report
        assert not report.success
        assert local_db.get_all("learners") == cached
        assert app.fetch("learners") == cached

    def test_offline_edit_and_delete_replayed_in_order(self, app, local_db, remote, connection_manager):
        connection_manager.set_online()
        connection_manager.set_offline()

        app.save("grades", {"id": "G6", "name": "Grade 6"})
        app.save("grades", {"id": "G6", "name": "Grade Six"})
        app.remove("teachers", "T2")

        connection_manager.set_online()

        assert remote.select("grades", filters={"id": "G6"})[0]["name"] == "Grade Six"
        assert remote.select("teachers", filters={"id": "T2"}) == []
        assert local_db.get("teachers", "T2") is None
