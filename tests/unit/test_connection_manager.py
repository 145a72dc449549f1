# =============================================================================
# tests/unit/test_connection_manager.py
# Unit Tests for ConnectionManager
# =============================================================================

from unittest.mock import patch

import pytest


class TestConnectionEvents:
    """Test explicit online/offline events"""

    def test_set_online_and_offline(self, connection_manager):
        from school_core.offline.connection_manager import ConnectionStatus

        connection_manager.set_online()
        assert connection_manager.is_online
        assert connection_manager.state.last_online is not None

        connection_manager.set_offline()
        assert connection_manager.status == ConnectionStatus.OFFLINE
        assert connection_manager.is_offline

    def test_callbacks_fire_only_on_change(self, connection_manager):
        seen = []
        connection_manager.register_callback(lambda state: seen.append(state.status.value))

        connection_manager.set_online()
        connection_manager.set_online()
        connection_manager.set_offline()

        assert seen == ["online", "offline"]

    def test_failing_callback_does_not_block_others(self, connection_manager):
        seen = []

        def broken(state):
            raise RuntimeError("boom")

        connection_manager.register_callback(broken)
        connection_manager.register_callback(lambda state: seen.append(state.status))
        connection_manager.set_online()

        assert len(seen) == 1

    def test_unregister_callback(self, connection_manager):
        seen = []
        callback = lambda state: seen.append(state)
        connection_manager.register_callback(callback)
        connection_manager.unregister_callback(callback)

        connection_manager.set_online()

        assert seen == []

    def test_state_is_a_snapshot(self, connection_manager):
        snapshot = connection_manager.state
        connection_manager.set_online()

        assert snapshot.status.value == "offline"


class TestConnectionProbes:
    """Test connectivity checks without touching the network"""

    def test_check_connection_online(self):
        from school_core.offline.connection_manager import ConnectionManager, ConnectionStatus

        manager = ConnectionManager(supabase_url="https://demo.supabase.co", timeout=1)
        with patch.object(manager, "_probe", return_value=True) as probe:
            state = manager.check_connection()

        assert state.status == ConnectionStatus.ONLINE
        probe.assert_any_call("demo.supabase.co", 443)

    def test_check_connection_degraded(self):
        from school_core.offline.connection_manager import ConnectionManager, ConnectionStatus

        manager = ConnectionManager(supabase_url="https://demo.supabase.co", timeout=1)
        with patch.object(manager, "_probe", side_effect=lambda host, port: host != "demo.supabase.co"):
            state = manager.check_connection()

        assert state.status == ConnectionStatus.DEGRADED
        assert not manager.is_online

    def test_check_connection_offline(self):
        from school_core.offline.connection_manager import ConnectionManager, ConnectionStatus

        manager = ConnectionManager(timeout=1)
        with patch.object(manager, "_probe", return_value=False):
            state = manager.check_connection()

        assert state.status == ConnectionStatus.OFFLINE
        assert state.consecutive_failures == 1

    def test_local_only_mode_needs_just_internet(self):
        """Without a Supabase URL, internet access alone means online"""
        from school_core.offline.connection_manager import ConnectionManager

        manager = ConnectionManager(supabase_url=None, timeout=1)
        with patch.object(manager, "_probe", return_value=True):
            manager.check_connection()

        assert manager.is_online

    def test_status_display(self, connection_manager):
        display = connection_manager.get_status_display()

        assert display["status"] == "offline"
        assert display["is_online"] is False
