"""
Tests for the connection manager and periodic timer.

Connections are replaced with doubles through connection_factory so the
state machine can be driven tick by tick without a host.
"""

import threading
import time
from unittest.mock import Mock, patch

import pytest

from lrbridge.connection import ConnectionManager, ConnectionState, PeriodicTimer
from lrbridge.reader import ConnectionClosed


def wait_until(predicate, timeout=2.0, interval=0.01):
    """Poll predicate until true or timeout. Returns final result."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class IdleConnection:
    """Connected transport that never has data until closed."""

    def __init__(self, connect_result=True):
        self.connect_result = connect_result
        self.connect_calls = 0
        self.close_calls = 0
        self.closed = threading.Event()

    def connect(self, timeout):
        self.connect_calls += 1
        return self.connect_result

    def wait_readable(self, timeout):
        if self.closed.wait(timeout):
            raise ConnectionClosed("closed")
        return False

    def read(self):
        return b""

    def close(self):
        self.close_calls += 1
        self.closed.set()


class LinesThenDrop(IdleConnection):
    """Delivers one chunk, then reports the peer closing."""

    def __init__(self, data):
        super().__init__()
        self.data = data

    def wait_readable(self, timeout):
        if self.data is None:
            raise ConnectionClosed("Peer closed the connection")
        return True

    def read(self):
        data, self.data = self.data, None
        return data


class StuckConnection(IdleConnection):
    """Readiness wait that ignores its timeout, like a wedged transport."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.entered = threading.Event()

    def wait_readable(self, timeout):
        self.entered.set()
        self.release.wait()
        return True

    def read(self):
        return b"brightness 1\n"


def make_manager(connections, on_line=None, **kwargs):
    """Manager whose factory hands out the given connections in order."""
    factory = Mock(side_effect=list(connections))
    kwargs.setdefault('poll_interval', 0.01)
    kwargs.setdefault('retry_interval', 60.0)  # ticks are driven by the tests
    manager = ConnectionManager(on_line or Mock(), connection_factory=factory, **kwargs)
    return manager, factory


# =============================================================================
# PeriodicTimer
# =============================================================================

class TestPeriodicTimer:
    """Tests for PeriodicTimer."""

    def test_fires_repeatedly(self):
        calls = []
        timer = PeriodicTimer(0.02, lambda: calls.append(1))
        timer.start()
        try:
            assert wait_until(lambda: len(calls) >= 3)
        finally:
            timer.stop()
        assert not timer.running

    def test_stop_halts_calls(self):
        calls = []
        timer = PeriodicTimer(0.02, lambda: calls.append(1))
        timer.start()
        wait_until(lambda: calls)
        timer.stop()

        count = len(calls)
        time.sleep(0.1)
        assert len(calls) == count

    def test_callback_exception_does_not_stop_timer(self):
        calls = []

        def callback():
            calls.append(1)
            raise RuntimeError("tick failed")

        timer = PeriodicTimer(0.02, callback)
        timer.start()
        try:
            assert wait_until(lambda: len(calls) >= 2)
        finally:
            timer.stop()

    def test_stop_without_start(self):
        timer = PeriodicTimer(0.02, lambda: None)
        timer.stop()
        timer.stop()


# =============================================================================
# ConnectionManager
# =============================================================================

class TestConnectionManager:
    """Tests for ConnectionManager state transitions."""

    def test_initial_state(self):
        manager, _ = make_manager([])
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.active_reader is None
        assert not manager.is_connected

    def test_invalid_port(self):
        with pytest.raises(ValueError):
            ConnectionManager(Mock(), port=70000)

    def test_connect_failures_retry_without_reader(self):
        """Each tick after a failure attempts again; no reader is started."""
        failures = [IdleConnection(connect_result=False) for _ in range(5)]
        manager, factory = make_manager(failures)

        for _ in range(5):
            manager.tick()
            assert manager.state is ConnectionState.DISCONNECTED
            assert manager.active_reader is None

        assert factory.call_count == 5
        assert all(conn.connect_calls == 1 for conn in failures)
        assert manager.stats.get('connect_failures') == 5
        assert manager.stats.get('connects') == 0

    def test_factory_called_with_host_and_port(self):
        manager, factory = make_manager([IdleConnection(False)], host="127.0.0.1", port=12345)
        manager.tick()
        factory.assert_called_once_with("127.0.0.1", 12345)

    def test_connect_timeout_passed_through(self):
        conn = Mock()
        conn.connect.return_value = False
        manager, _ = make_manager([conn], connect_timeout=0.25)

        manager.tick()

        conn.connect.assert_called_once_with(0.25)

    def test_factory_exception_is_absorbed(self):
        manager = ConnectionManager(Mock(), connection_factory=Mock(side_effect=OSError("boom")))

        manager.tick()

        assert manager.state is ConnectionState.DISCONNECTED

    def test_successful_connect_starts_one_reader(self):
        conn = IdleConnection()
        manager, factory = make_manager([conn, IdleConnection()])

        manager.tick()
        reader = manager.active_reader
        assert manager.state is ConnectionState.CONNECTED
        assert reader is not None and reader.is_alive()

        # Further ticks while connected do nothing
        manager.tick()
        manager.tick()
        assert factory.call_count == 1
        assert manager.active_reader is reader

        manager.shutdown()

    def test_lines_reach_on_line(self):
        on_line = Mock()
        manager, _ = make_manager([LinesThenDrop(b"a 1\nb 2\n")], on_line=on_line)

        manager.tick()

        assert wait_until(lambda: on_line.call_count == 2)
        assert [c.args[0] for c in on_line.call_args_list] == ["a 1", "b 2"]
        manager.shutdown()

    def test_reader_exit_returns_to_disconnected_and_reconnects(self):
        first = LinesThenDrop(b"a 1\n")
        second = IdleConnection()
        manager, factory = make_manager([first, second])

        manager.tick()
        assert wait_until(lambda: manager.state is ConnectionState.DISCONNECTED)
        assert manager.active_reader is None
        assert first.close_calls == 1
        assert manager.stats.get('disconnects') == 1

        manager.tick()
        assert manager.state is ConnectionState.CONNECTED
        assert factory.call_count == 2

        manager.shutdown()

    def test_shutdown_stops_reader_and_closes(self):
        conn = IdleConnection()
        manager, _ = make_manager([conn])
        manager.tick()
        reader = manager.active_reader

        manager.shutdown()

        assert not reader.is_alive()
        assert reader.stop_requested
        assert conn.close_calls == 1
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.closed
        assert manager.active_reader is None

    def test_shutdown_is_idempotent(self):
        conn = IdleConnection()
        manager, _ = make_manager([conn])
        manager.tick()

        manager.shutdown()
        manager.shutdown()

        assert conn.close_calls == 1

    def test_shutdown_without_connection(self):
        manager, factory = make_manager([])
        manager.shutdown()
        manager.shutdown()
        factory.assert_not_called()

    def test_tick_after_shutdown_is_ignored(self):
        manager, factory = make_manager([IdleConnection()])
        manager.shutdown()

        manager.tick()

        factory.assert_not_called()
        assert manager.active_reader is None

    def test_start_after_shutdown_raises(self):
        manager, _ = make_manager([])
        manager.shutdown()
        with pytest.raises(RuntimeError):
            manager.start()

    def test_shutdown_bound_with_stuck_reader(self):
        """A reader that ignores stop is abandoned after join_timeout."""
        on_line = Mock()
        conn = StuckConnection()
        manager, _ = make_manager([conn], on_line=on_line, join_timeout=0.2)
        manager.tick()
        assert conn.entered.wait(1.0)

        start = time.time()
        manager.shutdown()
        elapsed = time.time() - start

        assert elapsed < 0.2 + 0.5
        assert conn.close_calls == 1
        assert manager.stats.get('abandoned_readers') == 1

        # Once unblocked, the abandoned reader delivers nothing
        conn.release.set()
        time.sleep(0.1)
        on_line.assert_not_called()

    def test_periodic_ticks_connect(self):
        conn = IdleConnection()
        manager, factory = make_manager(
            [IdleConnection(False), IdleConnection(False), conn],
            retry_interval=0.02,
        )

        manager.start()
        try:
            assert wait_until(lambda: manager.state is ConnectionState.CONNECTED)
            assert factory.call_count == 3
        finally:
            manager.shutdown()

    def test_connect_completing_during_shutdown_is_closed(self):
        """A connect that finishes after shutdown must not start a reader."""
        entered = threading.Event()
        release = threading.Event()

        class SlowConnection(IdleConnection):
            def connect(self, timeout):
                entered.set()
                release.wait()
                return True

        conn = SlowConnection()
        manager, _ = make_manager([conn])

        tick_thread = threading.Thread(target=manager.tick)
        tick_thread.start()
        assert entered.wait(1.0)

        manager.shutdown()
        release.set()
        tick_thread.join(timeout=1.0)

        assert manager.active_reader is None
        assert conn.close_calls == 1

    def test_reader_thread_start_failure_recovers(self):
        """If the reader thread can't start, the socket is closed and the next tick retries."""
        first = IdleConnection()
        second = IdleConnection()
        manager, factory = make_manager([first, second])

        with patch('threading.Thread.start', side_effect=RuntimeError("can't start new thread")):
            manager.tick()

        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.active_reader is None
        assert first.close_calls == 1
        assert manager.stats.get('reader_start_failures') == 1
        assert manager.stats.get('connects') == 0

        manager.tick()
        assert factory.call_count == 2
        assert manager.state is ConnectionState.CONNECTED

        manager.shutdown()
