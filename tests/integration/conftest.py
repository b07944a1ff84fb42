"""Pytest fixtures for integration tests.

Provides reusable fixtures for socket-level testing:
- host: HostEmulator on a free loopback port
- sink: RecordingSink capturing dispatched (channel, controller, value)
- make_bridge: Bridge factory wired to the emulator and sink, auto-shutdown

All fixtures handle cleanup automatically via pytest's fixture system.
"""

import threading
import time

import pytest

from lrbridge.app import Bridge
from lrbridge.mapping import MidiMessage
from lrbridge.settings import default_config, validate_config
from lrbridge.simulator.host_emulator import HostEmulator


class RecordingSink:
    """Dispatch sink that records sends for later assertions."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._cond = threading.Condition()

    def send(self, channel, controller, value):
        with self._cond:
            self.sent.append((channel, controller, value))
            self._cond.notify_all()

    def close(self):
        self.closed = True

    def wait_for(self, count, timeout=3.0):
        """Wait until at least count sends were recorded."""
        deadline = time.time() + timeout
        with self._cond:
            while len(self.sent) < count:
                remaining = deadline - time.time()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True


@pytest.fixture
def host():
    """Fixture providing a started HostEmulator on a free port."""
    emulator = HostEmulator(port=0)
    emulator.start()
    yield emulator
    emulator.stop()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_bridge(sink):
    """Fixture returning a factory for bridges pointed at a port.

    Example:
        def test_flow(host, make_bridge, sink):
            bridge = make_bridge(host.port)
            bridge.start()
    """
    bridges = []

    def factory(port, **overrides):
        config = default_config()
        config.update({
            'port': port,
            'retry_interval': 0.05,
            'poll_interval': 0.02,
            'join_timeout': 1.0,
            'mappings': {"brightness": MidiMessage.cc(1, 10), "Contrast": MidiMessage.cc(2, 11)},
        })
        config.update(overrides)
        bridge = Bridge(validate_config(config), sender=sink)
        bridges.append(bridge)
        return bridge

    yield factory

    for bridge in bridges:
        bridge.shutdown()
