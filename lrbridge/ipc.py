#!/usr/bin/env python3
"""
Inbound IPC constants and shared helpers.

The photo editor's plugin listens on a loopback TCP port and writes one
command per line. The bridge is the connecting side and retries forever.

Wire format:
    <identifier> <integer>\\n

    identifier: command name, no embedded spaces
    integer:    optional, defaults to 0 when absent or unparseable

Constants:
    - LR_IN_HOST, LR_IN_PORT: Host plugin endpoint (127.0.0.1:58764)
    - CONNECT_TIMEOUT: Bound on a single connect attempt (seconds)
    - RETRY_INTERVAL: Period of the connection supervisor tick (seconds)
    - POLL_INTERVAL: Idle wait between readiness polls (seconds)
    - JOIN_TIMEOUT: Bound on waiting for the reader thread at shutdown (seconds)
    - MAX_LINE_LENGTH: Line buffer capacity in bytes
"""

import threading
from typing import Dict, List


# ============================================================================
# CONSTANTS
# ============================================================================

LR_IN_HOST = "127.0.0.1"
LR_IN_PORT = 58764

CONNECT_TIMEOUT = 0.1   # 100 ms per connect attempt
RETRY_INTERVAL = 1.0    # Supervisor tick period
POLL_INTERVAL = 0.1     # Reader idle wait between polls
JOIN_TIMEOUT = 1.0      # Reader join bound during shutdown

MAX_LINE_LENGTH = 256   # Longer lines are split at this boundary

PORT_MIN = 1
PORT_MAX = 65535


# ============================================================================
# PORT
# ============================================================================

def validate_port(port) -> int:
    """Return port unchanged if it can address the plugin's listening socket.

    YAML and argparse both hand over plain ints; a bool (YAML `yes`) or a
    quoted string is a config mistake, not a port.

    Raises:
        ValueError: On a non-integer port or one outside 1-65535
    """
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {port!r}")
    if not PORT_MIN <= port <= PORT_MAX:
        raise ValueError(f"port {port} is outside {PORT_MIN}-{PORT_MAX}")
    return port


# ============================================================================
# BRIDGE COUNTERS
# ============================================================================

# Report sections, in print order
COUNTER_GROUPS = (
    ("Host link", (
        'connects',
        'connect_failures',
        'disconnects',
        'read_errors',
        'reader_start_failures',
        'abandoned_readers',
    )),
    ("Commands", (
        'lines_received',
        'line_overflows',
        'commands_dispatched',
        'unmapped_commands',
    )),
    ("MIDI", (
        'midi_sent',
        'midi_errors',
    )),
)

COUNTERS = tuple(name for _, names in COUNTER_GROUPS for name in names)


class BridgeStatistics:
    """Counters shared by the reader, timer and main threads.

    Only the names in COUNTERS exist; all start at 0. Incrementing or reading
    any other name raises KeyError so a typo can't silently open a new counter.

    Examples:
        >>> stats = BridgeStatistics()
        >>> stats.increment('lines_received')
        >>> stats.get('lines_received')
        1
    """

    def __init__(self):
        self._counts: Dict[str, int] = dict.fromkeys(COUNTERS, 0)
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            if name not in self._counts:
                raise KeyError(f"Unknown bridge counter '{name}'")
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def report(self, title: str) -> List[str]:
        """Render counters as lines grouped by section, zero counts included.

        Example:
            LRBRIDGE STATISTICS
            -------------------
            Host link:
              connects               2
              ...
        """
        counts = self.snapshot()
        width = max(len(name) for name in COUNTERS)
        lines = [title, "-" * len(title)]
        for section, names in COUNTER_GROUPS:
            lines.append(f"{section}:")
            lines.extend(f"  {name.ljust(width)}  {counts[name]}" for name in names)
        return lines

    def print_stats(self, title: str = "LRBRIDGE STATISTICS") -> None:
        print()
        print("\n".join(self.report(title)))
