#!/usr/bin/env python3
"""
MIDI output - the dispatch sink behind the command translator.

Values coming back from the host are sent as Control Change messages to every
open output port, so motorized faders and LED rings follow the editor.

    send(channel=1, controller=10, value=64)
        → mido.Message('control_change', channel=0, control=10, value=64)

Channels are 1-based here (as shown to users) and 0-based in mido.
"""

import threading
from typing import Iterable, List, Optional, Sequence

import mido

from lrbridge.ipc import BridgeStatistics
from lrbridge.log import get_logger

logger = get_logger(__name__)

CC_VALUE_MIN = 0
CC_VALUE_MAX = 127


def clamp_cc_value(value: int) -> int:
    """Clamp a value into the 7-bit CC range."""
    return max(CC_VALUE_MIN, min(CC_VALUE_MAX, value))


class MidiSender:
    """Fire-and-forget CC sender over zero or more mido output ports.

    send() never raises: invalid channels and port errors are logged and
    counted. With no ports open, sends are accepted and dropped.

    Args:
        ports: Open mido output ports
        stats: Shared counters
    """

    def __init__(self, ports: Optional[Sequence] = None,
                 stats: Optional[BridgeStatistics] = None):
        self.ports = list(ports or [])
        self.stats = stats if stats is not None else BridgeStatistics()
        self._lock = threading.Lock()
        self._closed = False

    def send(self, channel: int, controller: int, value: int) -> None:
        try:
            clamped = clamp_cc_value(value)
            if clamped != value:
                logger.debug(f"CC value {value} clamped to {clamped}")
            msg = mido.Message('control_change', channel=channel - 1,
                               control=controller, value=clamped)
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid CC ch={channel} cc={controller} value={value}: {e}")
            self.stats.increment('midi_errors')
            return

        with self._lock:
            if self._closed:
                return
            if not self.ports:
                logger.debug(f"No MIDI output open, dropping {msg}")
                return
            for port in self.ports:
                try:
                    port.send(msg)
                except Exception as e:
                    logger.warning(f"MIDI send to {getattr(port, 'name', port)} failed: {e}")
                    self.stats.increment('midi_errors')
                else:
                    self.stats.increment('midi_sent')

    def close(self) -> None:
        """Close all ports. Safe to call repeatedly."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            ports, self.ports = self.ports, []

        for port in ports:
            try:
                port.close()
            except Exception as e:
                logger.warning(f"Error closing MIDI port {getattr(port, 'name', port)}: {e}")


def find_output_ports(patterns: Iterable[str]) -> List[str]:
    """Return output port names containing any of the given patterns.

    An empty pattern list matches nothing.
    """
    patterns = list(patterns)
    matches = []
    for name in mido.get_output_names():
        if any(pattern in name for pattern in patterns):
            matches.append(name)
    return matches


def open_sender(patterns: Iterable[str],
                stats: Optional[BridgeStatistics] = None) -> MidiSender:
    """Open every output port matching patterns and wrap them in a MidiSender."""
    names = find_output_ports(patterns)

    if not names:
        logger.warning("No matching MIDI output ports, values from the host will be dropped")
        logger.info("Available MIDI output ports:")
        for name in mido.get_output_names():
            logger.info(f"  - {name}")
        return MidiSender([], stats=stats)

    ports = []
    for name in names:
        try:
            ports.append(mido.open_output(name))
            logger.info(f"Opened MIDI output: {name}")
        except (OSError, IOError) as e:
            logger.warning(f"Could not open MIDI output {name}: {e}")

    return MidiSender(ports, stats=stats)
