"""
Command Translator - turn one host line into at most one MIDI dispatch.

    "Exposure 64"  -> ParsedCommand("Exposure", 64) -> sink.send(1, 10, 64)
    "Exposure"     -> ParsedCommand("Exposure", 0)
    "Unknown 5"    -> no dispatch (unmapped commands are normal traffic)

No I/O happens here; the sink is the only side effect.
"""

import re
from typing import NamedTuple, Optional, Protocol

from lrbridge.ipc import BridgeStatistics
from lrbridge.log import get_logger
from lrbridge.mapping import MappingTable

logger = get_logger(__name__)

# Leading whitespace, optional sign, leading digits; the rest is ignored
_INT_PREFIX = re.compile(r'\s*([+-]?\d+)')


class DispatchSink(Protocol):
    def send(self, channel: int, controller: int, value: int) -> None:
        ...


class ParsedCommand(NamedTuple):
    identifier: str
    value: int


def parse_int(text: str) -> int:
    """Parse the leading integer of text, 0 if there is none.

    Examples:
        >>> parse_int("64")
        64
        >>> parse_int("  -3")
        -3
        >>> parse_int("64abc")
        64
        >>> parse_int("abc")
        0
    """
    match = _INT_PREFIX.match(text)
    if not match:
        return 0
    return int(match.group(1))


def parse_line(line: str) -> ParsedCommand:
    """Split a line into identifier and integer value.

    Trailing whitespace (including the newline) is trimmed, then the line is
    split on the first space. A missing or non-numeric value is 0.
    """
    line = line.rstrip()
    identifier, _, remainder = line.partition(" ")
    return ParsedCommand(identifier, parse_int(remainder))


class CommandTranslator:
    """Resolve parsed lines against the mapping table and dispatch matches.

    Args:
        table: Mapping table consulted on every line (never modified here)
        sink: Dispatch sink receiving (channel, controller, value)
        stats: Optional counters for received/dispatched/unmapped lines
    """

    def __init__(self, table: MappingTable, sink: DispatchSink,
                 stats: Optional[BridgeStatistics] = None):
        self.table = table
        self.sink = sink
        self.stats = stats if stats is not None else BridgeStatistics()

    def process_line(self, line: str) -> bool:
        """Translate one line. Returns True if the sink was called."""
        self.stats.increment('lines_received')
        command = parse_line(line)

        if not command.identifier:
            return False

        message = self.table.lookup(command.identifier)
        if message is None:
            self.stats.increment('unmapped_commands')
            logger.debug(f"No mapping for '{command.identifier}'")
            return False

        self.sink.send(message.channel, message.controller, command.value)
        self.stats.increment('commands_dispatched')
        return True

    __call__ = process_line
