#!/usr/bin/env python3
"""
Mapping Table - host command identifier → MIDI message descriptor.

The table is shared between the bridge (lookups from the reader thread) and
whatever edits mappings (UI, config reload) from another thread. Every access
is serialized by a single lock and descriptors are immutable, so a lookup
always returns one complete descriptor: either the one before an edit or the
one after it, never a mix.

YAML format (mappings section):

    mappings:
      Exposure: {channel: 1, cc: 10}
      Pick: {channel: 1, note: 60}
      Temperature: {channel: 2, pitch_bend: true}

Channels are 1-16, controller/note numbers 0-127.
"""

import enum
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from lrbridge.log import get_logger

logger = get_logger(__name__)


CHANNEL_MIN = 1
CHANNEL_MAX = 16
DATA_MIN = 0
DATA_MAX = 127

# Sort columns in the row view (matches the editing table's column ids)
COLUMN_MESSAGE = 1
COLUMN_COMMAND = 2


class MessageKind(enum.Enum):
    """MIDI message class a control sends."""
    NOTE = "note"
    CC = "cc"
    PITCH_BEND = "pitch_bend"


# Order used when sorting rows by message
_KIND_ORDER = {MessageKind.NOTE: 0, MessageKind.CC: 1, MessageKind.PITCH_BEND: 2}


@dataclass(frozen=True)
class MidiMessage:
    """Immutable MIDI message descriptor.

    Attributes:
        channel: MIDI channel, 1-based (1-16)
        kind: Message class
        data: Controller number (CC) or note number (Note); 0 for pitch bend
    """
    channel: int
    kind: MessageKind = MessageKind.CC
    data: int = 0

    def __post_init__(self):
        if not isinstance(self.channel, int) or not CHANNEL_MIN <= self.channel <= CHANNEL_MAX:
            raise ValueError(f"Channel must be in range {CHANNEL_MIN}-{CHANNEL_MAX}, got {self.channel!r}")
        if not isinstance(self.data, int) or not DATA_MIN <= self.data <= DATA_MAX:
            raise ValueError(f"Data must be in range {DATA_MIN}-{DATA_MAX}, got {self.data!r}")
        if not isinstance(self.kind, MessageKind):
            raise ValueError(f"Kind must be a MessageKind, got {self.kind!r}")

    @classmethod
    def cc(cls, channel: int, controller: int) -> "MidiMessage":
        return cls(channel, MessageKind.CC, controller)

    @classmethod
    def note(cls, channel: int, note: int) -> "MidiMessage":
        return cls(channel, MessageKind.NOTE, note)

    @classmethod
    def pitch_bend(cls, channel: int) -> "MidiMessage":
        return cls(channel, MessageKind.PITCH_BEND, 0)

    @property
    def controller(self) -> int:
        """Controller number used when dispatching a value back to the device."""
        return self.data

    def sort_key(self) -> Tuple[int, int, int]:
        return self.channel, _KIND_ORDER[self.kind], self.data

    def __str__(self) -> str:
        if self.kind is MessageKind.NOTE:
            return f"{self.channel} | Note : {self.data}"
        if self.kind is MessageKind.CC:
            return f"{self.channel} | CC: {self.data}"
        return f"{self.channel} | Pitch Bend"


class MappingTable:
    """Thread-safe mapping from command identifier to MidiMessage.

    Lookups used by the bridge:
        lookup(identifier) -> Optional[MidiMessage]

    Edits (from the mapping editor or config reload):
        set / __setitem__, remove, clear, replace

    Row view for an editing table:
        rows(), message_for_row(n), command_for_message(msg), resort(column, forwards)

    Examples:
        >>> table = MappingTable({"Exposure": MidiMessage.cc(1, 10)})
        >>> table.lookup("Exposure")
        MidiMessage(channel=1, kind=<MessageKind.CC: 'cc'>, data=10)
        >>> table.lookup("Contrast") is None
        True
    """

    def __init__(self, mappings: Optional[Dict[str, MidiMessage]] = None):
        self._lock = threading.RLock()
        self._entries: Dict[str, MidiMessage] = {}
        self._sort: Tuple[int, bool] = (COLUMN_COMMAND, True)
        self._rows: List[str] = []
        if mappings:
            self.replace(mappings)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, identifier: str) -> Optional[MidiMessage]:
        with self._lock:
            return self._entries.get(identifier)

    def has_command(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._entries

    def __contains__(self, identifier) -> bool:
        return self.has_command(identifier)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> Dict[str, MidiMessage]:
        """Return a copy of all entries."""
        with self._lock:
            return dict(self._entries)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def set(self, identifier: str, message: MidiMessage) -> None:
        _validate_identifier(identifier)
        if not isinstance(message, MidiMessage):
            raise ValueError(f"Mapping for '{identifier}' must be a MidiMessage, got {type(message).__name__}")
        with self._lock:
            self._entries[identifier] = message
            self._resort_locked()

    __setitem__ = set

    def remove(self, identifier: str) -> bool:
        """Remove a mapping. Returns False if it was not present."""
        with self._lock:
            if identifier not in self._entries:
                return False
            del self._entries[identifier]
            self._resort_locked()
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._rows = []

    def replace(self, mappings: Dict[str, MidiMessage]) -> None:
        """Swap in a whole new set of mappings atomically."""
        entries = {}
        for identifier, message in mappings.items():
            _validate_identifier(identifier)
            if not isinstance(message, MidiMessage):
                raise ValueError(f"Mapping for '{identifier}' must be a MidiMessage, got {type(message).__name__}")
            entries[identifier] = message

        with self._lock:
            self._entries = entries
            self._resort_locked()

    # ------------------------------------------------------------------
    # Row view
    # ------------------------------------------------------------------

    def rows(self) -> List[Tuple[str, MidiMessage]]:
        """Return (identifier, message) pairs in current sort order."""
        with self._lock:
            return [(identifier, self._entries[identifier]) for identifier in self._rows]

    def message_for_row(self, row_number: int) -> MidiMessage:
        """Return the message shown in a table row.

        Raises:
            IndexError: If row_number is outside the table
        """
        with self._lock:
            if row_number < 0 or row_number >= len(self._rows):
                raise IndexError(
                    f"Row {row_number} out of range, table has {len(self._rows)} rows"
                )
            return self._entries[self._rows[row_number]]

    def command_for_message(self, message: MidiMessage) -> Optional[str]:
        """Return the first command (in row order) bound to message, if any."""
        with self._lock:
            for identifier in self._rows:
                if self._entries[identifier] == message:
                    return identifier
        return None

    @property
    def sort_order(self) -> Tuple[int, bool]:
        with self._lock:
            return self._sort

    def resort(self, column: int, forwards: bool = True) -> None:
        """Re-sort the row view by message (column 1) or command (column 2)."""
        if column not in (COLUMN_MESSAGE, COLUMN_COMMAND):
            raise ValueError(f"Sort column must be {COLUMN_MESSAGE} or {COLUMN_COMMAND}, got {column}")
        with self._lock:
            self._sort = (column, forwards)
            self._resort_locked()

    def _resort_locked(self) -> None:
        column, forwards = self._sort
        if column == COLUMN_MESSAGE:
            key = lambda identifier: (self._entries[identifier].sort_key(), identifier)
        else:
            key = lambda identifier: (identifier, self._entries[identifier].sort_key())
        self._rows = sorted(self._entries, key=key, reverse=not forwards)


# ============================================================================
# LOADING
# ============================================================================

def _validate_identifier(identifier) -> None:
    if not isinstance(identifier, str) or not identifier:
        raise ValueError(f"Command identifier must be a non-empty string, got {identifier!r}")
    if any(ch.isspace() for ch in identifier):
        raise ValueError(f"Command identifier must not contain whitespace: {identifier!r}")


def parse_mapping_entry(identifier: str, entry) -> MidiMessage:
    """Build a MidiMessage from one YAML mapping entry.

    Args:
        identifier: Command identifier (for error messages)
        entry: dict with 'channel' and exactly one of 'cc', 'note', 'pitch_bend'

    Raises:
        ValueError: If the entry is malformed
    """
    if not isinstance(entry, dict):
        raise ValueError(f"Mapping '{identifier}' must be a dict, got {type(entry).__name__}")
    if 'channel' not in entry:
        raise ValueError(f"Mapping '{identifier}' missing 'channel'")

    kinds = [key for key in ('cc', 'note', 'pitch_bend') if key in entry]
    if len(kinds) != 1:
        raise ValueError(
            f"Mapping '{identifier}' must have exactly one of 'cc', 'note', 'pitch_bend', got {kinds}"
        )

    channel = entry['channel']
    kind = kinds[0]
    if kind == 'pitch_bend':
        return MidiMessage.pitch_bend(channel)
    if kind == 'note':
        return MidiMessage.note(channel, entry['note'])
    return MidiMessage.cc(channel, entry['cc'])


def parse_mappings(raw) -> Dict[str, MidiMessage]:
    """Convert a YAML mappings section to a dict of MidiMessage."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Mappings must be a dict, got {type(raw).__name__}")

    mappings = {}
    for identifier, entry in raw.items():
        identifier = str(identifier)
        _validate_identifier(identifier)
        if isinstance(entry, MidiMessage):
            mappings[identifier] = entry
        else:
            mappings[identifier] = parse_mapping_entry(identifier, entry)
    return mappings


def read_mappings_file(path) -> Dict[str, MidiMessage]:
    """Read and parse a YAML mappings file.

    The file may either hold the mappings at top level or under a
    'mappings' key.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If any entry is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Mappings file not found: {path}")

    with open(path, 'r') as f:
        data = yaml.safe_load(f)

    if isinstance(data, dict) and 'mappings' in data:
        data = data['mappings']

    return parse_mappings(data)


def load_mappings(path) -> MappingTable:
    """Load a mapping table from a YAML file (see read_mappings_file)."""
    table = MappingTable(read_mappings_file(path))
    logger.info(f"Loaded {len(table)} mappings from {path}")
    return table


def describe(rows: Iterable[Tuple[str, MidiMessage]]) -> List[str]:
    """Format rows as '<message>  <command>' lines for display."""
    return [f"{str(message):<18} {identifier}" for identifier, message in rows]
