#!/usr/bin/env python3
"""
Line Reader - socket bytes → complete lines, on a dedicated worker thread.

Composition:
    LineReader
      ├── Connection       (connect / wait_readable / read / close / is_connected)
      ├── StoppableWorker  (start / request_stop / join / is_alive)
      └── LineBuffer       (delimiter scan, bounded partial line)

Loop (runs until stop is requested or the transport fails):
    1. Wait up to POLL_INTERVAL for the socket to become readable
    2. Read whatever is available and feed it to the LineBuffer
    3. Decode each complete line and hand it to on_line, in arrival order

Line policy:
    - Lines are terminated by a single '\\n'; the terminator is not passed on
    - A partial line reaching max_length bytes without a terminator is emitted
      as a line of its own (split, never dropped) and counted as an overflow
    - Bytes that are not valid UTF-8 cut the line at the last valid character
    - A partial line pending when the connection ends is discarded
"""

import select
import socket
import threading
from typing import Callable, List, Optional

from lrbridge.ipc import MAX_LINE_LENGTH, POLL_INTERVAL, BridgeStatistics
from lrbridge.log import get_logger

logger = get_logger(__name__)

READ_CHUNK_SIZE = 4096


class ConnectionClosed(Exception):
    """Transport failed or the peer closed the connection."""


# ============================================================================
# LINE BUFFER
# ============================================================================

class LineBuffer:
    """Delimiter-scanning byte buffer with a bounded partial line.

    Examples:
        >>> buf = LineBuffer()
        >>> buf.feed(b"bri")
        []
        >>> buf.feed(b"ghtness 6")
        []
        >>> buf.feed(b"4\\nnext")
        [b'brightness 64']
    """

    def __init__(self, max_length: int = MAX_LINE_LENGTH):
        if max_length < 1:
            raise ValueError(f"max_length must be positive, got {max_length}")
        self.max_length = max_length
        self.overflows = 0
        self._pending = bytearray()

    def feed(self, data: bytes) -> List[bytes]:
        """Append data and return every line it completes."""
        lines = []
        self._pending.extend(data)

        while self._pending:
            end = self._pending.find(b'\n', 0, self.max_length + 1)
            if end != -1:
                lines.append(bytes(self._pending[:end]))
                del self._pending[:end + 1]
                continue

            if len(self._pending) > self.max_length:
                lines.append(bytes(self._pending[:self.max_length]))
                del self._pending[:self.max_length]
                self.overflows += 1
                continue

            break

        return lines

    @property
    def pending(self) -> bytes:
        return bytes(self._pending)

    def reset(self) -> None:
        """Discard any partial line."""
        self._pending.clear()


def decode_line(raw: bytes) -> str:
    """Decode a line as UTF-8, keeping the longest valid prefix.

    Examples:
        >>> decode_line(b"Exposure 12")
        'Exposure 12'
        >>> decode_line(b"Exposure\\xff 12")
        'Exposure'
    """
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        return raw[:e.start].decode('utf-8')


# ============================================================================
# CONNECTION
# ============================================================================

class TcpConnection:
    """Client-side TCP connection to the host plugin.

    Args:
        host: Host address (normally loopback)
        port: TCP port
    """

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self._sock: Optional[socket.socket] = None
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._sock is not None

    def connect(self, timeout: float) -> bool:
        """Attempt one connection. Returns False on refusal or timeout."""
        try:
            sock = socket.create_connection((self.host, self.port), timeout=timeout)
        except OSError as e:
            logger.debug(f"Connect to {self.host}:{self.port} failed: {e}")
            return False

        sock.setblocking(False)
        with self._lock:
            self._sock = sock
        return True

    def _socket(self) -> socket.socket:
        with self._lock:
            sock = self._sock
        if sock is None:
            raise ConnectionClosed("Connection is closed")
        return sock

    def wait_readable(self, timeout: float) -> bool:
        """Block up to timeout for data. Returns True if a read won't block."""
        sock = self._socket()
        try:
            readable, _, errored = select.select([sock], [], [sock], timeout)
        except (OSError, ValueError) as e:
            raise ConnectionClosed(f"Readiness check failed: {e}") from e
        if errored:
            raise ConnectionClosed("Socket reported an error condition")
        return bool(readable)

    def read(self) -> bytes:
        """Read available bytes. Raises ConnectionClosed on EOF or error."""
        sock = self._socket()
        try:
            data = sock.recv(READ_CHUNK_SIZE)
        except BlockingIOError:
            return b''
        except OSError as e:
            raise ConnectionClosed(f"Read failed: {e}") from e
        if not data:
            raise ConnectionClosed("Peer closed the connection")
        return data

    def close(self) -> None:
        """Close the socket. Safe to call repeatedly."""
        with self._lock:
            sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer may already be gone
        sock.close()


# ============================================================================
# WORKER
# ============================================================================

class StoppableWorker:
    """A daemon thread plus a stop event it is expected to poll.

    Args:
        target: Callable run on the thread
        name: Thread name
    """

    def __init__(self, target: Callable[[], None], name: str = "worker"):
        self.name = name
        self._target = target
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"Worker {self.name} already started")
        self._thread = threading.Thread(target=self._target, name=self.name, daemon=True)
        self._thread.start()

    def request_stop(self) -> None:
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the thread. Returns True if it has exited."""
        if self._thread is None:
            return True
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


# ============================================================================
# LINE READER
# ============================================================================

class LineReader:
    """Reads lines off a connected socket and forwards them to on_line.

    Args:
        connection: Connected transport (TcpConnection or compatible)
        on_line: Called with each decoded line, in arrival order
        max_line_length: Line buffer capacity in bytes
        poll_interval: Readiness wait per iteration (bounds stop latency)
        on_exit: Called with this reader once the loop has ended
        stats: Shared counters
    """

    def __init__(
        self,
        connection,
        on_line: Callable[[str], object],
        max_line_length: int = MAX_LINE_LENGTH,
        poll_interval: float = POLL_INTERVAL,
        on_exit: Optional[Callable[["LineReader"], None]] = None,
        stats: Optional[BridgeStatistics] = None,
    ):
        self.connection = connection
        self.on_line = on_line
        self.poll_interval = poll_interval
        self.on_exit = on_exit
        self.stats = stats if stats is not None else BridgeStatistics()
        self.buffer = LineBuffer(max_line_length)
        self.worker = StoppableWorker(self._run, name="lr-ipc-in")
        self.exit_reason: Optional[str] = None

    def start(self) -> None:
        self.worker.start()

    def request_stop(self) -> None:
        self.worker.request_stop()

    def join(self, timeout: Optional[float] = None) -> bool:
        return self.worker.join(timeout)

    def is_alive(self) -> bool:
        return self.worker.is_alive()

    @property
    def stop_requested(self) -> bool:
        return self.worker.stop_requested

    def _run(self) -> None:
        logger.debug("Reader thread started")
        reason = "stop requested"

        try:
            while not self.worker.stop_requested:
                try:
                    if not self.connection.wait_readable(self.poll_interval):
                        continue
                    data = self.connection.read()
                except ConnectionClosed as e:
                    reason = str(e)
                    self.stats.increment('read_errors')
                    break

                if data:
                    self._consume(data)
        finally:
            dropped = len(self.buffer.pending)
            self.buffer.reset()
            if dropped:
                logger.debug(f"Discarded {dropped} bytes of partial line")
            self.exit_reason = reason
            logger.info(f"Reader thread exiting ({reason})")
            if self.on_exit is not None:
                self.on_exit(self)

    def _consume(self, data: bytes) -> None:
        overflows_before = self.buffer.overflows
        lines = self.buffer.feed(data)

        overflowed = self.buffer.overflows - overflows_before
        if overflowed:
            self.stats.increment('line_overflows', overflowed)
            logger.warning(f"Line exceeded {self.buffer.max_length} bytes, split at buffer boundary")

        for raw in lines:
            # No hand-off once shutdown has begun
            if self.worker.stop_requested:
                return
            self._emit(raw)

    def _emit(self, raw: bytes) -> None:
        line = decode_line(raw)
        try:
            self.on_line(line)
        except Exception as e:
            logger.error(f"Error handling line {line!r}: {e}")
