#!/usr/bin/env python3
"""
Connection Manager - keep one live connection to the host, retrying forever.

State machine:

    DISCONNECTED --tick--> CONNECTING --ok--> CONNECTED --reader exits--> DISCONNECTED
                               └----fail----> DISCONNECTED
    any --shutdown()--> SHUTTING_DOWN --> DISCONNECTED (closed, ticks ignored)

Timing:
    - tick() runs every RETRY_INTERVAL on a PeriodicTimer thread
    - A connect attempt is bounded by CONNECT_TIMEOUT, so a tick never blocks
      longer than that
    - shutdown() waits at most JOIN_TIMEOUT for the reader; a reader that does
      not exit in time is abandoned (logged) and the socket is closed anyway

At most one LineReader exists per manager at any time.
"""

import enum
import threading
from typing import Callable, Optional

from lrbridge import ipc
from lrbridge.log import get_logger
from lrbridge.reader import LineReader, TcpConnection

logger = get_logger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


class PeriodicTimer:
    """Calls callback every interval seconds on a single background thread.

    The first call happens one interval after start(). Exceptions raised by
    the callback are logged and the timer keeps running.
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "timer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Timer {self.name} callback failed: {e}")

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the timer and wait up to timeout for an in-flight callback."""
        with self._lock:
            thread, self._thread = self._thread, None
        self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Timer {self.name} did not stop within {timeout}s")


class ConnectionManager:
    """Supervises the connection to the host and its LineReader.

    Args:
        on_line: Called with every received line (normally CommandTranslator)
        host: Host address (default: 127.0.0.1)
        port: Host plugin port (default: 58764)
        connect_timeout: Bound on a single connect attempt (seconds)
        retry_interval: Tick period (seconds)
        poll_interval: Reader readiness wait (seconds)
        join_timeout: Bound on waiting for the reader at shutdown (seconds)
        max_line_length: Reader line buffer capacity (bytes)
        connection_factory: Called as factory(host, port) for each attempt
        stats: Shared counters
    """

    def __init__(
        self,
        on_line: Callable[[str], object],
        host: str = ipc.LR_IN_HOST,
        port: int = ipc.LR_IN_PORT,
        connect_timeout: float = ipc.CONNECT_TIMEOUT,
        retry_interval: float = ipc.RETRY_INTERVAL,
        poll_interval: float = ipc.POLL_INTERVAL,
        join_timeout: float = ipc.JOIN_TIMEOUT,
        max_line_length: int = ipc.MAX_LINE_LENGTH,
        connection_factory: Callable = TcpConnection,
        stats: Optional[ipc.BridgeStatistics] = None,
    ):
        ipc.validate_port(port)

        self.on_line = on_line
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.poll_interval = poll_interval
        self.join_timeout = join_timeout
        self.max_line_length = max_line_length
        self.connection_factory = connection_factory
        self.stats = stats if stats is not None else ipc.BridgeStatistics()

        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._connection = None
        self._reader: Optional[LineReader] = None
        self._timer = PeriodicTimer(retry_interval, self.tick, name="lr-ipc-timer")

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def active_reader(self) -> Optional[LineReader]:
        with self._lock:
            return self._reader

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def start(self) -> None:
        """Begin periodic connection attempts."""
        with self._lock:
            if self._closed:
                raise RuntimeError("ConnectionManager has been shut down")
        logger.info(f"Connecting to host at {self.host}:{self.port} "
                    f"(retry every {self._timer.interval}s)")
        self._timer.start()

    def tick(self) -> None:
        """Attempt a connection if there is none. Never raises."""
        with self._lock:
            if self._closed or self._state is not ConnectionState.DISCONNECTED:
                return
            self._state = ConnectionState.CONNECTING

        # Connect outside the lock so shutdown() is never held up by it
        try:
            connection = self.connection_factory(self.host, self.port)
            connected = connection.connect(self.connect_timeout)
        except Exception as e:
            logger.error(f"Connection attempt failed unexpectedly: {e}")
            connection, connected = None, False

        with self._lock:
            if self._closed:
                abandon = connection if connected else None
            elif not connected:
                self._state = ConnectionState.DISCONNECTED
                self.stats.increment('connect_failures')
                return
            else:
                abandon = None
                reader = LineReader(
                    connection,
                    self.on_line,
                    max_line_length=self.max_line_length,
                    poll_interval=self.poll_interval,
                    on_exit=self._reader_exited,
                    stats=self.stats,
                )
                self._connection = connection
                self._reader = reader
                self._state = ConnectionState.CONNECTED
                try:
                    reader.start()
                except RuntimeError as e:
                    logger.error(f"Could not start reader thread: {e}")
                    self._reader = None
                    self._connection = None
                    self._state = ConnectionState.DISCONNECTED
                    self.stats.increment('reader_start_failures')
                    abandon = connection
                else:
                    self.stats.increment('connects')

        if abandon is not None:
            abandon.close()
            return
        if connected:
            logger.info(f"Connected to host at {self.host}:{self.port}")

    def _reader_exited(self, reader: LineReader) -> None:
        """Reader loop ended on its own; drop the connection so tick() retries."""
        with self._lock:
            if reader is not self._reader:
                return  # Shutdown already took ownership
            connection = self._connection
            self._reader = None
            self._connection = None
            if self._state is ConnectionState.CONNECTED:
                self._state = ConnectionState.DISCONNECTED
            self.stats.increment('disconnects')

        if connection is not None:
            connection.close()
        logger.info(f"Disconnected from host ({reader.exit_reason}), will retry")

    def shutdown(self) -> None:
        """Stop ticking, stop the reader, close the socket. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._state = ConnectionState.SHUTTING_DOWN
            reader, self._reader = self._reader, None
            connection, self._connection = self._connection, None

        logger.info("Shutting down host connection...")
        self._timer.stop(timeout=self.connect_timeout + self.join_timeout)

        if reader is not None:
            reader.request_stop()
            if not reader.join(self.join_timeout):
                self.stats.increment('abandoned_readers')
                logger.warning(
                    f"Reader thread did not exit within {self.join_timeout}s, abandoning it"
                )

        if connection is not None:
            connection.close()

        with self._lock:
            self._state = ConnectionState.DISCONNECTED
        logger.info("Host connection closed")
