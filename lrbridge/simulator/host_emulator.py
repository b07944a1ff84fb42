#!/usr/bin/env python3
"""
Host Emulator - Integration Testing

Stands in for the photo editor's plugin: listens on the loopback port the
bridge connects to and writes command lines to whichever bridge is connected.

Features:
- One client at a time (a new connection replaces the old one)
- Line and raw-byte sends, for fragment and malformed-input tests
- Client drop on demand, to exercise reconnect
- Optional CLI that sends a script of lines to the first bridge that connects
"""

import argparse
import socket
import sys
import threading
import time
from typing import Optional

from lrbridge import ipc


class HostEmulator:
    """Emulated host plugin endpoint.

    Args:
        host: Address to bind (default: 127.0.0.1)
        port: TCP port to listen on (default: 58764, 0 picks a free port)
    """

    def __init__(self, host: str = ipc.LR_IN_HOST, port: int = ipc.LR_IN_PORT):
        self.host = host
        self.port = port

        self.server_sock: Optional[socket.socket] = None
        self.client_sock: Optional[socket.socket] = None
        self.accept_thread: Optional[threading.Thread] = None

        self.lock = threading.Lock()
        self.client_connected = threading.Condition(self.lock)

        # Statistics
        self.connections = 0
        self.lines_sent = 0

        self.running = False

    def start(self):
        """Bind, listen, and accept connections in a background thread."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.port))
        sock.listen(1)
        sock.settimeout(0.1)  # Check running flag periodically

        self.server_sock = sock
        self.port = sock.getsockname()[1]
        self.running = True
        self.accept_thread = threading.Thread(target=self._accept_loop, daemon=True)
        self.accept_thread.start()

    def _accept_loop(self):
        while self.running:
            try:
                client, _ = self.server_sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            with self.lock:
                old, self.client_sock = self.client_sock, client
                self.connections += 1
                self.client_connected.notify_all()
            if old is not None:
                old.close()

    def wait_for_client(self, timeout: float = 3.0, connections: int = 1) -> bool:
        """Wait until at least `connections` clients have connected in total."""
        deadline = time.time() + timeout
        with self.lock:
            while self.connections < connections or self.client_sock is None:
                remaining = deadline - time.time()
                if remaining <= 0:
                    return False
                self.client_connected.wait(remaining)
        return True

    def send_raw(self, data: bytes):
        """Write bytes to the connected client.

        Raises:
            RuntimeError: If no client is connected
        """
        with self.lock:
            client = self.client_sock
        if client is None:
            raise RuntimeError("No bridge connected")
        client.sendall(data)

    def send_line(self, line: str):
        """Write one command line (newline appended)."""
        self.send_raw(line.encode('utf-8') + b"\n")
        self.lines_sent += 1

    def send_command(self, identifier: str, value: int):
        self.send_line(f"{identifier} {value}")

    def drop_client(self):
        """Close the current client connection, if any."""
        with self.lock:
            client, self.client_sock = self.client_sock, None
        if client is not None:
            try:
                client.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            client.close()

    def stop(self):
        """Stop accepting and close all sockets."""
        if not self.running and self.server_sock is None:
            return
        self.running = False
        self.drop_client()

        if self.accept_thread:
            self.accept_thread.join(timeout=2.0)
            self.accept_thread = None

        if self.server_sock is not None:
            self.server_sock.close()
            self.server_sock = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Host plugin emulator for bridge testing")
    parser.add_argument("lines", nargs="*",
                        help="Command lines to send, e.g. 'Exposure 64' (default: read stdin)")
    parser.add_argument("--port", type=int, default=ipc.LR_IN_PORT,
                        help=f"TCP port to listen on (default: {ipc.LR_IN_PORT})")
    parser.add_argument("--interval", type=float, default=0.1,
                        help="Delay between lines in seconds (default: 0.1)")
    parser.add_argument("--timeout", type=float, default=30.0,
                        help="Seconds to wait for the bridge to connect (default: 30)")

    args = parser.parse_args()
    ipc.validate_port(args.port)

    lines = args.lines or [line.rstrip("\n") for line in sys.stdin]

    with HostEmulator(port=args.port) as emulator:
        print(f"Waiting for bridge on {emulator.host}:{emulator.port}...")
        if not emulator.wait_for_client(timeout=args.timeout):
            print("No bridge connected", file=sys.stderr)
            sys.exit(1)

        print("Bridge connected")
        for line in lines:
            emulator.send_line(line)
            print(f"Sent: {line}")
            time.sleep(args.interval)

        print(f"\nSent {emulator.lines_sent} lines")


if __name__ == "__main__":
    main()
