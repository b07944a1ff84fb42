#!/usr/bin/env python3
"""
lrbridge - host command → MIDI CC bridge.

Connects to the photo editor's plugin on 127.0.0.1:58764, reads one command
per line and echoes mapped values back to the control surface as MIDI CC,
so faders and encoders follow changes made in the editor.

Architecture:
    PeriodicTimer (1 s) → ConnectionManager.tick() → TcpConnection.connect()
    LineReader thread → CommandTranslator → MappingTable lookup → MidiSender

Usage:
    python -m lrbridge
    python -m lrbridge --config path/to/bridge.yaml
    python -m lrbridge --port 58764 --log-level DEBUG
    python -m lrbridge --list-ports
"""

import argparse
import os
import signal
import sys
import threading
import time
from typing import Optional

import mido

from lrbridge.connection import ConnectionManager
from lrbridge.ipc import BridgeStatistics
from lrbridge.log import LOG_LEVEL_ENV, get_logger, set_package_level
from lrbridge.mapping import MappingTable, describe
from lrbridge.midi import MidiSender, open_sender
from lrbridge.settings import DEFAULT_CONFIG_PATH, default_config, load_config, validate_config
from lrbridge.translator import CommandTranslator

logger = get_logger(__name__)


class Bridge:
    """Owns every bridge component for the life of the process.

    Args:
        config: Validated config dict (see lrbridge.settings)
        sender: Dispatch sink; opened from config['midi']['outputs'] if None
        table: Mapping table; built from config['mappings'] if None
    """

    def __init__(self, config: Optional[dict] = None,
                 sender: Optional[MidiSender] = None,
                 table: Optional[MappingTable] = None):
        if config is None:
            config = validate_config(default_config())
        self.config = config
        self.stats = BridgeStatistics()

        self.table = table if table is not None else MappingTable(config['mappings'])
        self.sender = sender if sender is not None else open_sender(
            config['midi']['outputs'], stats=self.stats)
        self.translator = CommandTranslator(self.table, self.sender, stats=self.stats)
        self.connection = ConnectionManager(
            self.translator.process_line,
            host=config['host'],
            port=config['port'],
            connect_timeout=config['connect_timeout'],
            retry_interval=config['retry_interval'],
            poll_interval=config['poll_interval'],
            join_timeout=config['join_timeout'],
            max_line_length=config['max_line_length'],
            stats=self.stats,
        )

        self._lock = threading.Lock()
        self._shut_down = False

    def start(self) -> None:
        logger.info(f"Starting bridge with {len(self.table)} mappings")
        for line in describe(self.table.rows()):
            logger.debug(f"  {line}")
        self.connection.start()

    def shutdown(self) -> None:
        """Stop the connection, then close MIDI. Idempotent."""
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True

        logger.info("Shutting down bridge...")
        self.connection.shutdown()
        self.sender.close()
        self.stats.print_stats("LRBRIDGE STATISTICS")


def list_ports() -> None:
    print("MIDI output ports:")
    for name in mido.get_output_names():
        print(f"  - {name}")


def main():
    """Main entry point with command-line argument parsing."""
    parser = argparse.ArgumentParser(
        description="lrbridge - forward host editor values to a MIDI control surface"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=str(DEFAULT_CONFIG_PATH),
        help=f"Path to bridge YAML config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Override host plugin port from config",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv(LOG_LEVEL_ENV, "INFO"),
        help="Logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--list-ports",
        action="store_true",
        help="List MIDI output ports and exit",
    )

    args = parser.parse_args()

    os.environ[LOG_LEVEL_ENV] = args.log_level
    set_package_level(args.log_level)

    if args.list_ports:
        list_ports()
        return

    try:
        config = load_config(args.config)
        if args.port is not None:
            config['port'] = args.port
            validate_config(config)
        bridge = Bridge(config)
    except FileNotFoundError as e:
        logger.error(f"{e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    def signal_handler(sig, frame):
        bridge.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    bridge.start()
    logger.info("Bridge running. Press Ctrl+C to exit.")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        bridge.shutdown()


if __name__ == "__main__":
    main()
