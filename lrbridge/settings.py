#!/usr/bin/env python3
"""
Bridge configuration (YAML).

Example (lrbridge/config/bridge.yaml):

    host: 127.0.0.1
    port: 58764
    connect_timeout: 0.1     # seconds per connect attempt
    retry_interval: 1.0      # seconds between connect attempts
    poll_interval: 0.1       # reader idle wait
    join_timeout: 1.0        # shutdown wait for the reader thread
    max_line_length: 256     # bytes, longer lines are split

    midi:
      outputs: ["BCF2000", "X-TOUCH"]   # substrings of output port names

    mappings:                            # or: mappings_file: path/to/file.yaml
      Exposure: {channel: 1, cc: 10}

Every key is optional; missing keys take the defaults below.
"""

import copy
from pathlib import Path

import yaml

from lrbridge import ipc
from lrbridge.log import get_logger
from lrbridge.mapping import parse_mappings, read_mappings_file

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "bridge.yaml"

DEFAULTS = {
    'host': ipc.LR_IN_HOST,
    'port': ipc.LR_IN_PORT,
    'connect_timeout': ipc.CONNECT_TIMEOUT,
    'retry_interval': ipc.RETRY_INTERVAL,
    'poll_interval': ipc.POLL_INTERVAL,
    'join_timeout': ipc.JOIN_TIMEOUT,
    'max_line_length': ipc.MAX_LINE_LENGTH,
    'midi': {'outputs': []},
    'mappings': {},
}

_DURATION_KEYS = ('connect_timeout', 'retry_interval', 'poll_interval', 'join_timeout')


def default_config() -> dict:
    return copy.deepcopy(DEFAULTS)


def validate_config(config: dict) -> dict:
    """Validate a merged config dict in place and return it.

    Raises:
        ValueError: If any value is out of range or the wrong type
    """
    if not isinstance(config['host'], str) or not config['host']:
        raise ValueError(f"host must be a non-empty string, got {config['host']!r}")

    ipc.validate_port(config['port'])

    for key in _DURATION_KEYS:
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{key} must be a number, got {type(value).__name__}")
        if value <= 0:
            raise ValueError(f"{key} must be positive, got {value}")
        config[key] = float(value)

    max_line_length = config['max_line_length']
    if isinstance(max_line_length, bool) or not isinstance(max_line_length, int):
        raise ValueError(f"max_line_length must be an integer, got {type(max_line_length).__name__}")
    if max_line_length < 1:
        raise ValueError(f"max_line_length must be positive, got {max_line_length}")

    midi = config['midi']
    if not isinstance(midi, dict):
        raise ValueError(f"midi must be a dict, got {type(midi).__name__}")
    outputs = midi.get('outputs') or []
    if isinstance(outputs, str):
        outputs = [outputs]
    if not isinstance(outputs, list) or not all(isinstance(o, str) for o in outputs):
        raise ValueError("midi.outputs must be a list of port name patterns")
    midi['outputs'] = outputs

    config['mappings'] = parse_mappings(config['mappings'])
    return config


def load_config(config_path) -> dict:
    """Load, merge with defaults, and validate a YAML config file.

    Mappings come from the inline 'mappings' section, or from 'mappings_file'
    (resolved relative to the config file) when given.

    Args:
        config_path: Path to YAML config

    Returns:
        Config dict; 'mappings' holds identifier → MidiMessage

    Raises:
        FileNotFoundError: If the config or mappings file doesn't exist
        ValueError: If config validation fails
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config must be a YAML mapping, got {type(raw).__name__}")

    config = default_config()
    for key, value in raw.items():
        if key == 'mappings_file':
            continue
        if key not in DEFAULTS:
            logger.warning(f"Ignoring unknown config key '{key}'")
            continue
        config[key] = value

    mappings_file = raw.get('mappings_file')
    if mappings_file:
        mappings_path = Path(mappings_file)
        if not mappings_path.is_absolute():
            mappings_path = path.parent / mappings_path
        config['mappings'] = read_mappings_file(mappings_path)

    validate_config(config)

    logger.info(f"Loaded config from {config_path}")
    logger.info(f"  Host: {config['host']}:{config['port']}")
    logger.info(f"  Mappings: {len(config['mappings'])}")
    if config['midi']['outputs']:
        logger.info(f"  MIDI outputs: {', '.join(config['midi']['outputs'])}")
    else:
        logger.warning("  No MIDI outputs configured, values will be dropped")

    return config
