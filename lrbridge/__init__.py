"""
lrbridge - photo editor → MIDI control surface bridge.

Modules:
    ipc: Protocol constants and shared counters
    mapping: Command identifier → MIDI message table
    translator: Line parsing and dispatch decision
    reader: Socket line reader thread
    connection: Connection supervisor and retry timer
    midi: mido-backed CC output
    settings: YAML configuration
    app: Process lifecycle and CLI
"""

__version__ = "0.1.0"

# Modules are imported on demand so `python -m lrbridge.simulator.host_emulator`
# doesn't pull in mido.
