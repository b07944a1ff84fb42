#!/usr/bin/env python3
"""
Entry point for running the bridge as a module.

Usage:
    python -m lrbridge [--config PATH] [--port N] [--log-level LEVEL] [--list-ports]
"""

from lrbridge.app import main

main()
