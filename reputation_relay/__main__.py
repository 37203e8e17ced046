"""
Entry point for running the relay as a module.

Usage:
    python -m reputation_relay
"""

from reputation_relay.cli import main

if __name__ == "__main__":
    main()
