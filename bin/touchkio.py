#!/usr/bin/env python3
"""Start the TouchKio kiosk (same as the ``touchkio`` console script)."""

from touchkio.app import run

if __name__ == "__main__":
    run()
