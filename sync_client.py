"""Fetch one snapshot from a Sync Parameters TCP Control Server."""

import sys

from syncserver.cli import client_main


if __name__ == "__main__":
    sys.exit(client_main())
