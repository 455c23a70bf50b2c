"""Run Sync Parameters TCP Control Server."""

import sys

from syncserver.cli import run_server_main


if __name__ == "__main__":
    sys.exit(run_server_main())
