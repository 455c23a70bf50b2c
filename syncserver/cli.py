"""Command-line entry points for the sync control server and client."""

import argparse
import json
import logging
import sys

from .client import SyncClient
from .config import LOG_LEVELS, AppConfig
from .log import setup_logger
from .server import BindError, ControlServer
from .sync_parameters import SyncParameters


def build_server_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync parameters TCP control server")
    parser.add_argument(
        "--config",
        default=None,
        help="JSON configuration file with 'server' and 'sync' sections"
    )
    parser.add_argument(
        "--address",
        default=None,
        help="Address to listen on (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: 0, any free port)"
    )
    parser.add_argument(
        "--clock",
        default=None,
        help="Network clock 'address:port' to hand out to clients"
    )
    parser.add_argument(
        "--latency",
        type=int,
        default=None,
        help="Pipeline latency in nanoseconds"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=LOG_LEVELS,
        help="Log level (default: INFO)"
    )
    return parser


def load_app_config(args: argparse.Namespace) -> AppConfig:
    """Load the config file and apply command-line overrides."""
    config = AppConfig.load(args.config)

    if args.address is not None:
        config.server.address = args.address
    if args.port is not None:
        config.server.port = args.port
    if args.log_level is not None:
        config.server.log_level = args.log_level

    sync_changes = {}
    if args.clock is not None:
        sync_changes["clock"] = args.clock
    if args.latency is not None:
        sync_changes["latency"] = args.latency
    if sync_changes:
        config.sync = config.sync.replace(**sync_changes)

    # Re-run validation on the overridden values
    config.server.__post_init__()
    return config


def run_server_main(argv=None) -> int:
    """Run the control server until interrupted."""
    parser = build_server_parser()
    args = parser.parse_args(argv)

    try:
        config = load_app_config(args)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    logger = setup_logger("syncserver", config.server.logging_level)

    logger.info("=" * 60)
    logger.info("Sync Control Server")
    logger.info("=" * 60)
    logger.info(f"Address: {config.server.address}")
    logger.info(f"Port: {config.server.port}")
    logger.info(f"Clock: {config.sync.clock}")
    logger.info(f"Latency: {config.sync.latency} ns")
    logger.info("=" * 60)

    try:
        server = ControlServer.from_config(config)
    except BindError as e:
        logger.error(str(e))
        return 1

    try:
        while not server.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Shutting down server...")
    finally:
        server.stop()
    return 0


def build_client_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync parameters client")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, required=True, help="Server port")
    parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Seconds to wait for the snapshot (default: 5)"
    )
    parser.add_argument(
        "--stay",
        action="store_true",
        help="Keep the connection open until the server goes away"
    )
    return parser


def client_main(argv=None) -> int:
    """Fetch and print one sync parameters snapshot."""
    args = build_client_parser().parse_args(argv)
    logger = setup_logger("syncserver", logging.INFO)

    client = SyncClient(args.host, args.port)
    try:
        client.connect(timeout=args.timeout)
        snapshot = client.receive_snapshot(timeout=args.timeout)
        data = snapshot.to_dict() if isinstance(snapshot, SyncParameters) else snapshot
        print(json.dumps(data, indent=2))

        if args.stay:
            logger.info("Holding connection open (Ctrl+C to quit)")
            client.wait_for_close()
    except KeyboardInterrupt:
        pass
    except (OSError, ValueError) as e:
        logger.error(f"Failed to fetch sync parameters: {e}")
        return 1
    finally:
        client.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(run_server_main())
