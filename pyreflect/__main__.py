"""Command line entry point: ``python -m pyreflect``.

Runs an RPC server on a TCP port until interrupted.
"""

from __future__ import annotations

import argparse
import logging
import sys

from .config import DEFAULT_SERVER_CONFIG, ServerConfig, load_server_config
from .server import RPCServer
from .tcp import TCPListener

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pyreflect", description="Reflection-driven JSON RPC server")
    parser.add_argument("--config", help="YAML server configuration file")
    parser.add_argument("--host", help=f"Interface to bind (default {DEFAULT_SERVER_CONFIG['host']})")
    parser.add_argument("--port", type=int, help=f"Port to listen on (default {DEFAULT_SERVER_CONFIG['port']})")
    parser.add_argument(
        "--expose",
        action="append",
        default=[],
        metavar="MODULE.CLASS",
        help="Expose a class to clients (repeatable)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    config: ServerConfig = load_server_config(args.config) if args.config else dict(DEFAULT_SERVER_CONFIG)  # type: ignore[assignment]
    if args.host:
        config["host"] = args.host
    if args.port is not None:
        config["port"] = args.port
    if args.expose:
        config["exposed_types"] = [*config["exposed_types"], *args.expose]

    logging.basicConfig(
        level=logging.DEBUG if args.debug else config["log_level"].upper(),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    server = RPCServer(config)
    logger.info("Exposed types: %s", ", ".join(server.registry.names()) or "(none)")
    listener = TCPListener(server, config["host"], config["port"])
    try:
        listener.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        listener.close(return_immediately=True)
        server.close(return_immediately=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
