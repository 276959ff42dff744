"""
Pytest configuration and fixtures.

Add any shared fixtures or pytest configuration here.
"""

import logging
import sys

import pytest

from pyreflect import RPCServer, TypeRegistry

from .fixtures.sample_types import SAMPLE_TYPES
from .fixtures.transports import connect_pair


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Set up logging
    log_level = logging.DEBUG if config.getoption("--debug-pyreflect") else logging.INFO

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("pyreflect").setLevel(log_level)

    # If custom log file is specified, add file handler
    custom_log_file = config.getoption("--pyreflect-log-file")
    if custom_log_file:
        file_handler = logging.FileHandler(custom_log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )
        )
        logging.getLogger().addHandler(file_handler)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--debug-pyreflect",
        action="store_true",
        default=False,
        help="Enable debug logging for pyreflect (shows detailed execution flow)",
    )
    parser.addoption(
        "--pyreflect-log-file",
        action="store",
        default=None,
        help="Log pyreflect debug output to specified file",
    )


@pytest.fixture
def registry():
    """TypeRegistry exposing every sample type under its short name."""
    registry = TypeRegistry()
    for name, cls in SAMPLE_TYPES.items():
        registry.register(cls, name)
    return registry


@pytest.fixture
def rpc_server(registry):
    server = RPCServer(registry=registry)
    yield server
    server.close()


@pytest.fixture
def connection(rpc_server):
    """(client, session) connected over a socketpair."""
    client, session = connect_pair(rpc_server)
    yield client, session
    client.close()
    session.close()


@pytest.fixture
def client(connection):
    return connection[0]
