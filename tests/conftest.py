"""
Pytest configuration and fixtures.

Every test runs inside registry_scope(), so a registry opened by a test is
closed when it finishes and the next test starts without one.
"""

import logging
import sys

import pytest

from pyitemserver._internal.rpc_serialization import reject_proxies
from pyitemserver._internal.singleton_context import registry_scope
from pyitemserver.config import TransportConfig


def pytest_configure(config):
    """Configure pytest with custom settings."""
    log_level = logging.DEBUG if config.getoption("--debug-itemserver") else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("pyitemserver").setLevel(log_level)

    custom_log_file = config.getoption("--itemserver-log-file")
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
        "--debug-itemserver",
        action="store_true",
        default=False,
        help="Enable debug logging for pyitemserver (shows detailed execution flow)",
    )
    parser.addoption(
        "--itemserver-log-file",
        action="store",
        default=None,
        help="Log pyitemserver debug output to specified file",
    )


@pytest.fixture(autouse=True)
def isolated_registry():
    with registry_scope():
        yield
    reject_proxies()


@pytest.fixture
def loopback_config():
    """Registry on 127.0.0.1 with a free port, advertised on 127.0.0.1."""
    return TransportConfig("127.0.0.1", 0)
