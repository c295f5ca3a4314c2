"""
Pytest configuration and shared fixtures for daemon tests.
"""

import logging
from unittest.mock import Mock

import pytest

from daemon_config import with_exit_fn, with_logger, with_platform
from lifecycle_daemon import start
from tests.fakes import ExitRecorder, FakeSignalPlatform


@pytest.fixture
def test_logger():
    """Create a real logger for testing."""
    logger = logging.getLogger(f"test_logger_{id(object())}")
    logger.setLevel(logging.DEBUG)

    # Add console handler if not already present
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        logger.addHandler(handler)

    return logger


@pytest.fixture
def mock_logger():
    """Create a mock logger."""
    logger = Mock(spec=logging.Logger)
    logger.isEnabledFor.return_value = False
    return logger


@pytest.fixture
def fake_platform():
    return FakeSignalPlatform()


@pytest.fixture
def exit_recorder():
    return ExitRecorder()


@pytest.fixture
def make_daemon(test_logger, fake_platform, exit_recorder):
    """Start daemons wired to the fake platform; any left running are shut down after the test."""
    started = []

    def factory(parent_ctx=None, *options):
        daemon = start(
            parent_ctx,
            with_logger(test_logger),
            with_platform(fake_platform),
            with_exit_fn(exit_recorder),
            *options,
        )
        started.append(daemon)
        return daemon

    yield factory

    for daemon in started:
        daemon.shut_down()
        daemon.wait(timeout=5)
        daemon._multiplexer.join(timeout=5)
