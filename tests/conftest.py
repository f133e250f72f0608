"""Shared pytest configuration and fixtures.

This module provides global fixtures and configuration that are available
to all tests in the test suite.

Fixtures defined here are automatically available to all tests without explicit
import statements. Keep fixtures small, composable, and focused on setup/teardown.
"""

import threading
from collections.abc import Iterator

import pytest

from fixturekit.config import LoggingConfig, ProvisionConfig, ReadinessConfig, RunConfig, Settings, get_settings
from fixturekit.kvstore.server import KVServer, KVStore


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    """Make every test read settings from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with short timeouts so lifecycle tests finish quickly.

    Returns:
        Settings: Process runtime, 10ms polling, 2s readiness timeout.
    """
    return Settings(
        provision=ProvisionConfig(runtime="process", start_timeout=5.0, stop_timeout=2, stop_max_attempts=2),
        readiness=ReadinessConfig(poll_interval=0.01, timeout=2.0, attempt_timeout=0.2),
        run=RunConfig(),
        logging=LoggingConfig(),
    )


@pytest.fixture
def kv_server() -> Iterator[KVServer]:
    """A key-value store server on an ephemeral port, seeded with `seeded=yes`.

    Yields:
        KVServer: Running server; its port is `server.server_address[1]`.
    """
    server = KVServer(("127.0.0.1", 0), KVStore({"seeded": "yes"}))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join(5)
