"""Fixtures for integration tests.

Integration tests provision real dependencies: the bundled key-value store as
a child process (always available) and Docker images (only when a daemon is
reachable, see `docker_available`).
"""

# pylint: disable=redefined-outer-name

from collections.abc import Callable, Iterator

import docker
import docker.errors
import pytest

from fixturekit.clients.process import ProcessRuntime
from fixturekit.config import Settings
from fixturekit.core.broker import SharedFixtureBroker
from fixturekit.core.models import FixturePlan


@pytest.fixture
def process_runtime(fast_settings: Settings) -> Iterator[ProcessRuntime]:
    """Process runtime shared by the brokers of one test; closed afterwards."""
    runtime = ProcessRuntime(fast_settings.provision)
    yield runtime
    runtime.close()


@pytest.fixture
def make_broker(
    process_runtime: ProcessRuntime, fast_settings: Settings
) -> Iterator[Callable[[FixturePlan], SharedFixtureBroker]]:
    """Factory for brokers on the process runtime; every broker is torn down."""
    brokers: list[SharedFixtureBroker] = []

    def _make(plan: FixturePlan) -> SharedFixtureBroker:
        broker = SharedFixtureBroker.from_plan(plan, runtime=process_runtime, settings=fast_settings)
        brokers.append(broker)
        return broker

    yield _make
    for broker in brokers:
        broker.teardown()


@pytest.fixture(scope="session")
def docker_available() -> bool:
    """Whether a Docker daemon answers on the default socket."""
    try:
        client = docker.from_env()
        client.ping()
        client.close()
    except docker.errors.DockerException:
        return False
    return True


@pytest.fixture
def require_docker(docker_available: bool) -> None:
    if not docker_available:
        pytest.skip("Docker daemon not available")
