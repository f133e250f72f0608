"""Shared fixtures and test doubles for lifecycle tests.

The doubles implement the real interfaces (`SandboxRuntime`,
`DependencyDriver`, `ReadinessProbe`) so the Provisioner, Readiness Gate and
Broker run their real code paths without Docker or child processes.
"""

# pylint: disable=redefined-outer-name

import itertools
import threading
from pathlib import Path
from typing import Any

import pytest

from fixturekit.clients.interfaces.driver import DependencyDriver
from fixturekit.clients.interfaces.sandbox import SandboxRuntime
from fixturekit.core.exceptions import ProvisionError, ProvisionErrorKind
from fixturekit.core.models import FixtureSpec, ProbeResult, ProvisionedFixture, SandboxInstance
from fixturekit.core.readiness import ReadinessProbe

# =============================================================================
# Test doubles
# =============================================================================


class FakeRuntime(SandboxRuntime):
    """In-memory runtime recording every start and stop.

    Attributes:
        start_error: Exception raised by start(), if set.
        start_gate: Event start() waits on before returning, if set.
        logs_text: Text returned by logs().
    """

    name = "fake"

    def __init__(self) -> None:
        self.started: list[FixtureSpec] = []
        self.stopped: list[str] = []
        self.running: dict[str, bool] = {}
        self.start_error: BaseException | None = None
        self.stop_error: BaseException | None = None
        self.start_gate: threading.Event | None = None
        self.logs_text = ""
        self.closed = False
        self._ids = itertools.count(1)

    def start(self, spec: FixtureSpec) -> SandboxInstance:
        if self.start_gate is not None:
            self.start_gate.wait(5)
        if self.start_error is not None:
            raise self.start_error
        instance_id = f"fake-{next(self._ids)}"
        self.started.append(spec)
        self.running[instance_id] = True
        return SandboxInstance(
            instance_id=instance_id,
            host="127.0.0.1",
            ports={port: 40000 + i for i, port in enumerate(spec.ports)},
        )

    def logs(self, instance_id: str) -> str:
        return self.logs_text

    def stop(self, instance_id: str) -> None:
        self.stopped.append(instance_id)
        if self.stop_error is not None:
            raise self.stop_error
        self.running.pop(instance_id, None)

    def is_running(self, instance_id: str) -> bool:
        return self.running.get(instance_id, False)

    def exists(self, instance_id: str) -> bool:
        return instance_id in self.running

    def crash(self, instance_id: str) -> None:
        self.running[instance_id] = False

    def close(self) -> None:
        self.closed = True


class FakeClient:
    def __init__(self, connection_string: str) -> None:
        self.connection_string = connection_string
        self.closed = False


class FakeDriver(DependencyDriver):
    """Driver whose client is a plain object; rejects scripts containing BAD."""

    name = "fake"

    def __init__(self) -> None:
        self.opened: list[FakeClient] = []
        self.open_error: BaseException | None = None
        self.close_error: BaseException | None = None

    def connection_string(self, fixture: ProvisionedFixture) -> str:
        return f"fake://{fixture.host}:{fixture.port}"

    def open(self, connection_string: str) -> FakeClient:
        if self.open_error is not None:
            raise self.open_error
        client = FakeClient(connection_string)
        self.opened.append(client)
        return client

    def ping(self, client: Any) -> bool:
        return not client.closed

    def close(self, client: Any) -> None:
        if self.close_error is not None:
            raise self.close_error
        client.closed = True

    def check_init_script(self, path: Path) -> None:
        if "BAD" in path.read_text():
            msg = f"{path.name}: rejected"
            raise ValueError(msg)


class ScriptedProbe(ReadinessProbe):
    """Probe returning scripted results; the last result repeats."""

    def __init__(self, *results: ProbeResult, timeout: float | None = None, name: str = "scripted") -> None:
        self.results = list(results) or [ProbeResult.READY]
        self.timeout = timeout
        self.name = name
        self.evaluations = 0
        self.attempt_timeouts: list[float] = []

    def check(self, fixture: ProvisionedFixture, attempt_timeout: float) -> ProbeResult:
        self.evaluations += 1
        self.attempt_timeouts.append(attempt_timeout)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def spec() -> FixtureSpec:
    return FixtureSpec(name="db", image="fake/db:1", driver="fake", ports=(5432, 8080))


@pytest.fixture
def image_pull_failure() -> ProvisionError:
    return ProvisionError(ProvisionErrorKind.IMAGE_PULL_FAILED, "fake/db:1: not found", fixture_name="db")


@pytest.fixture
def make_probe() -> type[ScriptedProbe]:
    """Factory for scripted probes: `make_probe(ProbeResult.NOT_YET_READY, ProbeResult.READY)`."""
    return ScriptedProbe
