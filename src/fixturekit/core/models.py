"""Domain models for fixture lifecycle management.

This module defines the records passed between the Provisioner, the Readiness
Gate and the Shared-Fixture Broker, plus the run report produced by
`FixtureRunner`.

All classes use `attrs` for concise, correct class definitions. Descriptions
(`FixtureSpec`, `SandboxInstance`, `ConnectionHandle`) are frozen; the only
mutable record is `ProvisionedFixture`, whose status moves forward under a
lock.
"""

import threading
from concurrent.futures import Future
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import attrs

from fixturekit.core.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from fixturekit.clients.interfaces.sandbox import SandboxRuntime
    from fixturekit.core.readiness import ReadinessProbe


# =============================================================================
# Enumerations
# =============================================================================


class FixtureStatus(Enum):
    """Lifecycle status of a provisioned fixture."""

    STARTING = "Starting"
    READY = "Ready"
    FAILED = "Failed"
    TERMINATED = "Terminated"


# Forward-only transitions. A fixture that never became ready (or failed) can
# still be terminated; nothing leaves TERMINATED.
_FIXTURE_TRANSITIONS: dict[FixtureStatus, frozenset[FixtureStatus]] = {
    FixtureStatus.STARTING: frozenset({FixtureStatus.READY, FixtureStatus.FAILED, FixtureStatus.TERMINATED}),
    FixtureStatus.READY: frozenset({FixtureStatus.TERMINATED}),
    FixtureStatus.FAILED: frozenset({FixtureStatus.TERMINATED}),
    FixtureStatus.TERMINATED: frozenset(),
}


class ProbeResult(Enum):
    """Outcome of a single readiness probe evaluation."""

    READY = "Ready"
    NOT_YET_READY = "NotYetReady"
    PERMANENTLY_FAILED = "PermanentlyFailed"


class BrokerState(Enum):
    """Lifecycle state of a Shared-Fixture Broker."""

    UNINITIALIZED = "Uninitialized"
    PROVISIONING = "Provisioning"
    READY = "Ready"
    FAILED = "Failed"
    TORN_DOWN = "TornDown"


BROKER_TRANSITIONS: dict[BrokerState, frozenset[BrokerState]] = {
    BrokerState.UNINITIALIZED: frozenset({BrokerState.PROVISIONING, BrokerState.TORN_DOWN}),
    BrokerState.PROVISIONING: frozenset({BrokerState.READY, BrokerState.FAILED}),
    BrokerState.READY: frozenset({BrokerState.TORN_DOWN}),
    BrokerState.FAILED: frozenset({BrokerState.TORN_DOWN}),
    BrokerState.TORN_DOWN: frozenset(),
}


class CaseOutcome(Enum):
    """Outcome of a single test case in a run."""

    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


class RunStatus(Enum):
    """Final status of a run.

    Infrastructure failures and test failures are kept apart because the
    remediation differs: investigate the environment vs. fix the code.
    """

    PASSED = "passed"
    TEST_FAILURE = "test_failure"
    INFRASTRUCTURE_FAILURE = "infrastructure_failure"


# =============================================================================
# Fixture description
# =============================================================================


def _to_paths(values: Any) -> tuple[Path, ...]:
    return tuple(Path(v) for v in values)


@attrs.define(frozen=True, slots=True)
class Credentials:
    """Credentials applied to a dependency at initialization time.

    Attributes:
        username: Account created in the dependency.
        password: Password for the account.
        database: Database (or namespace) created for the run.
    """

    username: str
    password: str = attrs.field(repr=False)
    database: str


@attrs.define(frozen=True, slots=True)
class FixtureSpec:
    """Immutable description of the dependency to provision.

    Attributes:
        name: Unique name of the fixture within a run.
        image: Container image (docker runtime) or executable (process
            runtime). The process runtime expands `{python}` to the current
            interpreter.
        runtime: Sandbox runtime name (`docker` or `process`). None uses the
            configured default.
        driver: Dependency driver name used to connect (`kv`, `postgres`,
            `http`).
        ports: Internal ports to expose. The first is the primary port used
            for the connection endpoint.
        env: Environment variables for the dependency.
        command: Command arguments. The process runtime formats `{host}`,
            `{port}` and `{port_<internal>}` placeholders.
        credentials: Initialization credentials, if the dependency uses any.
        init_scripts: Initialization scripts applied when the dependency
            boots.
        init_script_target: Directory inside a container where init scripts
            are mounted (docker runtime only).
        start_timeout: Startup window in seconds, or None for the configured
            default.
    """

    name: str
    image: str
    runtime: str | None = None
    driver: str = "kv"
    ports: tuple[int, ...] = attrs.field(default=(), converter=tuple)
    env: dict[str, str] = attrs.field(factory=dict, converter=dict, hash=False)
    command: tuple[str, ...] = attrs.field(default=(), converter=tuple)
    credentials: Credentials | None = None
    init_scripts: tuple[Path, ...] = attrs.field(default=(), converter=_to_paths)
    init_script_target: str | None = None
    start_timeout: float | None = None

    @ports.validator
    def _check_ports(self, attribute: "attrs.Attribute[tuple[int, ...]]", value: tuple[int, ...]) -> None:
        if not value:
            msg = f"FixtureSpec '{self.name}' must expose at least one port"
            raise ValueError(msg)

    @property
    def primary_port(self) -> int:
        """Internal port the connection endpoint is derived from."""
        return self.ports[0]


@attrs.define(frozen=True, slots=True)
class Endpoint:
    """Resolved host and port of a dependency."""

    host: str
    port: int

    @property
    def address(self) -> str:
        """Endpoint formatted as `host:port`."""
        return f"{self.host}:{self.port}"


@attrs.define(frozen=True, slots=True)
class SandboxInstance:
    """A started sandbox as reported by a runtime.

    Attributes:
        instance_id: Runtime identifier (container id, process id tag).
        host: Host the dependency is reachable on.
        ports: Mapping of internal port to dynamically assigned host port.
        details: Runtime-specific details (e.g. `pid`, `short_id`).
    """

    instance_id: str
    host: str
    ports: dict[int, int] = attrs.field(factory=dict, hash=False)
    details: dict[str, Any] = attrs.field(factory=dict, hash=False)


# =============================================================================
# Live fixture
# =============================================================================


@attrs.define(slots=True, eq=False)
class ProvisionedFixture:
    """Runtime handle representing a live external dependency instance.

    Owned by the Provisioner, which is the only component allowed to
    terminate it. The Broker holds a non-owning reference for the run.

    Attributes:
        spec: Specification the fixture was provisioned from.
        runtime: Sandbox runtime hosting the instance.
        instance: Started sandbox, or None while the start request is pending
            or after it failed.
        status: Current lifecycle status.
        failure: Description of the failure when status is FAILED.
        pending_start: Future of an in-flight start request.
    """

    spec: FixtureSpec
    runtime: "SandboxRuntime" = attrs.field(repr=False)
    instance: SandboxInstance | None = None
    status: FixtureStatus = FixtureStatus.STARTING
    failure: str | None = None
    pending_start: "Future[SandboxInstance] | None" = attrs.field(default=None, repr=False)
    _lock: threading.Lock = attrs.field(factory=threading.Lock, init=False, repr=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def instance_id(self) -> str | None:
        return self.instance.instance_id if self.instance is not None else None

    @property
    def host(self) -> str:
        return self._require_instance().host

    @property
    def port(self) -> int:
        """Host port mapped to the spec's primary internal port."""
        return self.host_port(self.spec.primary_port)

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(host=self.host, port=self.port)

    def host_port(self, internal_port: int) -> int:
        """Return the host port mapped to an internal port.

        Raises:
            KeyError: If the internal port was not exposed.
        """
        return self._require_instance().ports[internal_port]

    def transition(self, new_status: FixtureStatus, failure: str | None = None) -> bool:
        """Move the fixture to a new status.

        Returns:
            False if the fixture already had `new_status` (no-op), True otherwise.

        Raises:
            InvalidTransitionError: If the move is not forward.
        """
        with self._lock:
            if self.status is new_status:
                return False
            if new_status not in _FIXTURE_TRANSITIONS[self.status]:
                msg = f"Fixture '{self.name}' cannot move from {self.status.value} to {new_status.value}"
                raise InvalidTransitionError(msg)
            self.status = new_status
            if failure is not None:
                self.failure = failure
            return True

    def is_running(self) -> bool:
        """Whether the sandbox instance is up according to its runtime."""
        if self.instance is None or self.status is FixtureStatus.TERMINATED:
            return False
        return self.runtime.is_running(self.instance.instance_id)

    def logs(self) -> str:
        """Return the output the dependency has produced so far."""
        if self.instance is None:
            return ""
        return self.runtime.logs(self.instance.instance_id)

    def _require_instance(self) -> SandboxInstance:
        if self.instance is None:
            msg = f"Fixture '{self.name}' has no running instance"
            raise RuntimeError(msg)
        return self.instance


@attrs.define(frozen=True, slots=True)
class ConnectionHandle:
    """Live, shared client connection derived from a Ready fixture.

    Shared by reference across all test cases; the Broker owns its lifecycle.

    Attributes:
        fixture_name: Name of the fixture the handle connects to.
        endpoint: Resolved endpoint.
        connection_string: Driver-specific connection string.
        client: The driver's client object (pooled where concurrency needs it).
    """

    fixture_name: str
    endpoint: Endpoint
    connection_string: str = attrs.field(repr=False)
    client: Any = attrs.field(eq=False, repr=False)


@attrs.define(frozen=True, slots=True)
class FixturePlan:
    """A FixtureSpec paired with the readiness probe that gates it."""

    spec: FixtureSpec
    probe: "ReadinessProbe"


# =============================================================================
# Run report
# =============================================================================


@attrs.define(frozen=True, slots=True)
class CaseResult:
    """Result of a single test case.

    Attributes:
        name: Test case name.
        outcome: Pass, fail, error or skipped.
        duration: Seconds spent in the test body and its cleanups.
        message: Failure or skip message.
    """

    name: str
    outcome: CaseOutcome
    duration: float = 0.0
    message: str | None = None


@attrs.define(frozen=True, slots=True)
class RunReport:
    """Final report of a fixture-backed run.

    Attributes:
        status: Overall run status.
        cases: Per-case results in submission order.
        setup_error: Description of the infrastructure failure, if any.
    """

    status: RunStatus
    cases: tuple[CaseResult, ...] = attrs.field(default=(), converter=tuple)
    setup_error: str | None = None

    @classmethod
    def from_results(cls, cases: list[CaseResult]) -> "RunReport":
        """Build a report for a run whose fixture came up."""
        failed = any(c.outcome in (CaseOutcome.FAILED, CaseOutcome.ERROR) for c in cases)
        return cls(status=RunStatus.TEST_FAILURE if failed else RunStatus.PASSED, cases=cases)

    @classmethod
    def infrastructure_failure(cls, error: BaseException, case_names: list[str]) -> "RunReport":
        """Build a report for a run whose fixture never came up."""
        message = f"Skipped: fixture unavailable ({type(error).__name__})"
        return cls(
            status=RunStatus.INFRASTRUCTURE_FAILURE,
            cases=[CaseResult(name=n, outcome=CaseOutcome.SKIPPED, message=message) for n in case_names],
            setup_error=str(error),
        )

    def count(self, outcome: CaseOutcome) -> int:
        return sum(1 for c in self.cases if c.outcome is outcome)

    def summary(self) -> str:
        """One-line summary suitable for a CI log."""
        if self.status is RunStatus.INFRASTRUCTURE_FAILURE:
            return f"INFRASTRUCTURE FAILURE: {self.setup_error} ({self.count(CaseOutcome.SKIPPED)} skipped)"
        counts = ", ".join(f"{self.count(o)} {o.value}" for o in CaseOutcome if self.count(o))
        label = "PASSED" if self.status is RunStatus.PASSED else "TEST FAILURE"
        return f"{label}: {counts or 'no cases'}"
