"""Shared-Fixture Broker: one dependency, many test cases.

The Broker owns the lifecycle of a single fixture for a whole run. It
provisions the fixture once, waits for readiness once, and hands the same
`ConnectionHandle` to every test case. Teardown runs exactly once regardless
of how the run ends.

## States

```
Uninitialized -> Provisioning -> Ready -> TornDown
                 Provisioning -> Failed -> TornDown
Uninitialized -> TornDown   (teardown before setup)
```

## Concurrency

`setup` and `teardown` are guarded by `ExecuteOnce` gates. Concurrent
`setup` callers block until the first one finishes and then observe the same
handle or the same error. `teardown` cancels a pending readiness wait and
waits for an in-flight setup before releasing anything, so a handle is never
closed while a setup is still producing it.

## Usage

```python
broker = SharedFixtureBroker.from_plan(kvstore_plan())
with broker:
    with broker.test_case("test_set_and_get") as ctx:
        ctx.client.set("k", "v")
        ctx.add_cleanup(ctx.client.delete, "k")
```
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fixturekit.clients import create_dependency_driver, create_sandbox_runtime
from fixturekit.clients.interfaces.driver import DependencyDriver
from fixturekit.clients.interfaces.sandbox import SandboxRuntime
from fixturekit.config import Settings, get_settings
from fixturekit.foundation.once import ExecuteOnce

from .context import TestCaseContext
from .exceptions import InvalidTransitionError, NotReadyError
from .models import BROKER_TRANSITIONS, BrokerState, ConnectionHandle, FixturePlan, FixtureSpec, ProvisionedFixture
from .provisioner import FixtureProvisioner
from .readiness import ReadinessGate, ReadinessProbe

logger = logging.getLogger(__name__)


class SharedFixtureBroker:
    """Provisions one fixture and shares its connection across test cases.

    Attributes:
        spec: Fixture specification.
        probe: Readiness probe gating the fixture.
        runtime: Sandbox runtime.
        driver: Dependency driver.
        provisioner: Provisioner that owns the fixture.
        gate: Readiness Gate.
        settings: Settings the broker was built with.
    """

    def __init__(
        self,
        spec: FixtureSpec,
        probe: ReadinessProbe,
        *,
        runtime: SandboxRuntime | None = None,
        driver: DependencyDriver | None = None,
        provisioner: FixtureProvisioner | None = None,
        gate: ReadinessGate | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.settings = settings
        self.spec = spec
        self.probe = probe

        self._owns_runtime = runtime is None and provisioner is None
        if provisioner is not None:
            runtime = provisioner.runtime
        self.runtime = runtime or create_sandbox_runtime(spec.runtime, settings.provision)
        self.driver = driver or create_dependency_driver(spec.driver)

        self._owns_provisioner = provisioner is None
        self.provisioner = provisioner or FixtureProvisioner(self.runtime, self.driver, settings.provision)
        self.gate = gate or ReadinessGate(self.driver, settings.readiness)

        self._state = BrokerState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._cancel = threading.Event()
        self._setup_once: ExecuteOnce[ConnectionHandle] = ExecuteOnce(f"{spec.name}:setup")
        self._teardown_once: ExecuteOnce[None] = ExecuteOnce(f"{spec.name}:teardown")
        self._fixture: ProvisionedFixture | None = None
        self._handle: ConnectionHandle | None = None
        self._error: BaseException | None = None

    @classmethod
    def from_plan(cls, plan: FixturePlan, **kwargs: Any) -> "SharedFixtureBroker":
        """Create a broker for a `FixturePlan` (spec plus probe)."""
        return cls(plan.spec, plan.probe, **kwargs)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def state(self) -> BrokerState:
        return self._state

    @property
    def fixture(self) -> ProvisionedFixture | None:
        return self._fixture

    @property
    def error(self) -> BaseException | None:
        """Error that made setup fail, if any."""
        return self._error

    def _transition(self, new_state: BrokerState) -> None:
        with self._state_lock:
            if new_state not in BROKER_TRANSITIONS[self._state]:
                msg = f"Broker '{self.name}' cannot move from {self._state.value} to {new_state.value}"
                raise InvalidTransitionError(msg)
            logger.debug(
                "Broker state change",
                extra={"fixture": self.name, "from": self._state.value, "to": new_state.value},
            )
            self._state = new_state

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def setup(self) -> ConnectionHandle:
        """Provision the fixture and wait until it is ready (once).

        Returns:
            The shared connection handle.

        Raises:
            InfrastructureError: If provisioning or readiness failed. The
                fixture has already been torn down when this is raised.
            NotReadyError: If the broker was torn down.
        """
        if self._teardown_once.started:
            if self._error is not None:
                raise self._error
            msg = f"Fixture '{self.name}' has been torn down"
            raise NotReadyError(msg)
        return self._setup_once(self._do_setup)

    def _do_setup(self) -> ConnectionHandle:
        with self._state_lock:
            torn_down = self._state is BrokerState.TORN_DOWN
        if torn_down:
            msg = f"Fixture '{self.name}' has been torn down"
            raise NotReadyError(msg)

        self._transition(BrokerState.PROVISIONING)
        try:
            self._fixture = self.provisioner.provision(self.spec)
            handle = self.gate.wait_until_ready(self._fixture, self.probe, cancel=self._cancel)
        except BaseException as e:
            self._error = e
            self._transition(BrokerState.FAILED)
            logger.error(
                "Fixture setup failed, tearing down",
                extra={"fixture": self.name, "error": str(e), "error_type": type(e).__name__},
            )
            self.teardown()
            raise

        self._handle = handle
        self._transition(BrokerState.READY)
        return handle

    def acquire(self) -> ConnectionHandle:
        """Return the shared handle without blocking.

        Raises:
            NotReadyError: If the broker is not in READY state.
        """
        with self._state_lock:
            if self._state is BrokerState.READY and self._handle is not None:
                return self._handle
            state = self._state
        msg = f"Fixture '{self.name}' is not ready (state: {state.value})"
        raise NotReadyError(msg)

    def cancel(self) -> None:
        """Abort a pending readiness wait."""
        if not self._cancel.is_set():
            logger.warning("Cancelling fixture setup", extra={"fixture": self.name})
        self._cancel.set()

    def teardown(self) -> None:
        """Release the handle and terminate the fixture (once). Never raises."""
        self._cancel.set()
        self._setup_once.wait()
        try:
            self._teardown_once(self._do_teardown)
        except Exception:
            logger.exception("Fixture teardown failed", extra={"fixture": self.name})

    def _do_teardown(self) -> None:
        if self._handle is not None:
            try:
                self.driver.close(self._handle.client)
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to close connection", extra={"fixture": self.name, "error": str(e)})

        fixture = self._fixture or self.provisioner.get(self.name)
        if fixture is not None:
            self.provisioner.terminate(fixture)

        if self._owns_provisioner:
            self.provisioner.close()
        if self._owns_runtime:
            try:
                self.runtime.close()
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to close runtime", extra={"fixture": self.name, "error": str(e)})

        self._transition(BrokerState.TORN_DOWN)
        logger.info("Fixture torn down", extra={"fixture": self.name})

    # -------------------------------------------------------------------------
    # Test cases
    # -------------------------------------------------------------------------

    @contextmanager
    def test_case(self, name: str) -> Iterator[TestCaseContext]:
        """Scope a test case: yield its context, then run its cleanups.

        Raises:
            NotReadyError: If the broker is not READY.
        """
        context = TestCaseContext(name, self.acquire())
        try:
            yield context
        finally:
            context.run_cleanups()

    def __enter__(self) -> "SharedFixtureBroker":
        self.setup()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.teardown()
