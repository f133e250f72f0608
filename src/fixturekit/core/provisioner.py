"""Fixture Provisioner: creates and destroys sandboxed dependencies.

The Provisioner is the only component that talks to a `SandboxRuntime`. It
turns an immutable `FixtureSpec` into a live `ProvisionedFixture` and
guarantees that every sandbox it started is eventually stopped, including a
sandbox whose start request completed only after the run gave up on it.

## Guarantees

- At most one live fixture per spec name (`DuplicateFixtureError`).
- `provision` returns as soon as the runtime reports the sandbox as started;
  readiness is the Readiness Gate's job.
- The start request is bounded by the startup window. On timeout the request
  keeps running in the background and its sandbox is reaped when it arrives.
- `terminate` is idempotent, tolerates partial state and never raises.

## Usage

```python
provisioner = FixtureProvisioner(runtime, driver=driver)
fixture = provisioner.provision(spec)
try:
    ...
finally:
    provisioner.terminate(fixture)
```
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait as wait_futures
from functools import partial

from fixturekit.clients.interfaces.driver import DependencyDriver
from fixturekit.clients.interfaces.sandbox import SandboxRuntime
from fixturekit.config import ProvisionConfig

from .exceptions import DuplicateFixtureError, ProvisionError, ProvisionErrorKind
from .models import FixtureSpec, FixtureStatus, ProvisionedFixture, SandboxInstance

logger = logging.getLogger(__name__)


class FixtureProvisioner:
    """Creates sandboxes for fixture specs and tears them down.

    Attributes:
        runtime: Sandbox runtime used to start and stop instances.
        driver: Driver used to validate init scripts, if any.
        config: Provisioning configuration (startup window, stop timeout).
    """

    def __init__(
        self,
        runtime: SandboxRuntime,
        driver: DependencyDriver | None = None,
        config: ProvisionConfig | None = None,
    ) -> None:
        self.runtime = runtime
        self.driver = driver
        self.config = config or ProvisionConfig()
        self._fixtures: dict[str, ProvisionedFixture] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(thread_name_prefix="fixturekit-start")

    def get(self, name: str) -> ProvisionedFixture | None:
        """Return the registered (not yet terminated) fixture for a spec name."""
        with self._lock:
            return self._fixtures.get(name)

    def provision(self, spec: FixtureSpec) -> ProvisionedFixture:
        """Create the sandbox for a spec.

        Args:
            spec: Description of the dependency.

        Returns:
            The fixture in STARTING status with its instance attached.

        Raises:
            DuplicateFixtureError: If a live fixture already exists for the
                spec name.
            ProvisionError: With kind IMAGE_PULL_FAILED, START_TIMEOUT,
                INIT_SCRIPT_FAILED or SANDBOX_UNAVAILABLE. The fixture stays
                registered (FAILED) so it can still be terminated.
        """
        with self._lock:
            if spec.name in self._fixtures:
                msg = f"Fixture '{spec.name}' is already provisioned"
                raise DuplicateFixtureError(msg)
            fixture = ProvisionedFixture(spec=spec, runtime=self.runtime)
            self._fixtures[spec.name] = fixture

        logger.info(
            "Provisioning fixture",
            extra={"fixture": spec.name, "image": spec.image, "runtime": self.runtime.name},
        )

        try:
            self._check_init_scripts(spec)
        except ProvisionError as e:
            self._mark_failed(fixture, e)
            raise

        start_timeout = spec.start_timeout if spec.start_timeout is not None else self.config.start_timeout
        future = self._executor.submit(self.runtime.start, spec)
        fixture.pending_start = future
        future.add_done_callback(partial(self._on_start_done, fixture))

        try:
            instance = future.result(timeout=start_timeout)
        except FutureTimeoutError as e:
            error = ProvisionError(
                ProvisionErrorKind.START_TIMEOUT,
                f"sandbox for '{spec.name}' did not start within {start_timeout}s",
                fixture_name=spec.name,
            )
            self._mark_failed(fixture, error)
            raise error from e
        except ProvisionError as e:
            self._mark_failed(fixture, e)
            raise
        except Exception as e:
            error = ProvisionError(ProvisionErrorKind.SANDBOX_UNAVAILABLE, str(e), fixture_name=spec.name)
            self._mark_failed(fixture, error)
            raise error from e

        self._attach(fixture, instance)
        logger.info(
            "Fixture provisioned",
            extra={"fixture": spec.name, "instance_id": instance.instance_id, "host": instance.host},
        )
        return fixture

    def terminate(self, fixture: ProvisionedFixture) -> None:
        """Stop a fixture's sandbox. Idempotent; never raises.

        A start request that is still pending is awaited for up to the stop
        timeout. If it completes later, its sandbox is stopped on arrival.
        """
        pending = fixture.pending_start
        if pending is not None and not pending.done():
            logger.info("Waiting for pending start before terminating", extra={"fixture": fixture.name})
            wait_futures([pending], timeout=self.config.stop_timeout)

        with self._lock:
            if fixture.status is FixtureStatus.TERMINATED:
                return
            fixture.transition(FixtureStatus.TERMINATED)
            instance = fixture.instance
            if self._fixtures.get(fixture.name) is fixture:
                del self._fixtures[fixture.name]

        if instance is not None:
            self._stop(fixture.name, instance)
        logger.info("Fixture terminated", extra={"fixture": fixture.name})

    def close(self) -> None:
        """Terminate every registered fixture and stop the start worker pool."""
        with self._lock:
            fixtures = list(self._fixtures.values())
        for fixture in fixtures:
            self.terminate(fixture)
        self._executor.shutdown(wait=False)

    def _check_init_scripts(self, spec: FixtureSpec) -> None:
        for path in spec.init_scripts:
            if not path.is_file():
                msg = f"init script {path} does not exist"
                raise ProvisionError(ProvisionErrorKind.INIT_SCRIPT_FAILED, msg, fixture_name=spec.name)
            if self.driver is None:
                continue
            try:
                self.driver.check_init_script(path)
            except (ValueError, OSError) as e:
                raise ProvisionError(
                    ProvisionErrorKind.INIT_SCRIPT_FAILED, str(e), fixture_name=spec.name
                ) from e

    def _on_start_done(self, fixture: ProvisionedFixture, future: "Future[SandboxInstance]") -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self._attach(fixture, future.result())

    def _attach(self, fixture: ProvisionedFixture, instance: SandboxInstance) -> None:
        with self._lock:
            if fixture.instance is None:
                fixture.instance = instance
            fixture.pending_start = None
            reap = fixture.status is FixtureStatus.TERMINATED
        if reap:
            logger.warning(
                "Sandbox started after its fixture was terminated, stopping it",
                extra={"fixture": fixture.name, "instance_id": instance.instance_id},
            )
            self._stop(fixture.name, instance)

    def _stop(self, name: str, instance: SandboxInstance) -> None:
        try:
            self.runtime.stop(instance.instance_id)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Failed to stop sandbox",
                extra={"fixture": name, "instance_id": instance.instance_id, "error": str(e)},
            )

    def _mark_failed(self, fixture: ProvisionedFixture, error: Exception) -> None:
        with self._lock:
            if fixture.status is FixtureStatus.STARTING:
                fixture.transition(FixtureStatus.FAILED, failure=str(error))
        logger.error("Provisioning failed", extra={"fixture": fixture.name, "error": str(error)})
