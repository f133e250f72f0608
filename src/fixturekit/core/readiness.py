"""Readiness Gate: deterministic waiting for a dependency to become usable.

A container (or child process) that has *started* is not necessarily
*ready*: Postgres restarts once after running its init scripts, LocalStack
loads services lazily. The Readiness Gate polls a `ReadinessProbe` until it
reports READY, a timeout elapses, the probe reports a permanent failure, or
the wait is cancelled. Only then is a `ConnectionHandle` produced.

## Probes

- `TcpPortProbe`: the primary port accepts TCP connections
- `LogPatternProbe`: a line pattern appeared N times in the dependency's logs
- `HttpHealthProbe`: an HTTP endpoint answers with an accepted status
- `PingProbe`: the dependency driver can open a client and `ping` succeeds

Every probe reports PERMANENTLY_FAILED as soon as the sandbox stops running,
so a crashed dependency fails fast instead of waiting out the timeout.

## Polling

Polling uses tenacity's `Retrying`, stopping at the deadline or when the
cancellation event is set, and sleeps on the cancellation event. Each
evaluation runs on a worker thread and gets at most the time left before the
deadline: the TCP and HTTP probes shorten their attempt timeout to it, and an
evaluation still running at the deadline is abandoned. A wait therefore ends
no later than one poll interval after its timeout, and a cancelled wait
returns almost immediately.
"""

import logging
import re
import socket
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from typing import Any

import attrs
import httpx
from tenacity import RetryCallState, Retrying, retry_if_result, stop_any, stop_when_event_set

from fixturekit.clients.interfaces.driver import DependencyDriver
from fixturekit.config import ReadinessConfig

from .exceptions import ReadinessTimeout
from .models import ConnectionHandle, FixtureStatus, ProbeResult, ProvisionedFixture

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPT_TIMEOUT = 1.0

# Granularity at which an in-flight evaluation notices cancellation.
_CANCEL_CHECK_INTERVAL = 0.05


# =============================================================================
# Probes
# =============================================================================


class ReadinessProbe(ABC):
    """Stateless strategy that decides whether a fixture is ready.

    Attributes:
        name: Probe name used in logs and errors.
        timeout: Seconds to keep polling before giving up, or None for the
            configured default.
        attempt_timeout: Upper bound for a single evaluation, or None for
            the configured default.
    """

    name: str
    timeout: float | None
    attempt_timeout: float | None = None

    def evaluate(self, fixture: ProvisionedFixture, attempt_timeout: float | None = None) -> ProbeResult:
        """Evaluate the probe once.

        Returns PERMANENTLY_FAILED if the sandbox is no longer running,
        otherwise defers to `check`.

        Args:
            fixture: Fixture to probe.
            attempt_timeout: Time available to this evaluation. Defaults to
                the probe's own `attempt_timeout`, then 1 second.
        """
        if attempt_timeout is None:
            attempt_timeout = self.attempt_timeout if self.attempt_timeout is not None else DEFAULT_ATTEMPT_TIMEOUT
        if not fixture.is_running():
            logger.warning(
                "Sandbox is no longer running",
                extra={"fixture": fixture.name, "probe": self.name},
            )
            return ProbeResult.PERMANENTLY_FAILED
        return self.check(fixture, attempt_timeout)

    @abstractmethod
    def check(self, fixture: ProvisionedFixture, attempt_timeout: float) -> ProbeResult:
        """Probe-specific readiness check against a running sandbox.

        Blocking network calls should not take longer than `attempt_timeout`.
        """


@attrs.define(frozen=True, slots=True)
class TcpPortProbe(ReadinessProbe):
    """Ready once the fixture's primary port accepts a TCP connection.

    Attributes:
        attempt_timeout: Connect timeout of a single attempt.
    """

    name: str = "tcp-port"
    timeout: float | None = None
    attempt_timeout: float | None = None

    def check(self, fixture: ProvisionedFixture, attempt_timeout: float) -> ProbeResult:
        try:
            with socket.create_connection((fixture.host, fixture.port), timeout=attempt_timeout):
                return ProbeResult.READY
        except OSError:
            return ProbeResult.NOT_YET_READY


@attrs.define(frozen=True, slots=True)
class LogPatternProbe(ReadinessProbe):
    """Ready once `pattern` occurs at least `occurrences` times in the logs.

    Postgres logs "database system is ready to accept connections" twice:
    once for the temporary server that runs init scripts and once for the
    real one, so its preset waits for the second occurrence.

    Attributes:
        pattern: Regular expression searched line by line.
        occurrences: Matches required.
    """

    pattern: str
    occurrences: int = 1
    name: str = "log-pattern"
    timeout: float | None = None
    _regex: "re.Pattern[str]" = attrs.field(init=False, repr=False, eq=False)

    def __attrs_post_init__(self) -> None:
        object.__setattr__(self, "_regex", re.compile(self.pattern))

    def check(self, fixture: ProvisionedFixture, attempt_timeout: float) -> ProbeResult:
        matches = len(self._regex.findall(fixture.logs()))
        if matches >= self.occurrences:
            return ProbeResult.READY
        return ProbeResult.NOT_YET_READY


@attrs.define(frozen=True, slots=True)
class HttpHealthProbe(ReadinessProbe):
    """Ready once `GET path` answers with one of `statuses`.

    Attributes:
        path: Health endpoint path.
        statuses: HTTP status codes that mean ready.
        attempt_timeout: Request timeout of a single attempt.
    """

    path: str = "/"
    statuses: tuple[int, ...] = attrs.field(default=(200,), converter=tuple)
    name: str = "http-health"
    timeout: float | None = None
    attempt_timeout: float | None = None

    def check(self, fixture: ProvisionedFixture, attempt_timeout: float) -> ProbeResult:
        url = f"http://{fixture.host}:{fixture.port}{self.path}"
        try:
            response = httpx.get(url, timeout=attempt_timeout)
        except httpx.HTTPError:
            return ProbeResult.NOT_YET_READY
        if response.status_code in self.statuses:
            return ProbeResult.READY
        return ProbeResult.NOT_YET_READY


@attrs.define(frozen=True, slots=True)
class PingProbe(ReadinessProbe):
    """Ready once the driver can open a client and `ping` succeeds.

    The probe client is closed after every attempt; the gate opens the
    shared client separately once the probe passes.

    Attributes:
        driver: Driver used to connect.
    """

    driver: DependencyDriver
    name: str = "ping"
    timeout: float | None = None

    def check(self, fixture: ProvisionedFixture, attempt_timeout: float) -> ProbeResult:
        try:
            client = self.driver.open(self.driver.connection_string(fixture))
        except Exception:  # noqa: BLE001
            return ProbeResult.NOT_YET_READY
        try:
            return ProbeResult.READY if self.driver.ping(client) else ProbeResult.NOT_YET_READY
        finally:
            self.driver.close(client)


# =============================================================================
# Gate
# =============================================================================


class ReadinessGate:
    """Blocks until a provisioned fixture is usable, then opens its client.

    Attributes:
        driver: Driver used to build the connection string and open the
            shared client.
        config: Polling configuration.
        poll_interval: Seconds between probe evaluations.
    """

    def __init__(
        self,
        driver: DependencyDriver,
        config: ReadinessConfig | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.driver = driver
        self.config = config or ReadinessConfig()
        self.poll_interval = poll_interval if poll_interval is not None else self.config.poll_interval

    def wait_until_ready(
        self,
        fixture: ProvisionedFixture,
        probe: ReadinessProbe,
        cancel: threading.Event | None = None,
    ) -> ConnectionHandle:
        """Poll `probe` until the fixture is ready and return a handle.

        Args:
            fixture: Fixture in STARTING status.
            probe: Probe to poll.
            cancel: Event that aborts the wait when set.

        Returns:
            ConnectionHandle with the driver's shared client.

        Raises:
            ReadinessTimeout: On timeout, cancellation, permanent probe failure
                or a failure to open the client. The fixture is marked FAILED.
        """
        cancel = cancel or threading.Event()
        timeout = probe.timeout if probe.timeout is not None else self.config.timeout
        attempt_timeout = probe.attempt_timeout if probe.attempt_timeout is not None else self.config.attempt_timeout
        started = time.monotonic()
        deadline = started + timeout
        last: ProbeResult | None = None

        logger.info(
            "Waiting for fixture readiness",
            extra={"fixture": fixture.name, "probe": probe.name, "timeout": timeout},
        )

        if cancel.is_set():
            raise self._fail(fixture, probe, started, last, cancelled=True, reason="was cancelled")

        def past_deadline(retry_state: RetryCallState) -> bool:
            return time.monotonic() >= deadline

        def remaining_wait(retry_state: RetryCallState) -> float:
            return max(0.0, min(self.poll_interval, deadline - time.monotonic()))

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"probe-{fixture.name}")

        def evaluate() -> ProbeResult:
            nonlocal last
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return ProbeResult.NOT_YET_READY
            future = executor.submit(probe.evaluate, fixture, min(attempt_timeout, remaining))
            try:
                result = _result_before(future, deadline, cancel)
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "Probe raised, treating as not yet ready",
                    extra={"fixture": fixture.name, "probe": probe.name, "error": str(e)},
                )
                result = ProbeResult.NOT_YET_READY
            if result is None:
                logger.warning(
                    "Abandoning probe evaluation still in flight",
                    extra={"fixture": fixture.name, "probe": probe.name, "cancelled": cancel.is_set()},
                )
                return ProbeResult.NOT_YET_READY
            last = result
            logger.debug(
                "Probe evaluated",
                extra={"fixture": fixture.name, "probe": probe.name, "result": last.value},
            )
            return last

        retrying = Retrying(
            stop=stop_any(past_deadline, stop_when_event_set(cancel)),
            wait=remaining_wait,
            retry=retry_if_result(lambda result: result is ProbeResult.NOT_YET_READY),
            sleep=cancel.wait,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),  # type: ignore[union-attr]
        )
        try:
            result = retrying(evaluate)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if result is ProbeResult.PERMANENTLY_FAILED:
            raise self._fail(fixture, probe, started, last, reason="failed permanently")
        if result is not ProbeResult.READY:
            if cancel.is_set():
                raise self._fail(fixture, probe, started, last, cancelled=True, reason="was cancelled")
            raise self._fail(fixture, probe, started, last)

        connection_string = self.driver.connection_string(fixture)
        try:
            client = self.driver.open(connection_string)
        except Exception as e:
            error = self._fail(fixture, probe, started, last, reason=f"passed but the client could not connect ({e})")
            raise error from e

        handle = ConnectionHandle(
            fixture_name=fixture.name,
            endpoint=fixture.endpoint,
            connection_string=connection_string,
            client=client,
        )
        fixture.transition(FixtureStatus.READY)
        logger.info(
            "Fixture ready",
            extra={
                "fixture": fixture.name,
                "endpoint": handle.endpoint.address,
                "elapsed": round(time.monotonic() - started, 3),
            },
        )
        return handle

    def _fail(
        self,
        fixture: ProvisionedFixture,
        probe: ReadinessProbe,
        started: float,
        last: ProbeResult | None,
        *,
        cancelled: bool = False,
        reason: str = "timed out",
    ) -> ReadinessTimeout:
        error = ReadinessTimeout(
            probe.name,
            time.monotonic() - started,
            last,
            cancelled=cancelled,
            reason=reason,
        )
        if fixture.status is FixtureStatus.STARTING:
            fixture.transition(FixtureStatus.FAILED, failure=str(error))
        logger.error(
            "Fixture never became ready",
            extra={"fixture": fixture.name, "probe": probe.name, "reason": reason, "last_state": _state(last)},
        )
        return error


def _state(result: ProbeResult | None) -> Any:
    return result.value if result is not None else None


def _result_before(future: "Future[ProbeResult]", deadline: float, cancel: threading.Event) -> ProbeResult | None:
    """Return the evaluation's result, or None if the deadline or cancellation came first."""
    while not future.done():
        remaining = deadline - time.monotonic()
        if remaining <= 0 or cancel.is_set():
            return None
        wait_for_futures([future], timeout=min(remaining, _CANCEL_CHECK_INTERVAL))
    return future.result()
