"""Unit tests for core.broker module.

This file tests SharedFixtureBroker with an in-memory runtime and driver.

# Test Coverage

The tests cover:
  - setup: single provisioning, concurrent callers, replayed failures
  - acquire: non-blocking, NotReadyError outside READY
  - teardown: exactly once, before setup, during a pending setup
  - Ownership: runtime created by the broker is closed, injected one is not
  - test_case: per-case cleanups

# Running Tests

Run with: pytest tests/unit/core/test_broker.py
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from fixturekit.core.broker import SharedFixtureBroker
from fixturekit.core.exceptions import NotReadyError, ProvisionError, ReadinessTimeout
from fixturekit.core.models import BrokerState, FixturePlan, FixtureStatus, ProbeResult


@pytest.fixture
def make_broker(runtime, driver, spec, fast_settings):
    """Factory for brokers wired to the fake runtime and driver."""
    brokers: list[SharedFixtureBroker] = []

    def _make(probe, **kwargs) -> SharedFixtureBroker:
        kwargs.setdefault("runtime", runtime)
        kwargs.setdefault("driver", driver)
        broker = SharedFixtureBroker(spec, probe, settings=fast_settings, **kwargs)
        brokers.append(broker)
        return broker

    yield _make
    for broker in brokers:
        broker.teardown()


def _wait_for(condition, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


# =============================================================================
# setup / acquire
# =============================================================================


class TestSetup:
    """Test suite for SharedFixtureBroker.setup() and acquire()."""

    def test_setup_provisions_once_and_shares_handle(self, make_broker, make_probe, runtime) -> None:
        """Test that repeated setup calls reuse one fixture.

        **Why this test is important:**
          - Starting a database per test case is what the broker exists
            to avoid
          - Every test case must see the same connection

        **What it tests:**
          - The runtime started exactly one sandbox
          - setup() and acquire() return the same handle object
          - Broker and fixture are both READY
        """
        broker = make_broker(make_probe(ProbeResult.NOT_YET_READY, ProbeResult.READY))

        first = broker.setup()
        second = broker.setup()

        assert first is second
        assert broker.acquire() is first
        assert len(runtime.started) == 1
        assert broker.state is BrokerState.READY
        assert broker.fixture.status is FixtureStatus.READY

    def test_concurrent_setup_starts_one_sandbox(self, make_broker, make_probe, runtime) -> None:
        """Test that racing setup callers all observe the same handle.

        **Why this test is important:**
          - Parallel test workers may hit the before-all hook together
          - Two sandboxes for one spec would leak one of them

        **What it tests:**
          - Eight concurrent setup() calls provision exactly once
          - Every caller gets the identical handle
        """
        broker = make_broker(make_probe(ProbeResult.NOT_YET_READY, ProbeResult.NOT_YET_READY, ProbeResult.READY))

        with ThreadPoolExecutor(max_workers=8) as pool:
            handles = list(pool.map(lambda _: broker.setup(), range(8)))

        assert len(runtime.started) == 1
        assert all(h is handles[0] for h in handles)

    def test_acquire_before_setup_raises(self, make_broker, make_probe) -> None:
        broker = make_broker(make_probe())

        with pytest.raises(NotReadyError, match="state: Uninitialized"):
            broker.acquire()

    def test_readiness_failure_tears_down_and_replays_error(self, make_broker, make_probe, runtime) -> None:
        """Test that a failed setup leaves nothing running.

        **Why this test is important:**
          - A dependency that never became ready still holds a container
          - Later callers must see the original cause, not a generic error

        **What it tests:**
          - ReadinessTimeout propagates from setup()
          - The sandbox was stopped and the broker is TORN_DOWN
          - A second setup() raises the very same error
        """
        broker = make_broker(make_probe(ProbeResult.PERMANENTLY_FAILED))

        with pytest.raises(ReadinessTimeout) as exc_info:
            broker.setup()

        assert broker.state is BrokerState.TORN_DOWN
        assert broker.error is exc_info.value
        assert runtime.stopped == ["fake-1"]
        assert runtime.running == {}

        with pytest.raises(ReadinessTimeout) as second:
            broker.setup()
        assert second.value is exc_info.value

    def test_provision_failure_is_infrastructure_error(
        self, make_broker, make_probe, runtime, image_pull_failure
    ) -> None:
        runtime.start_error = image_pull_failure
        broker = make_broker(make_probe())

        with pytest.raises(ProvisionError):
            broker.setup()

        assert broker.state is BrokerState.TORN_DOWN
        assert runtime.started == []

    def test_from_plan(self, runtime, driver, spec, fast_settings, make_probe) -> None:
        probe = make_probe()
        broker = SharedFixtureBroker.from_plan(
            FixturePlan(spec=spec, probe=probe), runtime=runtime, driver=driver, settings=fast_settings
        )

        assert broker.name == "db"
        assert broker.probe is probe


# =============================================================================
# teardown / cancel
# =============================================================================


class TestTeardown:
    """Test suite for SharedFixtureBroker.teardown() and cancel()."""

    def test_teardown_closes_client_and_stops_sandbox(self, make_broker, make_probe, runtime) -> None:
        broker = make_broker(make_probe())
        handle = broker.setup()

        broker.teardown()
        broker.teardown()

        assert handle.client.closed
        assert runtime.stopped == ["fake-1"]
        assert broker.state is BrokerState.TORN_DOWN
        assert broker.fixture.status is FixtureStatus.TERMINATED

    def test_injected_runtime_is_not_closed(self, make_broker, make_probe, runtime) -> None:
        broker = make_broker(make_probe())
        broker.setup()

        broker.teardown()

        assert not runtime.closed

    def test_owned_runtime_is_closed(self, spec, driver, fast_settings, make_probe, runtime) -> None:
        """Test that a runtime the broker created itself is closed on teardown."""
        with patch("fixturekit.core.broker.create_sandbox_runtime", return_value=runtime) as create:
            broker = SharedFixtureBroker(spec, make_probe(), driver=driver, settings=fast_settings)
            broker.setup()
            broker.teardown()

        create.assert_called_once_with(None, fast_settings.provision)
        assert runtime.closed

    def test_teardown_before_setup(self, make_broker, make_probe, runtime) -> None:
        """Test that teardown without setup is a clean no-op and blocks setup."""
        broker = make_broker(make_probe())

        broker.teardown()

        assert broker.state is BrokerState.TORN_DOWN
        assert runtime.started == []
        with pytest.raises(NotReadyError, match="torn down"):
            broker.setup()

    def test_teardown_cancels_pending_readiness_wait(self, make_broker, make_probe, runtime) -> None:
        """Test that teardown during setup cancels the wait and still cleans up.

        **Why this test is important:**
          - An interrupted run (Ctrl-C, CI timeout) tears down while the
            before-all hook is still waiting
          - The sandbox started by that hook must not outlive the run

        **What it tests:**
          - The pending setup fails with a cancelled ReadinessTimeout
          - teardown() returns after setup finished, not after the 30s timeout
          - The sandbox was stopped
        """
        broker = make_broker(make_probe(ProbeResult.NOT_YET_READY, timeout=30))
        errors: list[BaseException] = []

        def run_setup() -> None:
            try:
                broker.setup()
            except ReadinessTimeout as e:
                errors.append(e)

        setup_thread = threading.Thread(target=run_setup)
        setup_thread.start()
        assert _wait_for(lambda: broker.fixture is not None and broker.fixture.instance is not None)

        started = time.monotonic()
        broker.teardown()
        setup_thread.join(5)

        assert time.monotonic() - started < 5
        assert len(errors) == 1
        assert errors[0].cancelled
        assert broker.state is BrokerState.TORN_DOWN
        assert runtime.stopped == ["fake-1"]

    def test_cancel_aborts_setup(self, make_broker, make_probe) -> None:
        broker = make_broker(make_probe(ProbeResult.NOT_YET_READY, timeout=30))
        threading.Timer(0.1, broker.cancel).start()

        with pytest.raises(ReadinessTimeout) as exc_info:
            broker.setup()

        assert exc_info.value.cancelled

    def test_close_error_does_not_prevent_termination(self, make_broker, make_probe, runtime, driver, caplog) -> None:
        broker = make_broker(make_probe())
        broker.setup()
        driver.close_error = RuntimeError("socket already closed")

        broker.teardown()

        assert runtime.stopped == ["fake-1"]
        assert broker.state is BrokerState.TORN_DOWN
        assert "Failed to close connection" in caplog.text

    def test_context_manager(self, make_broker, make_probe, runtime) -> None:
        with make_broker(make_probe()) as broker:
            assert broker.state is BrokerState.READY

        assert broker.state is BrokerState.TORN_DOWN
        assert runtime.running == {}


# =============================================================================
# test_case
# =============================================================================


class TestTestCase:
    """Test suite for SharedFixtureBroker.test_case()."""

    def test_cleanups_run_after_case(self, make_broker, make_probe) -> None:
        """Test that a case's cleanups run when its scope exits, newest first."""
        broker = make_broker(make_probe())
        handle = broker.setup()
        calls: list[str] = []

        with broker.test_case("test_orders") as ctx:
            assert ctx.handle is handle
            ctx.add_cleanup(calls.append, "drop table")
            ctx.add_cleanup(calls.append, "delete rows")

        assert calls == ["delete rows", "drop table"]
        assert not handle.client.closed

    def test_cleanups_run_when_case_raises(self, make_broker, make_probe) -> None:
        broker = make_broker(make_probe())
        broker.setup()
        calls: list[str] = []

        with pytest.raises(AssertionError), broker.test_case("test_fails") as ctx:
            ctx.add_cleanup(calls.append, "cleanup")
            raise AssertionError("boom")

        assert calls == ["cleanup"]

    def test_case_outside_ready_raises(self, make_broker, make_probe) -> None:
        broker = make_broker(make_probe())

        with pytest.raises(NotReadyError), broker.test_case("too_early"):
            pass


class TestBrokerSettings:
    """Test suite for settings the broker passes to its collaborators."""

    def test_probe_attempt_timeout_from_environment(
        self, runtime, driver, spec, make_probe, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that FIXTUREKIT_PROBE_ATTEMPT_TIMEOUT bounds each probe evaluation."""
        monkeypatch.setenv("FIXTUREKIT_PROBE_ATTEMPT_TIMEOUT", "0.3")
        probe = make_probe()

        with SharedFixtureBroker(spec, probe, runtime=runtime, driver=driver) as broker:
            assert broker.gate.config.attempt_timeout == 0.3

        assert probe.attempt_timeouts == [0.3]
