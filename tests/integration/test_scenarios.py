"""End-to-end lifecycle tests with the key-value store as a child process.

# Test Coverage

The tests cover:
  - Seeded fixture: setup, read, teardown, nothing left running
  - Broken init script: infrastructure failure, no case runs
  - Shared state between test cases of one run
  - Readiness timeout shorter than the dependency's startup time
  - Dependency crashing during startup
  - Many concurrent test cases on one fixture

# Running Tests

Run with: pytest tests/integration/test_scenarios.py -m integration
"""

import socket
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import attrs
import pytest

from fixturekit.core.exceptions import ProvisionError, ProvisionErrorKind, ReadinessTimeout
from fixturekit.core.models import BrokerState, CaseOutcome, FixturePlan, ProbeResult, RunStatus
from fixturekit.core.readiness import TcpPortProbe
from fixturekit.core.runner import FixtureRunner
from fixturekit.presets import kvstore_plan

pytestmark = pytest.mark.integration


@pytest.fixture
def seed_script(tmp_path: Path) -> Path:
    script = tmp_path / "seed.kv"
    script.write_text("# fixtures\nSET user:1 alice liddell\n")
    return script


def _port_is_closed(host: str, port: int) -> bool:
    try:
        with socket.create_connection((host, port), timeout=0.5):
            return False
    except OSError:
        return True


def test_seeded_fixture_lifecycle(make_broker, process_runtime, seed_script: Path) -> None:
    """Test the full lifecycle of a seeded key-value store.

    **Why this test is important:**
      - This is the everyday path: start, read seeded data, clean up

    **What it tests:**
      - setup() yields a client that reads the seeded record unmodified
      - After teardown the process is gone and its port is closed
    """
    broker = make_broker(kvstore_plan(name="sessions", init_scripts=[seed_script]))

    handle = broker.setup()
    instance_id = broker.fixture.instance_id
    endpoint = handle.endpoint
    with broker.test_case("reads_seed") as ctx:
        assert ctx.client.get("user:1") == "alice liddell"

    broker.teardown()

    assert broker.state is BrokerState.TORN_DOWN
    assert not process_runtime.exists(instance_id)
    assert _port_is_closed(endpoint.host, endpoint.port)


def test_broken_init_script_runs_no_case(make_broker, process_runtime, tmp_path: Path) -> None:
    """Test that a malformed seed script is an infrastructure failure.

    **Why this test is important:**
      - Bad fixture data must not surface as dozens of failing tests

    **What it tests:**
      - setup() raises ProvisionError(INIT_SCRIPT_FAILED)
      - A runner over the same plan executes zero cases and reports
        INFRASTRUCTURE_FAILURE; teardown does not raise
    """
    script = tmp_path / "broken.kv"
    script.write_text("SET ok 1\nINCR counter\n")
    plan = kvstore_plan(name="broken", init_scripts=[script])

    with pytest.raises(ProvisionError) as exc_info:
        make_broker(plan).setup()
    assert exc_info.value.kind is ProvisionErrorKind.INIT_SCRIPT_FAILED

    executed: list[str] = []
    report = FixtureRunner(make_broker(plan)).run({"never_runs": lambda ctx: executed.append("ran")})

    assert executed == []
    assert report.status is RunStatus.INFRASTRUCTURE_FAILURE
    assert report.cases[0].outcome is CaseOutcome.SKIPPED
    assert "InitScriptFailed" in report.setup_error


def test_cases_share_fixture_state(make_broker) -> None:
    """Test that one test case's writes are visible to the next.

    **Why this test is important:**
      - The fixture is shared, not isolated; cleanups are how tests stay
        independent

    **What it tests:**
      - Two cases acquire handles to the same endpoint
      - A value written by the first is read by the second
    """
    broker = make_broker(kvstore_plan(name="shared"))
    broker.setup()

    first = broker.acquire()
    first.client.set("order:7", "pending")
    second = broker.acquire()

    assert second.endpoint == first.endpoint
    assert second.client.get("order:7") == "pending"


def test_readiness_timeout_before_slow_dependency_is_ready(make_broker, process_runtime) -> None:
    """Test that the probe timeout, not the dependency, bounds setup time.

    **Why this test is important:**
      - A dependency that takes longer than allowed must fail at the
        configured timeout instead of silently stretching the run

    **What it tests:**
      - 2s probe timeout against a server that listens after 5s
      - ReadinessTimeout with elapsed within one poll interval (plus
        scheduling slack) of 2s
      - The slow process was stopped
    """
    plan = kvstore_plan(name="slow", startup_delay=5.0, timeout=2.0)
    broker = make_broker(plan)
    started = time.monotonic()

    with pytest.raises(ReadinessTimeout) as exc_info:
        broker.setup()

    assert 2.0 <= exc_info.value.elapsed < 2.1
    assert time.monotonic() - started < 4.5
    assert exc_info.value.last_observed_state is ProbeResult.NOT_YET_READY
    assert not process_runtime.exists(broker.fixture.instance_id)


def test_crashing_dependency_fails_fast(make_broker) -> None:
    """Test that a dependency that dies on boot does not wait out the timeout."""
    plan = kvstore_plan(name="crash", timeout=30.0)
    crashing = FixturePlan(
        spec=attrs.evolve(plan.spec, command=("-c", "import sys; sys.exit('config error')")),
        probe=TcpPortProbe(name="crash-tcp", timeout=30.0),
    )
    started = time.monotonic()

    with pytest.raises(ReadinessTimeout) as exc_info:
        make_broker(crashing).setup()

    assert time.monotonic() - started < 10
    assert exc_info.value.last_observed_state is ProbeResult.PERMANENTLY_FAILED


def test_concurrent_cases_clean_up_after_themselves(make_broker) -> None:
    """Test parallel cases with per-case cleanup against one process.

    **Why this test is important:**
      - Shared fixtures stay usable only if every case removes what it wrote

    **What it tests:**
      - 20 cases on 4 threads each write, read and register a cleanup
      - Once all cases finished, the key space holds only what was there
        before
    """
    broker = make_broker(kvstore_plan(name="carts"))
    broker.setup()
    before = broker.acquire().client.keys()

    def run_case(i: int) -> None:
        with broker.test_case(f"cart_{i}") as ctx:
            key = f"cart:{i}"
            ctx.client.set(key, f"{i} items")
            ctx.add_cleanup(ctx.client.delete, key)
            assert ctx.client.get(key) == f"{i} items"

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(run_case, range(20)))

    assert broker.acquire().client.keys() == before


def test_runner_reports_mixed_outcomes(make_broker, process_runtime) -> None:
    def writes(ctx) -> None:
        ctx.client.set("greeting", "hello")
        ctx.add_cleanup(ctx.client.delete, "greeting")

    def expects_missing_key(ctx) -> None:
        assert ctx.client.get("greeting") == "hello"

    report = FixtureRunner(make_broker(kvstore_plan(name="mixed"))).run(
        {"writes": writes, "expects_missing_key": expects_missing_key}
    )

    assert report.status is RunStatus.TEST_FAILURE
    assert [c.outcome for c in report.cases] == [CaseOutcome.PASSED, CaseOutcome.FAILED]
    assert process_runtime._children == {}
