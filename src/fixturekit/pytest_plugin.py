"""pytest integration.

Maps the fixture lifecycle onto pytest fixtures:

- before-all: `broker_fixture` builds a broker fixture whose setup provisions
  the dependency and waits for readiness; teardown always runs at the end of
  its scope.
- per test: `case_fixture` yields a `TestCaseContext` whose cleanups run
  right after the test.

An infrastructure failure (the dependency could not be provisioned or never
became ready) stops the whole session with exit code 75 instead of failing
every test that uses the fixture.

## Usage

```python
# conftest.py
from fixturekit.presets import kvstore_plan
from fixturekit.pytest_plugin import broker_fixture, case_fixture

kv_broker = broker_fixture(kvstore_plan(name="kv"))
kv = case_fixture("kv_broker")


# test_sessions.py
def test_set(kv):
    kv.client.set("session:1", "alice")
    kv.add_cleanup(kv.client.delete, "session:1")
    assert kv.client.get("session:1") == "alice"
```

The scope of broker fixtures defaults to `FIXTUREKIT_FIXTURE_SCOPE`
(`session`), so one dependency is shared by every test file.
When `FIXTUREKIT_RUN_DEADLINE` is set, a setup still waiting for readiness
after that many seconds is cancelled and reported as an infrastructure
failure.
"""

import logging
import threading
from collections.abc import Iterator
from typing import Any

import pytest

from fixturekit.config import Settings, get_settings
from fixturekit.core.broker import SharedFixtureBroker
from fixturekit.core.context import TestCaseContext
from fixturekit.core.exceptions import InfrastructureError
from fixturekit.core.models import FixturePlan

logger = logging.getLogger(__name__)

INFRASTRUCTURE_FAILURE_EXIT_CODE = 75


def broker_fixture(
    plan: FixturePlan,
    *,
    name: str | None = None,
    scope: str | None = None,
    settings: Settings | None = None,
    **broker_kwargs: Any,
) -> Any:
    """Build a pytest fixture that provides a ready `SharedFixtureBroker`.

    Args:
        plan: Fixture spec and readiness probe.
        name: Fixture name. Defaults to the attribute name it is assigned to.
        scope: pytest scope. Defaults to `RunConfig.fixture_scope`.
        settings: Settings passed to the broker.
        **broker_kwargs: Extra broker arguments (runtime, driver, ...).

    Returns:
        A pytest fixture function.
    """
    settings = settings or get_settings()
    fixture_scope = scope or settings.run.fixture_scope

    @pytest.fixture(scope=fixture_scope, name=name)  # type: ignore[call-overload]
    def _broker() -> Iterator[SharedFixtureBroker]:
        broker = SharedFixtureBroker.from_plan(plan, settings=settings, **broker_kwargs)
        timer = _arm_deadline(broker, settings.run.deadline)
        try:
            broker.setup()
        except InfrastructureError as e:
            broker.teardown()
            pytest.exit(
                f"Infrastructure failure: fixture '{plan.spec.name}' unavailable: {e}",
                returncode=INFRASTRUCTURE_FAILURE_EXIT_CODE,
            )
        finally:
            if timer is not None:
                timer.cancel()
        try:
            yield broker
        finally:
            broker.teardown()

    return _broker


def _arm_deadline(broker: SharedFixtureBroker, deadline: float | None) -> threading.Timer | None:
    if deadline is None:
        return None

    def _cancel() -> None:
        logger.warning("Run deadline reached", extra={"fixture": broker.name, "deadline": deadline})
        broker.cancel()

    timer = threading.Timer(deadline, _cancel)
    timer.daemon = True
    timer.start()
    return timer


def case_fixture(broker_name: str, *, name: str | None = None) -> Any:
    """Build a function-scoped fixture yielding a `TestCaseContext`.

    Args:
        broker_name: Name of the broker fixture to draw the handle from.
        name: Fixture name. Defaults to the attribute name it is assigned to.
    """

    @pytest.fixture(name=name)  # type: ignore[call-overload]
    def _case(request: pytest.FixtureRequest) -> Iterator[TestCaseContext]:
        broker: SharedFixtureBroker = request.getfixturevalue(broker_name)
        with broker.test_case(request.node.nodeid) as context:
            yield context

    return _case


def pytest_report_header(config: pytest.Config) -> str:
    settings = get_settings()
    return (
        f"fixturekit: runtime={settings.provision.runtime}, "
        f"scope={settings.run.fixture_scope}, readiness_timeout={settings.readiness.timeout}s"
    )
