"""Run driver: execute test cases against a shared fixture.

`FixtureRunner` is the framework-independent harness around a
`SharedFixtureBroker`: before-all is `setup`, each case runs in its own
`TestCaseContext`, after-all is `teardown`. It returns a `RunReport` that
tells an infrastructure failure (no case ran) apart from a test failure.

## Usage

```python
def test_roundtrip(ctx: TestCaseContext) -> None:
    ctx.client.set("k", "v")
    ctx.add_cleanup(ctx.client.delete, "k")
    assert ctx.client.get("k") == "v"

runner = FixtureRunner(SharedFixtureBroker.from_plan(kvstore_plan()), max_workers=4)
report = runner.run({"roundtrip": test_roundtrip})
print(report.summary())
```
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .broker import SharedFixtureBroker
from .context import TestCaseContext
from .exceptions import InfrastructureError
from .models import CaseOutcome, CaseResult, RunReport

logger = logging.getLogger(__name__)

TestCaseFunc = Callable[[TestCaseContext], Any]


class FixtureRunner:
    """Runs named test cases against one broker and reports the outcome.

    Attributes:
        broker: Broker providing the shared fixture.
        max_workers: Cases executed concurrently (1 = sequential). Defaults
            to the broker's `RunConfig.max_workers`.
        deadline: Seconds after which a pending readiness wait is cancelled,
            or None for no deadline. Defaults to the broker's
            `RunConfig.deadline`.
    """

    __test__ = False

    def __init__(
        self,
        broker: SharedFixtureBroker,
        max_workers: int | None = None,
        deadline: float | None = None,
    ) -> None:
        run_config = broker.settings.run
        self.broker = broker
        self.max_workers = max(1, max_workers if max_workers is not None else run_config.max_workers)
        self.deadline = deadline if deadline is not None else run_config.deadline

    def run(self, cases: Mapping[str, TestCaseFunc]) -> RunReport:
        """Set up the fixture, run every case, tear down.

        Teardown always runs, whatever the cases or the setup did.

        Returns:
            RunReport with status PASSED, TEST_FAILURE or
            INFRASTRUCTURE_FAILURE.
        """
        timer: threading.Timer | None = None
        if self.deadline is not None:
            timer = threading.Timer(self.deadline, self._deadline_reached)
            timer.daemon = True
            timer.start()

        try:
            try:
                self.broker.setup()
            except InfrastructureError as e:
                logger.error(
                    "Infrastructure failure, skipping all test cases",
                    extra={"fixture": self.broker.name, "error": str(e), "cases": len(cases)},
                )
                return RunReport.infrastructure_failure(e, list(cases))
            finally:
                if timer is not None:
                    timer.cancel()

            if self.max_workers == 1:
                results = [self._run_case(name, func) for name, func in cases.items()]
            else:
                with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="fixturekit-case") as pool:
                    futures = [pool.submit(self._run_case, name, func) for name, func in cases.items()]
                    results = [f.result() for f in futures]

            report = RunReport.from_results(results)
            logger.info("Run finished", extra={"fixture": self.broker.name, "summary": report.summary()})
            return report
        finally:
            self.broker.teardown()

    def _deadline_reached(self) -> None:
        logger.warning("Run deadline reached", extra={"fixture": self.broker.name, "deadline": self.deadline})
        self.broker.cancel()

    def _run_case(self, name: str, func: TestCaseFunc) -> CaseResult:
        started = time.monotonic()
        outcome = CaseOutcome.PASSED
        message: str | None = None

        with self.broker.test_case(name) as ctx:
            try:
                func(ctx)
            except AssertionError as e:
                outcome, message = CaseOutcome.FAILED, str(e) or "assertion failed"
            except Exception as e:  # noqa: BLE001
                outcome, message = CaseOutcome.ERROR, f"{type(e).__name__}: {e}"

        duration = time.monotonic() - started
        logger.info(
            "Test case finished",
            extra={"test_case": name, "outcome": outcome.value, "duration": round(duration, 3)},
        )
        return CaseResult(name=name, outcome=outcome, duration=duration, message=message)
