"""Exception hierarchy for fixture lifecycle management.

This module defines the error taxonomy that separates infrastructure failures
(the fixture could not be provisioned or never became serviceable) from
programming errors in how a test framework drives the lifecycle. Ordinary
test assertion failures are not part of this hierarchy.

## Exception Hierarchy

All exceptions inherit from `FixtureError`:

- `InfrastructureError`: Fatal to the run; no test case executes
  - `ProvisionError`: The sandbox could not be created (see `ProvisionErrorKind`)
  - `ReadinessTimeout`: The sandbox started but the dependency never became
    serviceable (timed out, cancelled, or failed permanently)
- `NotReadyError`: A handle was requested before the fixture was Ready
- `InvalidTransitionError`: A lifecycle status tried to move backwards
- `DuplicateFixtureError`: A second live fixture was requested for one spec

## Usage

```python
from fixturekit.core.exceptions import InfrastructureError

try:
    handle = broker.setup()
except InfrastructureError as e:
    report_infrastructure_failure(e)
```
"""

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fixturekit.core.models import ProbeResult


class FixtureError(Exception):
    """Base exception class for all fixture lifecycle errors."""


class InfrastructureError(FixtureError):
    """Exception raised when the fixture itself could not be made available.

    Infrastructure errors abort the whole run: remaining test cases are
    reported as skipped, never as failed.
    """


class ProvisionErrorKind(Enum):
    """Reason a sandbox could not be created."""

    IMAGE_PULL_FAILED = "ImagePullFailed"
    START_TIMEOUT = "StartTimeout"
    INIT_SCRIPT_FAILED = "InitScriptFailed"
    SANDBOX_UNAVAILABLE = "SandboxUnavailable"


class ProvisionError(InfrastructureError):
    """Exception raised when a sandboxed dependency cannot be created.

    Attributes:
        kind: Why provisioning failed.
        fixture_name: Name of the FixtureSpec being provisioned, if known.
    """

    def __init__(self, kind: ProvisionErrorKind, message: str, fixture_name: str | None = None) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.fixture_name = fixture_name


class ReadinessTimeout(InfrastructureError):
    """Exception raised when a provisioned dependency never became ready.

    The sandbox did start, which is what distinguishes this error from
    `ProvisionError`.

    Attributes:
        probe_name: Name of the readiness probe that was polled.
        elapsed: Seconds spent waiting.
        last_observed_state: Last probe result, or None if the probe was never
            evaluated.
        cancelled: True if the wait was cut short by external cancellation.
        reason: Short human-readable cause.
    """

    def __init__(
        self,
        probe_name: str,
        elapsed: float,
        last_observed_state: "ProbeResult | None",
        *,
        cancelled: bool = False,
        reason: str = "timed out",
    ) -> None:
        state = last_observed_state.value if last_observed_state is not None else "never evaluated"
        super().__init__(
            f"Readiness probe '{probe_name}' {reason} after {elapsed:.2f}s (last observed state: {state})"
        )
        self.probe_name = probe_name
        self.elapsed = elapsed
        self.last_observed_state = last_observed_state
        self.cancelled = cancelled
        self.reason = reason


class NotReadyError(FixtureError):
    """Exception raised when a handle is requested before the fixture is Ready.

    This indicates a framework-integration bug (a test body running before the
    before-all hook finished) and is never retried.
    """


class InvalidTransitionError(FixtureError):
    """Exception raised when a lifecycle status would move backwards."""


class DuplicateFixtureError(FixtureError):
    """Exception raised when a spec is provisioned while a live fixture exists."""
