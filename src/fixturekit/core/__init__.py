"""Fixture lifecycle core: provisioner, readiness gate and shared-fixture broker.

This package provides the domain code of fixturekit:
- Exception hierarchy separating infrastructure failures from misuse
- Data model for fixture specs, live fixtures, handles and run reports
- The Provisioner, Readiness Gate and Broker themselves

The lifecycle components are imported from their modules
(`fixturekit.core.broker`, `fixturekit.core.readiness`, ...); this package
re-exports the model and error types only.
"""

from .exceptions import (
    DuplicateFixtureError,
    FixtureError,
    InfrastructureError,
    InvalidTransitionError,
    NotReadyError,
    ProvisionError,
    ProvisionErrorKind,
    ReadinessTimeout,
)
from .models import (
    BrokerState,
    ConnectionHandle,
    Credentials,
    FixturePlan,
    FixtureSpec,
    FixtureStatus,
    ProbeResult,
    ProvisionedFixture,
    RunReport,
    RunStatus,
)

__all__ = [
    "BrokerState",
    "ConnectionHandle",
    "Credentials",
    "DuplicateFixtureError",
    "FixtureError",
    "FixturePlan",
    "FixtureSpec",
    "FixtureStatus",
    "InfrastructureError",
    "InvalidTransitionError",
    "NotReadyError",
    "ProbeResult",
    "ProvisionError",
    "ProvisionErrorKind",
    "ProvisionedFixture",
    "ReadinessTimeout",
    "RunReport",
    "RunStatus",
]
