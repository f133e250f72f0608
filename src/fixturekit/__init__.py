"""fixturekit: lifecycle management for disposable test dependencies.

Provision a dependency in a sandbox, wait until it is actually usable, share
one connection across every test case and always tear it down.

```python
from fixturekit import SharedFixtureBroker
from fixturekit.presets import kvstore_plan

with SharedFixtureBroker.from_plan(kvstore_plan()) as broker:
    with broker.test_case("smoke") as ctx:
        assert ctx.client.ping()
```
"""

from .core.broker import SharedFixtureBroker
from .core.context import TestCaseContext
from .core.provisioner import FixtureProvisioner
from .core.readiness import HttpHealthProbe, LogPatternProbe, PingProbe, ReadinessGate, TcpPortProbe
from .core.runner import FixtureRunner

__version__ = "0.1.0"

__all__ = [
    "FixtureProvisioner",
    "FixtureRunner",
    "HttpHealthProbe",
    "LogPatternProbe",
    "PingProbe",
    "ReadinessGate",
    "SharedFixtureBroker",
    "TcpPortProbe",
    "TestCaseContext",
    "__version__",
]
