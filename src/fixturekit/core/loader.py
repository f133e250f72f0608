"""YAML fixture definitions.

A fixture definition describes a `FixturePlan` in a YAML file so fixtures can
be declared next to the tests that use them and started from the CLI:

```yaml
name: sessions
image: "{python}"
runtime: process
driver: kv
ports: [6380]
command: ["-m", "fixturekit.kvstore.server"]
init_scripts: [seed.kv]
readiness:
  kind: tcp
  timeout: 10
```

`readiness.kind` selects the probe: `tcp`, `log`, `http` or `ping`. Relative
init-script paths resolve against the directory of the YAML file.
"""

from pathlib import Path
from typing import Annotated, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from fixturekit.clients import create_dependency_driver
from fixturekit.clients.interfaces.driver import available_drivers

from .models import Credentials, FixturePlan, FixtureSpec
from .readiness import HttpHealthProbe, LogPatternProbe, PingProbe, ReadinessProbe, TcpPortProbe


class DefinitionError(ValueError):
    """Raised when a fixture definition file is missing or invalid."""


class _ReadinessBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout: float | None = None


class TcpReadiness(_ReadinessBase):
    kind: Literal["tcp"]
    attempt_timeout: float | None = None


class LogReadiness(_ReadinessBase):
    kind: Literal["log"]
    pattern: str
    occurrences: int = Field(default=1, ge=1)


class HttpReadiness(_ReadinessBase):
    kind: Literal["http"]
    path: str = "/"
    statuses: list[int] = Field(default_factory=lambda: [200])
    attempt_timeout: float | None = None


class PingReadiness(_ReadinessBase):
    kind: Literal["ping"]


ReadinessDefinition = Annotated[
    TcpReadiness | LogReadiness | HttpReadiness | PingReadiness,
    Field(discriminator="kind"),
]


class CredentialsDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str
    password: str
    database: str


class FixtureDefinition(BaseModel):
    """Validated contents of a fixture definition file."""

    model_config = ConfigDict(extra="forbid")

    name: str
    image: str
    runtime: Literal["docker", "process"] | None = None
    driver: str = "kv"
    ports: list[int] = Field(min_length=1)
    env: dict[str, str] = Field(default_factory=dict)
    command: list[str] = Field(default_factory=list)
    credentials: CredentialsDefinition | None = None
    init_scripts: list[Path] = Field(default_factory=list)
    init_script_target: str | None = None
    start_timeout: float | None = None
    readiness: ReadinessDefinition = Field(default_factory=lambda: TcpReadiness(kind="tcp"))

    @field_validator("driver")
    @classmethod
    def known_driver(cls, value: str) -> str:
        drivers = available_drivers()
        if value not in drivers:
            msg = f"unknown driver '{value}', expected one of: {', '.join(drivers)}"
            raise ValueError(msg)
        return value

    def to_plan(self, base_dir: Path | None = None) -> FixturePlan:
        """Build the `FixturePlan` this definition describes.

        Args:
            base_dir: Directory relative init-script paths resolve against.
        """
        base_dir = base_dir or Path.cwd()
        spec = FixtureSpec(
            name=self.name,
            image=self.image,
            runtime=self.runtime,
            driver=self.driver,
            ports=self.ports,
            env=self.env,
            command=self.command,
            credentials=Credentials(**self.credentials.model_dump()) if self.credentials else None,
            init_scripts=[p if p.is_absolute() else base_dir / p for p in self.init_scripts],
            init_script_target=self.init_script_target,
            start_timeout=self.start_timeout,
        )
        return FixturePlan(spec=spec, probe=self._probe())

    def _probe(self) -> ReadinessProbe:
        readiness = self.readiness
        if isinstance(readiness, TcpReadiness):
            return TcpPortProbe(timeout=readiness.timeout, attempt_timeout=readiness.attempt_timeout)
        if isinstance(readiness, LogReadiness):
            return LogPatternProbe(
                pattern=readiness.pattern,
                occurrences=readiness.occurrences,
                timeout=readiness.timeout,
            )
        if isinstance(readiness, HttpReadiness):
            return HttpHealthProbe(
                path=readiness.path,
                statuses=tuple(readiness.statuses),
                timeout=readiness.timeout,
                attempt_timeout=readiness.attempt_timeout,
            )
        return PingProbe(driver=create_dependency_driver(self.driver), timeout=readiness.timeout)


def load_definition(path: Path | str) -> FixturePlan:
    """Load a YAML fixture definition into a `FixturePlan`.

    Raises:
        DefinitionError: If the file cannot be read or does not validate.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        msg = f"Cannot read fixture definition {path}: {e}"
        raise DefinitionError(msg) from e
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in {path}: {e}"
        raise DefinitionError(msg) from e

    if not isinstance(raw, dict):
        msg = f"Fixture definition {path} must be a mapping"
        raise DefinitionError(msg)

    try:
        definition = FixtureDefinition.model_validate(raw)
    except ValidationError as e:
        msg = f"Invalid fixture definition {path}: {e}"
        raise DefinitionError(msg) from e

    return definition.to_plan(base_dir=path.parent)
