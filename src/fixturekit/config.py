"""Configuration management for fixturekit.

This module provides the configuration system for fixture provisioning,
readiness polling, run orchestration and logging using Pydantic models. All
settings are loaded from environment variables with sensible defaults.

## Configuration Sources

Configuration is read from environment variables at process startup. The
`get_settings()` function uses `@lru_cache` to ensure settings are loaded
once per process (a test run has static env vars, so this is safe).

## Environment Variables

The following environment variables are supported (all optional with
defaults):

**Provisioning**
- `FIXTUREKIT_RUNTIME`: Default sandbox runtime, `docker` or `process`
  (default: `docker`)
- `FIXTUREKIT_START_TIMEOUT`: Startup window in seconds for creating a
  sandbox, including image pulls (default: `120`)
- `FIXTUREKIT_STOP_TIMEOUT`: Seconds to wait for a sandbox to stop
  (default: `10`)
- `FIXTUREKIT_STOP_MAX_ATTEMPTS`: Attempts for stopping a sandbox when the
  runtime API reports transient errors (default: `3`)

**Readiness**
- `FIXTUREKIT_POLL_INTERVAL`: Seconds between probe evaluations
  (default: `0.25`)
- `FIXTUREKIT_READINESS_TIMEOUT`: Default probe timeout in seconds
  (default: `60`)
- `FIXTUREKIT_PROBE_ATTEMPT_TIMEOUT`: Timeout of a single TCP/HTTP probe
  attempt in seconds (default: `1.0`)

**Run**
- `FIXTUREKIT_FIXTURE_SCOPE`: pytest scope of broker fixtures, `session`,
  `package` or `module` (default: `session`)
- `FIXTUREKIT_MAX_WORKERS`: Concurrent test cases in `FixtureRunner`
  (default: `1`)
- `FIXTUREKIT_RUN_DEADLINE`: Run-level deadline in seconds that cancels a
  pending readiness wait (default: unset)

**Logging**
- `FIXTUREKIT_LOG_LEVEL`: Level for the `fixturekit` loggers
  (default: `INFO`)
- `FIXTUREKIT_LOG_JSON`: Emit JSON log lines (default: `false`)

## Usage

```python
from fixturekit.config import get_settings

settings = get_settings()
gate = ReadinessGate(driver, config=settings.readiness)
```
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import SettingsConfigDict


class ProvisionConfig(BaseModel):
    """Configuration for sandbox provisioning.

    Attributes:
        runtime: Default sandbox runtime for specs that don't name one.
        start_timeout: Bounded startup window in seconds.
        stop_timeout: Seconds to wait for a sandbox to stop.
        stop_max_attempts: Attempts for stopping a sandbox on transient
            runtime API errors.
    """

    runtime: Literal["docker", "process"] = "docker"
    start_timeout: float = 120.0
    stop_timeout: int = 10
    stop_max_attempts: int = 3

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls) -> "ProvisionConfig":
        """Create ProvisionConfig from environment variables.

        Returns:
            Configured ProvisionConfig instance.

        Raises:
            ValueError: If FIXTUREKIT_RUNTIME names an unknown runtime.
        """
        runtime = os.getenv("FIXTUREKIT_RUNTIME", "docker").lower()
        valid_runtimes = ("docker", "process")
        if runtime not in valid_runtimes:
            msg = f"Invalid FIXTUREKIT_RUNTIME: {runtime}. Must be one of: {valid_runtimes}"
            raise ValueError(msg)

        return cls(
            runtime=runtime,
            start_timeout=float(os.getenv("FIXTUREKIT_START_TIMEOUT", "120")),
            stop_timeout=int(os.getenv("FIXTUREKIT_STOP_TIMEOUT", "10")),
            stop_max_attempts=int(os.getenv("FIXTUREKIT_STOP_MAX_ATTEMPTS", "3")),
        )


class ReadinessConfig(BaseModel):
    """Configuration for readiness polling.

    Attributes:
        poll_interval: Seconds between probe evaluations. Kept short so a
            ready dependency is noticed quickly without busy-spinning.
        timeout: Default probe timeout in seconds.
        attempt_timeout: Timeout of a single TCP connect or HTTP request
            made by a probe.
    """

    poll_interval: float = 0.25
    timeout: float = 60.0
    attempt_timeout: float = 1.0

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls) -> "ReadinessConfig":
        """Create ReadinessConfig from environment variables.

        Returns:
            Configured ReadinessConfig instance.
        """
        return cls(
            poll_interval=float(os.getenv("FIXTUREKIT_POLL_INTERVAL", "0.25")),
            timeout=float(os.getenv("FIXTUREKIT_READINESS_TIMEOUT", "60")),
            attempt_timeout=float(os.getenv("FIXTUREKIT_PROBE_ATTEMPT_TIMEOUT", "1.0")),
        )


class RunConfig(BaseModel):
    """Configuration for run orchestration.

    Attributes:
        fixture_scope: pytest scope used for broker fixtures. `session`
            shares one fixture across test files; `module` gives every test
            file its own fixture lifecycle.
        max_workers: Number of test cases `FixtureRunner` executes
            concurrently. 1 runs cases sequentially.
        deadline: Run-level deadline in seconds, or None for no deadline.
    """

    fixture_scope: Literal["session", "package", "module"] = "session"
    max_workers: int = 1
    deadline: float | None = None

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls) -> "RunConfig":
        """Create RunConfig from environment variables.

        Returns:
            Configured RunConfig instance.

        Raises:
            ValueError: If FIXTUREKIT_FIXTURE_SCOPE is not a supported scope.
        """
        scope = os.getenv("FIXTUREKIT_FIXTURE_SCOPE", "session").lower()
        valid_scopes = ("session", "package", "module")
        if scope not in valid_scopes:
            msg = f"Invalid FIXTUREKIT_FIXTURE_SCOPE: {scope}. Must be one of: {valid_scopes}"
            raise ValueError(msg)

        deadline_str = os.getenv("FIXTUREKIT_RUN_DEADLINE")
        deadline: float | None = None
        if deadline_str:
            deadline = float(deadline_str)

        return cls(
            fixture_scope=scope,
            max_workers=int(os.getenv("FIXTUREKIT_MAX_WORKERS", "1")),
            deadline=deadline,
        )


class LoggingConfig(BaseModel):
    """Configuration for logging.

    Attributes:
        level: Level for the `fixturekit` logger hierarchy.
        json_format: Emit JSON lines via `CustomJSONFormatter`.
    """

    level: str = "INFO"
    json_format: bool = False

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Create LoggingConfig from environment variables.

        Returns:
            Configured LoggingConfig instance.
        """
        return cls(
            level=os.getenv("FIXTUREKIT_LOG_LEVEL", "INFO").upper(),
            json_format=os.getenv("FIXTUREKIT_LOG_JSON", "false").lower() == "true",
        )


class Settings(BaseModel):
    """Immutable runtime configuration for fixturekit.

    All fields are loaded from environment variables via `get_settings()`.
    The class is frozen to prevent accidental mutation after initialization.

    Attributes:
        provision: Sandbox provisioning configuration.
        readiness: Readiness polling configuration.
        run: Run orchestration configuration.
        logging: Logging configuration.
    """

    provision: ProvisionConfig
    readiness: ReadinessConfig
    run: RunConfig
    logging: LoggingConfig

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings from environment variables.

        Returns:
            Configured Settings instance.
        """
        return cls(
            provision=ProvisionConfig.from_env(),
            readiness=ReadinessConfig.from_env(),
            run=RunConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Load and return fixturekit settings (cached per process).

    Returns:
        A frozen `Settings` instance with all configuration values.

    Note:
        Settings are loaded once per process. Tests that patch environment
        variables should construct `Settings.from_env()` directly or call
        `get_settings.cache_clear()`.
    """
    return Settings.from_env()
