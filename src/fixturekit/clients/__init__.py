"""Sandbox runtimes and dependency drivers.

This module provides factory functions for creating configured runtimes and
drivers from centralized configuration.
"""

from typing import Any

from fixturekit.config import ProvisionConfig, get_settings

# Import registries to trigger runtime and driver registration
from . import registries as _  # noqa: F401
from .interfaces.driver import DependencyDriver, create_driver
from .interfaces.sandbox import SandboxRuntime, create_runtime


def create_sandbox_runtime(name: str | None = None, config: ProvisionConfig | None = None) -> SandboxRuntime:
    """Create a configured sandbox runtime.

    Args:
        name: Runtime name. If None, uses `ProvisionConfig.runtime`.
        config: Optional ProvisionConfig. If None, uses settings from
            get_settings().

    Returns:
        SandboxRuntime instance (DockerRuntime, ProcessRuntime, etc.).

    Example:
        ```python
        from fixturekit.clients import create_sandbox_runtime

        runtime = create_sandbox_runtime("process")
        ```
    """
    if config is None:
        config = get_settings().provision
    return create_runtime(name or config.runtime, config)


def create_dependency_driver(name: str, **kwargs: Any) -> DependencyDriver:
    """Create a dependency driver by name.

    Args:
        name: Driver name (`kv`, `postgres`, `http`).
        **kwargs: Driver-specific options (e.g. `pool_size`).

    Returns:
        DependencyDriver instance.
    """
    return create_driver(name, **kwargs)


__all__ = [
    "DependencyDriver",
    "SandboxRuntime",
    "create_dependency_driver",
    "create_sandbox_runtime",
]
