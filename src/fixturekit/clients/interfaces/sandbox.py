"""Sandbox runtime interface and factory.

This module defines the `SandboxRuntime` ABC and the registry used to create
runtimes by name. A runtime is the isolation mechanism a dependency runs in:
a container (`DockerRuntime`) or a local child process (`ProcessRuntime`).
Concrete implementations live in the parent `clients` package.
"""

from abc import ABC, abstractmethod

from fixturekit.config import ProvisionConfig
from fixturekit.core.models import FixtureSpec, SandboxInstance


class SandboxRuntime(ABC):
    """Abstract base class for sandbox runtimes.

    Runtimes are driven by `FixtureProvisioner`; they never track fixture
    status themselves. Every instance a runtime starts gets dynamically
    assigned host ports so parallel runs never collide.

    Example:
        ```python
        class MyRuntime(SandboxRuntime):
            def start(self, spec: FixtureSpec) -> SandboxInstance:
                ...

            def logs(self, instance_id: str) -> str:
                ...

            def stop(self, instance_id: str) -> None:
                ...

            def is_running(self, instance_id: str) -> bool:
                ...

            def exists(self, instance_id: str) -> bool:
                ...
        ```
    """

    name: str = "abstract"

    @abstractmethod
    def start(self, spec: FixtureSpec) -> SandboxInstance:
        """Create and start a sandbox for a spec.

        Blocks until the runtime reports the sandbox as started (not ready).

        Args:
            spec: Description of the dependency to start.

        Returns:
            The started instance with its host port mapping.

        Raises:
            ProvisionError: If the image cannot be obtained or the runtime is
                unreachable.
        """

    @abstractmethod
    def logs(self, instance_id: str) -> str:
        """Return everything the sandbox has written to stdout and stderr."""

    @abstractmethod
    def stop(self, instance_id: str) -> None:
        """Stop and remove a sandbox.

        Stopping an unknown or already removed instance is a no-op.
        """

    @abstractmethod
    def is_running(self, instance_id: str) -> bool:
        """Whether the sandbox is currently running."""

    @abstractmethod
    def exists(self, instance_id: str) -> bool:
        """Whether the runtime still knows about the sandbox.

        Used to verify that nothing is leaked after termination.
        """

    def close(self) -> None:  # noqa: B027
        """Release runtime resources (API clients, temp files).

        Note:
            This is not an abstract method because some runtimes hold no
            resources. Subclasses should override if they do.
        """
        # Default no-op implementation


# Runtime registry: maps runtime name to runtime class
_RUNTIME_REGISTRY: dict[str, type[SandboxRuntime]] = {}


def register_runtime(name: str, runtime_class: type[SandboxRuntime]) -> None:
    """Register a sandbox runtime class.

    Args:
        name: Runtime identifier (e.g., "docker", "process").
        runtime_class: Runtime class that inherits from SandboxRuntime. It is
            constructed with a single `ProvisionConfig` argument.
    """
    _RUNTIME_REGISTRY[name] = runtime_class


def create_runtime(name: str, config: ProvisionConfig | None = None) -> SandboxRuntime:
    """Create a sandbox runtime by name.

    Args:
        name: Registered runtime identifier.
        config: Provisioning configuration. If None, uses defaults.

    Returns:
        SandboxRuntime instance.

    Raises:
        ValueError: If the runtime is not registered.
    """
    runtime_class = _RUNTIME_REGISTRY.get(name)
    if runtime_class is None:
        msg = f"Runtime '{name}' is not registered. Available runtimes: {list(_RUNTIME_REGISTRY.keys())}"
        raise ValueError(msg)
    return runtime_class(config or ProvisionConfig())  # type: ignore[call-arg]


def available_runtimes() -> list[str]:
    """Return the names of all registered runtimes."""
    return sorted(_RUNTIME_REGISTRY)
