"""Dependency driver interface and factory.

A driver knows how to talk to one kind of dependency: how to build its
connection string from a provisioned fixture, how to open the shared client,
how to check that it answers, and which init scripts it accepts. Concrete
drivers live in the parent `clients` package (`KVDriver`, `PostgresDriver`,
`HttpDriver`).
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from fixturekit.core.models import ProvisionedFixture


class DependencyDriver(ABC):
    """Abstract base class for dependency drivers.

    Attributes:
        name: Driver identifier used in `FixtureSpec.driver`.
    """

    name: str = "abstract"

    @abstractmethod
    def connection_string(self, fixture: ProvisionedFixture) -> str:
        """Build the connection string for a started fixture.

        Args:
            fixture: Fixture with a running instance (host ports assigned).

        Returns:
            Driver-specific connection string.
        """

    @abstractmethod
    def open(self, connection_string: str) -> Any:
        """Open the client shared by all test cases.

        The returned client must be safe for concurrent use.

        Raises:
            Exception: Any transport error; the Readiness Gate reports it as a
                readiness failure.
        """

    @abstractmethod
    def ping(self, client: Any) -> bool:
        """Return True if the dependency answers a trivial request."""

    @abstractmethod
    def close(self, client: Any) -> None:
        """Close a client opened by `open`."""

    def check_init_script(self, path: Path) -> None:
        """Validate an init script before the sandbox starts.

        The default only checks that the file is readable. Drivers override
        this to check the script format.

        Raises:
            ValueError: If the script cannot be applied by this dependency.
            OSError: If the file cannot be read.
        """
        path.read_bytes()


# Driver registry: maps driver name to driver class
_DRIVER_REGISTRY: dict[str, type[DependencyDriver]] = {}


def register_driver(name: str, driver_class: type[DependencyDriver]) -> None:
    """Register a dependency driver class.

    Args:
        name: Driver identifier (e.g., "kv", "postgres", "http").
        driver_class: Driver class that inherits from DependencyDriver.
    """
    _DRIVER_REGISTRY[name] = driver_class


def create_driver(name: str, **kwargs: Any) -> DependencyDriver:
    """Create a dependency driver by name.

    Args:
        name: Registered driver identifier.
        **kwargs: Keyword arguments passed to the driver constructor.

    Returns:
        DependencyDriver instance.

    Raises:
        ValueError: If the driver is not registered.
    """
    driver_class = _DRIVER_REGISTRY.get(name)
    if driver_class is None:
        msg = f"Driver '{name}' is not registered. Available drivers: {list(_DRIVER_REGISTRY.keys())}"
        raise ValueError(msg)
    return driver_class(**kwargs)


def available_drivers() -> list[str]:
    """Return the names of all registered drivers."""
    return sorted(_DRIVER_REGISTRY)
