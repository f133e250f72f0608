"""Runtime and driver registry initialization.

This module registers the built-in sandbox runtimes and dependency drivers.
Registration happens at module import time to avoid circular dependencies
between interface definitions and concrete implementations.
"""

from .docker import DockerRuntime
from .http import HttpDriver
from .interfaces.driver import register_driver
from .interfaces.sandbox import register_runtime
from .kv import KVDriver
from .postgres import PostgresDriver
from .process import ProcessRuntime


def _register_runtimes() -> None:
    """Register default sandbox runtimes."""
    register_runtime("docker", DockerRuntime)
    register_runtime("process", ProcessRuntime)


def _register_drivers() -> None:
    """Register default dependency drivers."""
    register_driver("kv", KVDriver)
    register_driver("postgres", PostgresDriver)
    register_driver("http", HttpDriver)


def register_all() -> None:
    """Register all built-in runtimes and drivers.

    External runtimes and drivers can register themselves directly using
    `register_runtime` and `register_driver` from the interface modules.
    """
    _register_runtimes()
    _register_drivers()


# Register all runtimes and drivers on module import
register_all()
