"""Abstract base classes (interfaces) for sandbox runtimes and dependency drivers.

This sub-package contains the ABCs and factory functions that define the
contracts for sandbox runtimes and dependency drivers. Concrete
implementations live in the parent `clients` package.
"""

from .driver import DependencyDriver, available_drivers, create_driver, register_driver
from .sandbox import SandboxRuntime, available_runtimes, create_runtime, register_runtime

__all__ = [
    "DependencyDriver",
    "SandboxRuntime",
    "available_drivers",
    "available_runtimes",
    "create_driver",
    "create_runtime",
    "register_driver",
    "register_runtime",
]
