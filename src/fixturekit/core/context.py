"""Per-test-case context with reverse-order cleanups.

Every test case gets its own `TestCaseContext`: the shared connection handle
plus a stack of cleanup actions for the data the test created. Cleanups run
last-registered-first right after the test body, so a test that created a
table and then rows in it drops the rows before the table.
"""

import logging
from collections.abc import Callable
from typing import Any

from .models import ConnectionHandle

logger = logging.getLogger(__name__)


class TestCaseContext:
    """Scope of a single test case.

    Attributes:
        name: Test case name.
        handle: Shared connection handle (not owned by the test case).
    """

    __test__ = False  # not a pytest test class

    def __init__(self, name: str, handle: ConnectionHandle) -> None:
        self.name = name
        self.handle = handle
        self._cleanups: list[tuple[Callable[..., Any], tuple[Any, ...], dict[str, Any]]] = []

    @property
    def client(self) -> Any:
        """Shortcut for `handle.client`."""
        return self.handle.client

    def add_cleanup(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Register an action to undo something this test case created."""
        self._cleanups.append((func, args, kwargs))

    def run_cleanups(self) -> list[BaseException]:
        """Run registered cleanups in reverse order.

        A failing cleanup is logged at WARNING and the remaining cleanups still
        run. The test outcome is not affected.

        Returns:
            The exceptions raised by failing cleanups.
        """
        errors: list[BaseException] = []
        while self._cleanups:
            func, args, kwargs = self._cleanups.pop()
            try:
                func(*args, **kwargs)
            except Exception as e:  # noqa: BLE001
                errors.append(e)
                logger.warning(
                    "Cleanup failed",
                    extra={"test_case": self.name, "cleanup": getattr(func, "__name__", repr(func)), "error": str(e)},
                )
        return errors

    def __enter__(self) -> "TestCaseContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.run_cleanups()
