"""Execute-once gate for lifecycle transitions.

`ExecuteOnce` runs a callable exactly one time no matter how many threads call
it. Callers that arrive while the first call is running block until it
finishes and then observe the same outcome: the cached return value, or the
same exception re-raised.

The gate is re-entrant for the thread currently running the action, which
lets a failing setup call teardown (guarded by a second gate) from inside its
own error path without deadlocking.
"""

import threading
from collections.abc import Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ExecuteOnce(Generic[T]):
    """Run an action exactly once and replay its outcome.

    Example:
        ```python
        setup_once: ExecuteOnce[ConnectionHandle] = ExecuteOnce("setup")
        handle = setup_once(broker._do_setup)  # provisions
        handle = setup_once(broker._do_setup)  # returns the cached handle
        ```
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._started = False
        self._done = False
        self._result: T | None = None
        self._error: BaseException | None = None

    @property
    def started(self) -> bool:
        """Whether the action has been entered."""
        return self._started

    @property
    def done(self) -> bool:
        """Whether the action has finished (successfully or not)."""
        return self._done

    @property
    def error(self) -> BaseException | None:
        """The exception raised by the action, if any."""
        return self._error

    def __call__(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self._lock:
            if not self._started:
                self._started = True
                try:
                    self._result = func(*args, **kwargs)
                except BaseException as e:
                    self._error = e
                    raise
                finally:
                    self._done = True
                return self._result

        if self._error is not None:
            raise self._error
        return self._result  # type: ignore[return-value]

    def wait(self) -> None:
        """Block until an in-flight action (if any) has finished."""
        with self._lock:
            pass
