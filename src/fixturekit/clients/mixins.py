"""Mixins for sandbox runtimes and dependency drivers.

This module provides reusable mixins that can be combined with runtime and
driver classes to add common functionality like logging.
"""

import logging
from typing import Any


class LoggerMixin:
    """Mixin that provides automatic logger creation for client classes.

    This mixin automatically creates a logger based on the class's module name.
    The logger is available as `self._logger` or `cls._logger`.
    """

    _logger: logging.Logger

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Automatically create logger for each client subclass.

        Args:
            **kwargs: Additional keyword arguments passed to super().__init_subclass__.
        """
        super().__init_subclass__(**kwargs)
        cls._logger = logging.getLogger(cls.__module__)
