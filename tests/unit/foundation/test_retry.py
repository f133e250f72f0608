"""Unit tests for foundation.retry module.

This file tests the retry utilities including:
- RetryWithBackoff: Class-based retry with exponential backoff
- HTTPErrorClassifier: Base class for HTTP error classification
- create_retry_logger: Factory for retry logging callbacks
- RetryWithBackoff.call(classifier=...): classifier-driven retries

# Test Coverage

The tests cover:
  - Initialization: Default and custom configuration values
  - Retry Logic: Retryable exception handling, max attempts exhaustion
  - Exception Filtering: Non-retryable exceptions and classifier predicates
  - HTTPErrorClassifier: HTTP status code classification
  - create_retry_logger: Retry logging callback factory

# Running Tests

Run with: pytest tests/unit/foundation/test_retry.py
"""

import logging
from typing import Any
from unittest.mock import MagicMock

import pytest

from fixturekit.foundation.retry import (
    RETRIABLE_HTTP_STATUS_CODES,
    ErrorClassifier,
    HTTPErrorClassifier,
    RetryWithBackoff,
    create_retry_logger,
)


def _fast_retry(**kwargs: Any) -> RetryWithBackoff:
    return RetryWithBackoff(wait_min=0, wait_max=0, **kwargs)


class TestRetryWithBackoff:
    """Test suite for RetryWithBackoff class."""

    def test_init_defaults(self) -> None:
        """Test that RetryWithBackoff initializes with default values.

        **Why this test is important:**
          - Default configuration must work out of the box
          - Validates that default logger is properly configured

        **What it tests:**
          - max_attempts defaults to 3
          - wait_min/wait_max default to 0.5/5.0
          - retry_exceptions defaults to transient connection errors
          - logger defaults to "fixturekit.retry"
        """
        retry = RetryWithBackoff()

        assert retry.max_attempts == 3
        assert retry.wait_min == 0.5
        assert retry.wait_max == 5.0
        assert retry.multiplier == 1.0
        assert retry.retry_exceptions == (ConnectionError, TimeoutError)
        assert retry.logger.name == "fixturekit.retry"

    def test_call_succeeds_on_first_attempt(self) -> None:
        """Test that call() passes arguments through and returns the result."""
        func = MagicMock(return_value="ok")

        result = _fast_retry().call(func, 1, key="value")

        assert result == "ok"
        func.assert_called_once_with(1, key="value")

    def test_call_retries_transient_errors(self) -> None:
        """Test that retriable exceptions are retried until success.

        **Why this test is important:**
          - Docker API hiccups and refused connects are transient
          - One failure must not fail a whole test run

        **What it tests:**
          - Two ConnectionErrors followed by success returns the result
          - The function is called three times
        """
        func = MagicMock(side_effect=[ConnectionError("refused"), ConnectionError("refused"), "ok"])

        assert _fast_retry(max_attempts=3).call(func) == "ok"
        assert func.call_count == 3

    def test_call_reraises_after_max_attempts(self) -> None:
        """Test that the last exception is raised when attempts run out."""
        func = MagicMock(side_effect=TimeoutError("slow"))

        with pytest.raises(TimeoutError, match="slow"):
            _fast_retry(max_attempts=2).call(func)
        assert func.call_count == 2

    def test_call_does_not_retry_other_exceptions(self) -> None:
        """Test that non-transient exceptions fail immediately.

        **Why this test is important:**
          - Programming errors must surface on the first attempt
          - Retrying a ValueError only delays the failure

        **What it tests:**
          - ValueError is raised after a single call
          - KeyError is raised after a single call
        """
        value_error = MagicMock(side_effect=ValueError("bad"))
        key_error = MagicMock(side_effect=KeyError("missing"))

        with pytest.raises(ValueError, match="bad"):
            _fast_retry().call(value_error)
        with pytest.raises(KeyError):
            _fast_retry().call(key_error)

        assert value_error.call_count == 1
        assert key_error.call_count == 1

    def test_call_uses_retry_if_predicate(self) -> None:
        """Test that a classifier predicate replaces exception-type matching.

        **Why this test is important:**
          - Docker APIError is retriable for 5xx but not for 4xx
          - The classifier decides, not the exception type

        **What it tests:**
          - Exceptions accepted by the predicate are retried
          - Exceptions rejected by the predicate are raised immediately
        """
        retriable = RuntimeError("503")
        permanent = RuntimeError("404")
        func = MagicMock(side_effect=[retriable, permanent])

        with pytest.raises(RuntimeError, match="404"):
            _fast_retry(max_attempts=5).call(func, retry_if=lambda e: str(e) == "503")

        assert func.call_count == 2

    def test_call_logs_retry_attempts(self) -> None:
        """Test that each retry is logged at WARNING with structured context."""
        logger = MagicMock(spec=logging.Logger)
        func = MagicMock(side_effect=[ConnectionError("refused"), "ok"])

        _fast_retry(logger=logger).call(func)

        logger.warning.assert_called_once()
        extra = logger.warning.call_args.kwargs["extra"]
        assert extra["attempt"] == 1
        assert extra["error_type"] == "ConnectionError"


class _StatusClassifier(HTTPErrorClassifier):
    def is_retriable(self, exc: BaseException) -> bool:
        return self.is_retriable_http_status(getattr(exc, "status", None))

    def get_error_details(self, exc: BaseException) -> dict[str, Any]:
        return {"http_status": getattr(exc, "status", None)}


class _StatusError(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status


class TestCallWithClassifier:
    """Test suite for RetryWithBackoff.call(classifier=...)."""

    def test_classifier_decides_and_details_are_logged(self) -> None:
        """Test that a classifier drives both retriability and the retry log.

        **Why this test is important:**
          - Runtimes pass one ErrorClassifier instead of a predicate and a
            separate logging callback

        **What it tests:**
          - A 503 is retried, the following 404 is raised immediately
          - The retry log record carries the classifier's http_status
        """
        logger = MagicMock(spec=logging.Logger)
        func = MagicMock(side_effect=[_StatusError(503), _StatusError(404)])

        with pytest.raises(_StatusError, match="404"):
            _fast_retry(max_attempts=5, logger=logger).call(func, classifier=_StatusClassifier())

        assert func.call_count == 2
        logger.warning.assert_called_once()
        assert logger.warning.call_args.kwargs["extra"]["http_status"] == 503

    def test_classifier_satisfies_protocol(self) -> None:
        assert isinstance(_StatusClassifier(), ErrorClassifier)


class TestHTTPErrorClassifier:
    """Test suite for HTTPErrorClassifier."""

    @pytest.mark.parametrize("status", sorted(RETRIABLE_HTTP_STATUS_CODES))
    def test_server_errors_are_retriable(self, status: str) -> None:
        """Test that 500/502/503/504 are retriable, as str or int."""
        classifier = _StatusClassifier()

        assert classifier.is_retriable_http_status(status)
        assert classifier.is_retriable_http_status(int(status))

    @pytest.mark.parametrize("status", [400, 404, 409, None, 501])
    def test_other_statuses_are_not_retriable(self, status: int | None) -> None:
        """Test that client errors and unknown statuses fail fast."""
        assert not _StatusClassifier().is_retriable_http_status(status)


class TestCreateRetryLogger:
    """Test suite for create_retry_logger."""

    def test_logs_error_details(self) -> None:
        """Test that the callback merges classifier details into the log extra.

        **Why this test is important:**
          - Retry logs must say which API status caused the retry

        **What it tests:**
          - The configured message is logged at WARNING
          - attempt, wait_seconds, error_type and custom details are present
        """
        logger = MagicMock(spec=logging.Logger)
        callback = create_retry_logger(logger, lambda e: {"http_status": 503}, "Docker call failed")

        exc = ConnectionError("reset")
        state = MagicMock()
        state.outcome.failed = True
        state.outcome.exception.return_value = exc
        state.next_action.sleep = 0.5
        state.attempt_number = 2

        callback(state)

        logger.warning.assert_called_once()
        args, kwargs = logger.warning.call_args
        assert args[0] == "Docker call failed"
        assert kwargs["extra"] == {
            "attempt": 2,
            "wait_seconds": 0.5,
            "error_type": "ConnectionError",
            "http_status": 503,
        }

    def test_ignores_successful_outcome(self) -> None:
        """Test that nothing is logged when the attempt succeeded."""
        logger = MagicMock(spec=logging.Logger)
        state = MagicMock()
        state.outcome.failed = False

        create_retry_logger(logger)(state)

        logger.warning.assert_not_called()
