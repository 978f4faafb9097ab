"""Unit tests for imagecopy/retry_utils.py"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))


class TestLinearBackoffDelay:
    """Tests for linear_backoff_delay"""

    def test_schedule(self):
        """Test the wait before each attempt grows by one step from the third attempt on"""
        from imagecopy.retry_utils import linear_backoff_delay

        delays = [linear_backoff_delay(attempt, 5.0) for attempt in range(1, 8)]
        assert delays == [0.0, 0.0, 5.0, 10.0, 15.0, 20.0, 25.0]
        assert sum(delays) == 75.0


class TestRetryOperation:
    """Tests for retry_operation"""

    def test_returns_first_success(self):
        """Test a successful operation runs once"""
        from imagecopy.retry_utils import retry_operation

        operation = MagicMock(return_value="ok")
        wait = MagicMock(return_value=False)

        assert retry_operation(operation, wait=wait) == "ok"
        operation.assert_called_once_with(1)
        wait.assert_not_called()

    def test_retries_until_success(self):
        """Test failures are retried and the attempt number is passed through"""
        from imagecopy.retry_utils import retry_operation

        operation = MagicMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])
        wait = MagicMock(return_value=False)

        assert retry_operation(operation, wait=wait) == "ok"
        assert [c.args[0] for c in operation.call_args_list] == [1, 2, 3]
        assert [c.args[0] for c in wait.call_args_list] == [0.0, 5.0]

    def test_raises_last_error_after_budget(self):
        """Test the last error is raised once all attempts fail"""
        from imagecopy.retry_utils import retry_operation

        errors = [RuntimeError(f"failure {i}") for i in range(1, 4)]
        operation = MagicMock(side_effect=errors)
        on_failure = MagicMock()

        with pytest.raises(RuntimeError) as exc_info:
            retry_operation(operation, max_attempts=3, wait=MagicMock(return_value=False), on_failure=on_failure)

        assert exc_info.value is errors[-1]
        assert operation.call_count == 3
        assert on_failure.call_count == 3

    def test_non_retryable_is_raised_immediately(self):
        """Test listed exception types skip the retry loop"""
        from imagecopy.retry_utils import retry_operation

        operation = MagicMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            retry_operation(operation, wait=MagicMock(return_value=False), non_retryable=(ValueError,))
        operation.assert_called_once()

    def test_interrupted_wait_raises_stop_error(self):
        """Test an interrupted wait raises the error built by on_stop"""
        from imagecopy.retry_utils import retry_operation

        class Stopped(Exception):
            pass

        operation = MagicMock(side_effect=RuntimeError("boom"))

        with pytest.raises(Stopped):
            retry_operation(
                operation,
                wait=MagicMock(return_value=True),
                on_stop=lambda attempt: Stopped(attempt),
            )
        operation.assert_called_once()

    def test_should_stop_checked_before_first_attempt(self):
        """Test should_stop prevents even the first attempt"""
        from imagecopy.retry_utils import retry_operation

        operation = MagicMock()

        with pytest.raises(RuntimeError):
            retry_operation(operation, should_stop=lambda: True)
        operation.assert_not_called()

    def test_zero_attempts_is_an_error(self):
        """Test max_attempts below one is rejected"""
        from imagecopy.retry_utils import retry_operation

        with pytest.raises(ValueError):
            retry_operation(MagicMock(), max_attempts=0)


class TestRetryLogging:
    """Tests for the retry module logger"""

    def test_uses_package_logger(self):
        """Test retry logging goes through the shared logging helpers"""
        from imagecopy import retry_utils

        assert retry_utils.logger.name == "imagecopy.retry_utils"
        assert retry_utils.get_logger.__module__ == "imagecopy.logging_utils"
