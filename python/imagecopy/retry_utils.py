"""Retry utilities for registry transfers with linear, cancellable backoff"""

import threading
from typing import Callable, Optional, Tuple, Type, TypeVar

from imagecopy.logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def linear_backoff_delay(attempt: int, step: float) -> float:
    """Seconds to wait before a 1-indexed attempt.

    The first attempt runs immediately, the second after no delay, and each
    later attempt waits one step longer than the previous: 0, 5, 10, ... for
    a 5 second step.
    """
    if attempt <= 1:
        return 0.0
    return step * (attempt - 2)


def retry_operation(
    operation: Callable[[int], T],
    max_attempts: int = 7,
    backoff_step: float = 5.0,
    wait: Optional[Callable[[float], bool]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    on_stop: Optional[Callable[[int], Exception]] = None,
    on_failure: Optional[Callable[[int, Exception], None]] = None,
    non_retryable: Tuple[Type[BaseException], ...] = (),
    operation_name: str = "operation",
) -> T:
    """Run operation until it succeeds or the attempt budget is spent.

    Every exception is retried identically except those listed in
    ``non_retryable``. When all attempts fail the last error is re-raised.

    Args:
        operation: Callable receiving the 1-indexed attempt number
        max_attempts: Total attempts, including the first
        backoff_step: Linear backoff step in seconds
        wait: Blocks for the given seconds; returns True if interrupted.
            Defaults to waiting on a private threading.Event.
        should_stop: Checked before every attempt; True aborts the loop
        on_stop: Builds the exception raised when the loop is aborted
        on_failure: Called with (attempt, error) after every failed attempt
        non_retryable: Exception types re-raised immediately
        operation_name: Name for logging purposes

    Returns:
        Result of operation
    """
    if wait is None:
        wait = threading.Event().wait

    def _stop(attempt: int) -> Exception:
        if on_stop is not None:
            return on_stop(attempt)
        return RuntimeError(f"{operation_name} stopped before attempt {attempt}")

    last_error = None

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay = linear_backoff_delay(attempt, backoff_step)
            if wait(delay):
                raise _stop(attempt)
        if should_stop is not None and should_stop():
            raise _stop(attempt)

        try:
            result = operation(attempt)
            if attempt > 1:
                logger.info(f"{operation_name} succeeded on attempt {attempt}")
            return result
        except non_retryable:
            raise
        except Exception as e:
            last_error = e
            if on_failure is not None:
                on_failure(attempt, e)
            if attempt >= max_attempts:
                logger.error(f"{operation_name} failed after {max_attempts} attempts: {e}")
                raise
            logger.warning(
                f"{operation_name} failed on attempt {attempt}/{max_attempts}, "
                f"retrying in {linear_backoff_delay(attempt + 1, backoff_step):.0f}s"
            )

    # max_attempts < 1
    if last_error:
        raise last_error
    raise ValueError(f"{operation_name}: max_attempts must be at least 1, got {max_attempts}")
