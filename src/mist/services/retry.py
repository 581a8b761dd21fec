"""Bounded fixed-interval retry policies built on tenacity.

Only ``TransientError`` (or whatever ``retry_on`` names) is retried; anything
else propagates on the first failure. The last exception is re-raised when
attempts run out.
"""

from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from mist.services.exceptions import TransientError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Fixed-interval retry policy with a small attempt budget.

    Example:
        policy = RetryPolicy(attempts=3, interval=10.0)
        images = await policy.run("dalle.generate", adapter.generate_once, params)
    """

    def __init__(
        self,
        attempts: int,
        interval: float,
        retry_on: tuple[type[BaseException], ...] = (TransientError,),
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.interval = interval
        self.retry_on = retry_on

    def _before_sleep(self, operation: str) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "retry.scheduled",
                operation=operation,
                attempt=retry_state.attempt_number,
                max_attempts=self.attempts,
                wait_seconds=self.interval,
                error=str(exc),
                error_type=type(exc).__name__,
            )

        return log_retry

    async def run(self, operation: str, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds, raises a non-retryable error, or attempts run out.

        Args:
            operation: Name used in retry log events
            func: Coroutine function to call
            *args: Positional arguments for ``func``
            **kwargs: Keyword arguments for ``func``

        Returns:
            The value returned by ``func``

        Raises:
            Exception: The last error raised by ``func``
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.interval),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=self._before_sleep(operation),
            reraise=True,
        )
        return await retrying(func, *args, **kwargs)
