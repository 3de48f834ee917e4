"""Bounded retries with linear backoff around a single provider call."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from .errors import NetworkTransportError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class RetryExecutor:
    """Runs an operation up to ``max_attempts`` times.

    Only ``NetworkTransportError`` is retried. HTTP error answers and every
    other failure propagate on the attempt that produced them. The delay
    before attempt ``n + 1`` is ``base_delay * n``.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        attempt_timeout: Optional[float] = 30.0,
        sleep: Optional[SleepFunc] = None,
    ):
        """Initialize the executor.

        Args:
            max_attempts: Total attempts including the first one
            base_delay: Backoff unit in seconds
            attempt_timeout: Upper bound for each attempt in seconds (None disables)
            sleep: Async sleep used between attempts (injectable for tests)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep or asyncio.sleep

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Execute ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt

        Returns:
            The first successful result

        Raises:
            RetryExhaustedError: Every attempt failed with a transport error
        """
        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception_type(NetworkTransportError),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )

        try:
            async for attempt in retryer:
                with attempt:
                    return await self._attempt(operation)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"Giving up after {self.max_attempts} attempts: {last_error}")
            raise RetryExhaustedError(self.max_attempts, last_error) from last_error

        raise RuntimeError("retry loop exited without a result")

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.attempt_timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.attempt_timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTransportError(
                f"Request timed out after {self.attempt_timeout:g}s"
            ) from e

    def _log_retry(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0
        logger.warning(
            f"Attempt {state.attempt_number}/{self.max_attempts} failed ({error}); "
            f"retrying in {delay:g}s"
        )
