"""
Retry Manager for the domain monitor system.

Exponential backoff for operations whose failures are worth retrying in
process, such as delivering a notification. Verification checks are never
wrapped in this: their retries come from the auto-verify schedule and the
periodic sweep.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import RetryConfig

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryResult(Generic[T]):
    """Outcome of one execute_with_retry call; ``errors`` holds one entry per failed attempt."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]
    errors: list[str] = field(default_factory=list)


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


class RetryManager:
    """Runs an async operation until it succeeds or the retry budget is spent."""

    def __init__(self, config: RetryConfig, sleep: Sleep = asyncio.sleep) -> None:
        self._config = config
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._config.max_retries + 1

    def _calculate_delay(self, attempt: int) -> float:
        """Wait before retry ``attempt`` (0-indexed): base * 2^attempt, capped."""
        return min(
            self._config.base_delay_seconds * 2 ** attempt,
            self._config.max_delay_seconds,
        )

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
    ) -> RetryResult[T]:
        """
        Await ``operation`` until it returns without raising.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            is_retryable: Returns False for errors that should end the loop
                early; without it every error is retried

        Returns:
            RetryResult with the value of the first successful attempt, or
            the last error once the budget is spent
        """
        errors: list[str] = []
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            if attempt:
                await self._sleep(self._calculate_delay(attempt - 1))
            try:
                value = await operation()
            except Exception as e:
                last_error = e
                errors.append(_describe(e))
                if is_retryable is not None and not is_retryable(e):
                    return RetryResult(False, None, attempt + 1, e, errors)
                continue
            return RetryResult(True, value, attempt + 1, None, errors)

        return RetryResult(False, None, self.max_attempts, last_error, errors)
