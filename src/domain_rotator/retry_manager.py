"""
Retry Manager for the domain rotator.

Scheduled rotations are retried a bounded number of times. Every failure is
treated alike; the caller inspects the last error once attempts run out.
An optional exponential backoff is supported and disabled by default.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import RetryConfig

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


class RetryManager:
    """Runs an async operation up to max_attempts times."""

    def __init__(self, config: RetryConfig) -> None:
        if config.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {config.max_attempts}")
        self._config = config

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def calculate_delay(self, attempt: int) -> float:
        """
        Wait before retry number attempt + 1 (0-indexed).

        base_delay * 2^attempt, capped at max_delay. Zero with the default
        configuration.
        """
        delay = self._config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._config.max_delay_seconds)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        on_failure: Optional[Callable[[int, Exception], None]] = None,
    ) -> RetryResult[T]:
        """
        Execute an operation until it succeeds or attempts run out.

        Args:
            operation: The async operation to execute
            on_failure: Optional callback(attempt_number, error) after each
                        failed attempt, 1-indexed

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        last_error: Optional[Exception] = None
        attempts = 0

        while attempts < self._config.max_attempts:
            try:
                result = await operation()
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts + 1,
                    last_error=None,
                )
            except Exception as e:
                last_error = e
                attempts += 1
                if on_failure is not None:
                    on_failure(attempts, e)

                if attempts >= self._config.max_attempts:
                    break

                delay = self.calculate_delay(attempts - 1)
                if delay > 0:
                    await asyncio.sleep(delay)

        return RetryResult(
            success=False,
            result=None,
            attempts=attempts,
            last_error=last_error,
        )
