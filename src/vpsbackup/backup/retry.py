"""Bounded retry policy for operations that need verified delivery."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from vpsbackup.backup.exceptions import RetryExhaustedError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to attempt an operation and how long to wait in between."""

    max_attempts: int = 3
    delay_seconds: float = 5.0
    backoff_factor: float = 1.0

    def __post_init__(self) -> None:
        """Validate the policy values."""
        if self.max_attempts < 1:
            error_msg = "max_attempts must be at least 1"
            raise ValueError(error_msg)
        if self.delay_seconds < 0 or self.backoff_factor < 1:
            error_msg = "delay_seconds must be >= 0 and backoff_factor >= 1"
            raise ValueError(error_msg)

    def delay_for(self, attempt: int) -> float:
        """Return the wait after the given failed attempt (1-based)."""
        return self.delay_seconds * (self.backoff_factor ** (attempt - 1))

    def run(
        self,
        operation: Callable[[int], T],
        logger: logging.Logger,
        description: str,
        retry_on: tuple[type[Exception], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Call ``operation`` until it succeeds or attempts run out.

        Args:
            operation: Callable receiving the 1-based attempt number
            logger: Logger for attempt progress
            description: Human-readable name of the operation
            retry_on: Exception types that count as a failed attempt
            sleep: Sleep function, replaceable in tests

        Returns:
            The operation's return value

        Raises:
            RetryExhaustedError: If every attempt failed

        """
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"{description}: attempt {attempt}/{self.max_attempts}")
            try:
                return operation(attempt)
            except retry_on as e:
                last_error = e
                logger.warning(f"{description}: attempt {attempt} failed: {e}")

            if attempt < self.max_attempts:
                delay = self.delay_for(attempt)
                logger.info(f"Retrying in {delay:g} seconds...")
                sleep(delay)

        error_msg = f"{description} failed after {self.max_attempts} attempts"
        raise RetryExhaustedError(error_msg, attempts=self.max_attempts, last_error=last_error)
