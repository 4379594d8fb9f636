"""Retry handler for Asana API calls with exponential backoff and rate-limit floors."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from boardsync.core.config import settings
from boardsync.core.errors import ApiError, PermanentError, RateLimitedError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorRetryability(Enum):
    """Classification of whether an error should be retried."""

    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 5
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        """Build a config from the application settings."""
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )


class RetryHandler:
    """Runs API calls with exponential backoff, honoring server-provided delay hints.

    ``retries_recorded`` is cumulative across every call made through the handler,
    concurrent ones included. The retries of a single call are reported in its
    ``api_retry_success`` or ``api_retry_exhausted`` log record.
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config or RetryConfig()
        self.retries_recorded = 0

    def classify_error(self, exception: BaseException) -> ErrorRetryability:
        """Classify an error to determine if it should be retried.

        Unauthorized and permanent failures are never retried. Anything that is not
        a classified ApiError is a bug in the caller and is not retried either.
        """
        if isinstance(exception, ApiError) and exception.retryable:
            return ErrorRetryability.RETRYABLE
        return ErrorRetryability.NON_RETRYABLE

    def calculate_delay(self, attempt: int, exception: BaseException | None = None) -> float:
        """Calculate exponential backoff delay for the given attempt.

        Args:
            attempt: The attempt number (0-indexed)
            exception: The failure that triggered the retry, if any

        Returns:
            Delay in seconds. A rate-limit hint raises the delay, never lowers it.
        """
        delay = min(self.config.base_delay * (self.config.backoff_multiplier**attempt), self.config.max_delay)
        if isinstance(exception, RateLimitedError) and exception.retry_after is not None:
            delay = max(delay, exception.retry_after)
        return delay

    async def execute_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        idempotent: bool = True,
        operation: str = "api_call",
    ) -> T:
        """Execute an async call with retry logic.

        Args:
            func: Zero-argument coroutine factory performing one attempt
            idempotent: Whether repeating the call is safe. Non-idempotent calls are
                attempted once and retryable failures are surfaced as PermanentError.
            operation: Name used in log records

        Returns:
            The result of the call

        Raises:
            ApiError: The classified failure once retries are exhausted or skipped
        """
        max_attempts = self.config.max_attempts if idempotent else 1

        for attempt in range(max_attempts):
            try:
                result = await func()
            except ApiError as e:
                retryability = self.classify_error(e)
                error_type = type(e).__name__

                logger.warning(
                    "api_error",
                    extra={
                        "operation": operation,
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "error_type": error_type,
                        "error_message": str(e),
                        "status": e.status,
                        "retryable": retryability.value,
                    },
                )

                if retryability == ErrorRetryability.NON_RETRYABLE:
                    logger.info(
                        "api_retry_skipped",
                        extra={"operation": operation, "error_type": error_type, "reason": "non_retryable_error"},
                    )
                    raise

                if not idempotent:
                    logger.info(
                        "api_retry_skipped",
                        extra={"operation": operation, "error_type": error_type, "reason": "non_idempotent"},
                    )
                    raise PermanentError(
                        f"{operation} is not safe to retry: {e}",
                        status=e.status,
                    ) from e

                if attempt >= max_attempts - 1:
                    logger.error(
                        "api_retry_exhausted",
                        extra={
                            "operation": operation,
                            "attempts": max_attempts,
                            "retries": attempt,
                            "error_type": error_type,
                        },
                    )
                    raise

                delay = self.calculate_delay(attempt, e)
                self.retries_recorded += 1
                logger.info(
                    "api_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt + 1,
                        "error_type": error_type,
                        "delay_seconds": delay,
                        "next_attempt": attempt + 2,
                    },
                )
                await asyncio.sleep(delay)
            else:
                if attempt > 0:
                    logger.info(
                        "api_retry_success",
                        extra={"operation": operation, "total_attempts": attempt + 1, "retries": attempt},
                    )
                return result

        # max_attempts < 1 leaves nothing to run
        raise ValueError(f"RetryConfig.max_attempts must be at least 1, got {self.config.max_attempts}")
