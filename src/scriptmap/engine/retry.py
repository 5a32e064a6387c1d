# src/scriptmap/engine/retry.py
"""RetryManager: Partition retry with tenacity integration.

A failed partition is re-run from scratch: a fresh worker, a fresh script
runtime and a fresh store connection, from the first record. This module
only decides whether and when; the job executor supplies the attempt.

- Exponential backoff with jitter
- max_attempts counts every run, including the first
- Retryable error filtering (cancellation is never retried)
- The backoff sleep is interruptible, so cancelling a job does not wait
  out a long delay
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from scriptmap.contracts import JobCancelledError, OutputEncodingError, ScriptLoadError

if TYPE_CHECKING:
    from scriptmap.core.config import RetrySettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


def is_retryable(error: BaseException) -> bool:
    """Partition-level failures are retried; cancellation, bad scripts and
    unencodable output are not."""
    return not isinstance(error, (JobCancelledError, ScriptLoadError, OutputEncodingError))


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0  # backoff multiplier

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> "RetryConfig":
        """Retries without backoff delay."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        """Factory from RetrySettings config model.

        Args:
            settings: Validated Pydantic settings model

        Returns:
            RetryConfig with mapped values
        """
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )


class RetryManager:
    """Runs a partition operation until it succeeds or the budget is spent.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3))

        result = manager.execute_with_retry(
            operation=lambda attempt: run_partition_once(partition, attempt),
            on_retry=lambda attempt, error: log.warning("retrying", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig) -> None:
        """Initialize with config.

        Args:
            config: Retry configuration
        """
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[int], T],
        *,
        is_retryable: Callable[[BaseException], bool] = is_retryable,
        on_retry: Callable[[int, BaseException], None] | None = None,
        sleep: Callable[[float], object] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Called with the 1-based attempt number
            is_retryable: Function to check if error is retryable
            on_retry: Optional callback on retry (attempt, error)
            sleep: Backoff sleep; e.g. threading.Event.wait to wake early
                on cancellation

        Returns:
            Result of operation

        Raises:
            MaxRetriesExceeded: If max attempts exceeded
            Exception: If non-retryable error occurs
        """
        attempt = 0
        last_error: BaseException | None = None
        retrying_kwargs = {"sleep": sleep} if sleep is not None else {}

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._config.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self._config.base_delay,
                    max=self._config.max_delay,
                    exp_base=self._config.exponential_base,
                    jitter=self._config.jitter,
                ),
                retry=retry_if_exception(is_retryable),
                reraise=False,  # We catch RetryError and convert to MaxRetriesExceeded
                **retrying_kwargs,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation(attempt)
                    except Exception as e:
                        last_error = e
                        # Only call on_retry for errors that will be retried
                        if is_retryable(e) and on_retry and attempt < self._config.max_attempts:
                            on_retry(attempt, e)
                        raise

        except RetryError as e:
            # last_error is always set because RetryError means at least one attempt failed
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without exception is impossible"
            raise MaxRetriesExceeded(attempt, final_error) from e

        # Should not reach here - Retrying always returns or raises
        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
