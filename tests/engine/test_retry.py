# tests/engine/test_retry.py
"""Tests for RetryManager."""

import threading

import pytest

from scriptmap.contracts import JobCancelledError, OutputEncodingError, ScriptContractError, StoreConnectionError
from scriptmap.core.config import RetrySettings
from scriptmap.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager, is_retryable


class TestRetryConfig:
    def test_defaults(self) -> None:
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.base_delay == 1.0

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)

    def test_no_retry(self) -> None:
        assert RetryConfig.no_retry().max_attempts == 1

    def test_immediate_has_no_delay(self) -> None:
        config = RetryConfig.immediate(5)

        assert (config.max_attempts, config.base_delay, config.max_delay, config.jitter) == (5, 0.0, 0.0, 0.0)

    def test_from_settings(self) -> None:
        settings = RetrySettings(
            max_attempts=4,
            initial_delay_seconds=0.5,
            max_delay_seconds=10.0,
            exponential_base=3.0,
            jitter_seconds=0.25,
        )

        config = RetryConfig.from_settings(settings)

        assert config == RetryConfig(max_attempts=4, base_delay=0.5, max_delay=10.0, jitter=0.25, exponential_base=3.0)


class TestIsRetryable:
    def test_partition_failures_are_retryable(self) -> None:
        assert is_retryable(StoreConnectionError("down"))
        assert is_retryable(OSError("io"))

    def test_cancellation_and_bad_scripts_are_not(self) -> None:
        assert not is_retryable(JobCancelledError("stop"))
        assert not is_retryable(ScriptContractError("s.py", "bad"))

    def test_unencodable_output_is_not(self) -> None:
        assert not is_retryable(OutputEncodingError(0, 1, "set is not JSON serializable"))


class TestRetryManager:
    def test_success_first_try(self) -> None:
        manager = RetryManager(RetryConfig.immediate(3))

        assert manager.execute_with_retry(lambda attempt: f"ok on {attempt}") == "ok on 1"

    def test_operation_receives_attempt_number(self) -> None:
        seen: list[int] = []

        def flaky(attempt: int) -> str:
            seen.append(attempt)
            if attempt < 3:
                raise StoreConnectionError("not yet")
            return "done"

        assert RetryManager(RetryConfig.immediate(3)).execute_with_retry(flaky) == "done"
        assert seen == [1, 2, 3]

    def test_exhausted_budget(self) -> None:
        calls: list[int] = []

        def always_fails(attempt: int) -> None:
            calls.append(attempt)
            raise StoreConnectionError(f"attempt {attempt}")

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            RetryManager(RetryConfig.immediate(3)).execute_with_retry(always_fails)

        assert calls == [1, 2, 3]
        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_error) == "attempt 3"

    def test_non_retryable_error_raised_as_is(self) -> None:
        calls: list[int] = []

        def cancelled(attempt: int) -> None:
            calls.append(attempt)
            raise JobCancelledError("stop")

        with pytest.raises(JobCancelledError):
            RetryManager(RetryConfig.immediate(3)).execute_with_retry(cancelled)
        assert calls == [1]

    def test_on_retry_called_between_attempts_only(self) -> None:
        retries: list[tuple[int, str]] = []

        def always_fails(attempt: int) -> None:
            raise StoreConnectionError(f"attempt {attempt}")

        with pytest.raises(MaxRetriesExceeded):
            RetryManager(RetryConfig.immediate(3)).execute_with_retry(
                always_fails,
                on_retry=lambda attempt, error: retries.append((attempt, str(error))),
            )

        assert retries == [(1, "attempt 1"), (2, "attempt 2")]

    def test_custom_retryable_predicate(self) -> None:
        calls: list[int] = []

        def fails(attempt: int) -> None:
            calls.append(attempt)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            RetryManager(RetryConfig.immediate(3)).execute_with_retry(
                fails,
                is_retryable=lambda e: not isinstance(e, ValueError),
            )
        assert calls == [1]

    def test_custom_sleep_receives_backoff(self) -> None:
        slept: list[float] = []
        config = RetryConfig(max_attempts=3, base_delay=2.0, max_delay=60.0, jitter=0.0)

        def always_fails(attempt: int) -> None:
            raise StoreConnectionError("down")

        with pytest.raises(MaxRetriesExceeded):
            RetryManager(config).execute_with_retry(always_fails, sleep=slept.append)

        assert slept == [2.0, 4.0]

    def test_event_wait_as_sleep_wakes_on_set(self) -> None:
        stop = threading.Event()
        stop.set()
        config = RetryConfig(max_attempts=2, base_delay=30.0, max_delay=30.0, jitter=0.0)
        calls: list[int] = []

        def fails_once(attempt: int) -> int:
            calls.append(attempt)
            if attempt == 1:
                raise StoreConnectionError("down")
            return attempt

        # A 30s backoff returns at once because the event is already set
        assert RetryManager(config).execute_with_retry(fails_once, sleep=stop.wait) == 2
        assert calls == [1, 2]
