# src/hopper/engine/retry.py
"""RetryManager: Retry logic with tenacity integration.

Provides configurable retry behavior for record processing and chunk writes:
- Exponential backoff with jitter
- Configurable max attempts
- Retryable error filtering
- Attempt counting for StepExecution.retry_count

Retries happen BEFORE the skip decision: a record is only offered to the
skip policy once its retries are exhausted (or its error is not retryable).
"""

from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from hopper.contracts.definition import RetryPolicy

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


class RetryManager:
    """Manages retry logic for one step.

    Uses tenacity for exponential backoff with jitter.

    Example:
        manager = RetryManager(RetryPolicy(max_attempts=3, retryable=(TimeoutError,)))

        result = manager.execute_with_retry(
            operation=lambda: processor.process(item),
            on_retry=lambda attempt, error: contribution_retries.append(attempt),
        )
    """

    def __init__(self, policy: RetryPolicy) -> None:
        """Initialize with policy.

        Args:
            policy: Retry policy of the step
        """
        self._policy = policy

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def is_retryable(self, error: BaseException) -> bool:
        return self._policy.is_retryable(error)

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool] | None = None,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            is_retryable: Override of the policy's retryable check
            on_retry: Callback invoked before each retry (failed attempt number, error)

        Returns:
            Result of operation

        Raises:
            MaxRetriesExceeded: If a retryable error persisted through max attempts
            Exception: If non-retryable error occurs (raised unchanged)
        """
        check = is_retryable if is_retryable is not None else self.is_retryable
        if self._policy.max_attempts == 1:
            return operation()

        attempt = 0
        last_error: BaseException | None = None

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._policy.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self._policy.base_delay,
                    max=self._policy.max_delay,
                    exp_base=self._policy.exponential_base,
                    jitter=self._policy.jitter,
                ),
                retry=retry_if_exception(check),
                reraise=False,  # We catch RetryError and convert to MaxRetriesExceeded
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as e:
                        last_error = e
                        # Only report attempts that will actually be retried
                        if on_retry is not None and check(e) and attempt < self._policy.max_attempts:
                            on_retry(attempt, e)
                        raise

        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            if final_error is None:
                raise RuntimeError("RetryError without a recorded exception") from e
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
