"""
Fixed-backoff retry policy shared by metadata and blob operations.

    policy = RetryPolicy(max_attempts=3, backoff=fixed_backoff(1.0))
    policy.call(images.delete_chunk, chunk_ids)

Exceptions outside ``retry_on`` propagate on the first attempt. When every
attempt fails, ``RetryExhaustedError`` is raised with the last error chained.
"""

import time
from typing import Any, Callable, Optional, Tuple, Type

from aws_lambda_powertools import Logger
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)
from tenacity.wait import wait_base

logger = Logger(service="retry")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0


def fixed_backoff(seconds: float) -> wait_base:
    return wait_fixed(seconds)


class RetryExhaustedError(Exception):
    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


def _log_failed_attempt(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        "Attempt failed",
        extra={
            "operation": getattr(state.fn, "__name__", repr(state.fn)),
            "attempt": state.attempt_number,
            "error": str(error),
        },
    )


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: Optional[wait_base] = None,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff or fixed_backoff(DEFAULT_BACKOFF_SECONDS)
        self.retry_on = retry_on
        self.sleep = sleep

    def _retrying(self) -> Retrying:
        # One controller per call: the policy is shared by worker threads.
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.backoff,
            retry=retry_if_exception_type(self.retry_on),
            sleep=self.sleep,
            before_sleep=_log_failed_attempt,
        )

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return self._retrying()(fn, *args, **kwargs)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.warning(
                "Retries exhausted",
                extra={
                    "operation": getattr(fn, "__name__", repr(fn)),
                    "attempts": e.last_attempt.attempt_number,
                    "error": str(last_error),
                },
            )
            raise RetryExhaustedError(e.last_attempt.attempt_number, last_error) from last_error
