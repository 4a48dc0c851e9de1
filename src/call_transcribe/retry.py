"""Bounded retry with constant or exponential backoff."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from call_transcribe.errors import PipelineError, error_log_fields

logger = logging.getLogger(__name__)

T = TypeVar("T")

AttemptFailureCallback = Callable[[BaseException, int], None]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """How many times to retry one call-site and how long to wait in between."""

    max_attempts_after_first: int = 3
    base_delay_seconds: float = 1.0
    exponential: bool = True
    on_attempt_failure: AttemptFailureCallback | None = None

    def __post_init__(self) -> None:
        if self.max_attempts_after_first < 0:
            raise ValueError("max_attempts_after_first must be >= 0.")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0.")

    @property
    def total_attempts(self) -> int:
        return self.max_attempts_after_first + 1

    def delay_for(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (0 for the first retry)."""

        if not self.exponential:
            return self.base_delay_seconds
        return self.base_delay_seconds * (2**retry_index)


class RetryExecutor:
    """Runs an operation under a ``RetryPolicy``.

    Attempts are strictly sequential. A ``PipelineError`` with
    ``retryable=False`` stops retrying at once; any other exception is
    treated as transient until the attempt budget runs out. The error that
    escapes is the very object raised by the last attempt.
    """

    def __init__(self, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep

    def execute(self, operation: Callable[[], T], policy: RetryPolicy, label: str) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except Exception as error:
                if isinstance(error, PipelineError) and not error.retryable:
                    logger.debug(
                        "%s failed with non-retryable %s on attempt %d",
                        label,
                        error.code,
                        attempt,
                    )
                    raise
                if attempt >= policy.total_attempts:
                    logger.warning(
                        "%s failed after %d attempt(s): %s",
                        label,
                        attempt,
                        error,
                        extra={"retry_label": label, "error": error_log_fields(error)},
                    )
                    raise

                delay = policy.delay_for(attempt - 1)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    label,
                    attempt,
                    policy.total_attempts,
                    delay,
                    error,
                    extra={"retry_label": label, "error": error_log_fields(error)},
                )
                if policy.on_attempt_failure is not None:
                    policy.on_attempt_failure(error, attempt)
                self._sleep(delay)
