from __future__ import annotations

import time

import allure
import pytest

from call_transcribe.errors import ExternalServiceError, RemoteAccessError, ValidationError
from call_transcribe.retry import RetryExecutor, RetryPolicy

pytestmark = [
    allure.epic("Resilience"),
    allure.feature("Retry executor"),
]


class _FlakyOperation:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, errors: list[Exception], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def _transient() -> RemoteAccessError:
    return RemoteAccessError.list_failed("/rec", ConnectionResetError("reset"))


def test_policy_delays_are_constant_or_doubling() -> None:
    exponential = RetryPolicy(max_attempts_after_first=3, base_delay_seconds=0.5)
    constant = RetryPolicy(max_attempts_after_first=3, base_delay_seconds=0.5, exponential=False)

    assert [exponential.delay_for(index) for index in range(3)] == [0.5, 1.0, 2.0]
    assert [constant.delay_for(index) for index in range(3)] == [0.5, 0.5, 0.5]
    assert exponential.total_attempts == 4


def test_policy_rejects_negative_values() -> None:
    with pytest.raises(ValueError, match="max_attempts_after_first"):
        RetryPolicy(max_attempts_after_first=-1)
    with pytest.raises(ValueError, match="base_delay_seconds"):
        RetryPolicy(base_delay_seconds=-0.1)


def test_first_success_returns_without_sleeping() -> None:
    sleeps: list[float] = []
    operation = _FlakyOperation([])

    result = RetryExecutor(sleep=sleeps.append).execute(operation, RetryPolicy(), "noop")

    assert result == "ok"
    assert operation.calls == 1
    assert sleeps == []


def test_retryable_failures_are_retried_with_exponential_backoff() -> None:
    sleeps: list[float] = []
    operation = _FlakyOperation([_transient(), _transient()], result="listing")
    policy = RetryPolicy(max_attempts_after_first=3, base_delay_seconds=0.1)

    result = RetryExecutor(sleep=sleeps.append).execute(operation, policy, "remote list /rec")

    assert result == "listing"
    assert operation.calls == 3
    assert sleeps == pytest.approx([0.1, 0.2])


def test_backoff_really_waits_between_attempts() -> None:
    operation = _FlakyOperation([_transient(), _transient()])
    policy = RetryPolicy(max_attempts_after_first=3, base_delay_seconds=0.1, exponential=True)

    started = time.monotonic()
    RetryExecutor().execute(operation, policy, "remote list /rec")
    elapsed = time.monotonic() - started

    assert operation.calls == 3
    assert elapsed >= 0.3


def test_non_retryable_error_propagates_after_one_call() -> None:
    sleeps: list[float] = []
    error = ValidationError.file_too_large("/tmp/a.mp3", 30_000_000, 25_000_000)
    operation = _FlakyOperation([error])

    with pytest.raises(ValidationError) as raised:
        RetryExecutor(sleep=sleeps.append).execute(operation, RetryPolicy(), "transcribe a.mp3")

    assert raised.value is error
    assert operation.calls == 1
    assert sleeps == []


def test_exhausted_budget_raises_last_error_unchanged() -> None:
    errors = [_transient() for _ in range(3)]
    operation = _FlakyOperation(list(errors))
    policy = RetryPolicy(max_attempts_after_first=2, base_delay_seconds=0.0)

    with pytest.raises(RemoteAccessError) as raised:
        RetryExecutor(sleep=lambda _: None).execute(operation, policy, "remote list /rec")

    assert raised.value is errors[-1]
    assert operation.calls == 3


def test_zero_retries_means_single_attempt() -> None:
    operation = _FlakyOperation([_transient()])

    with pytest.raises(RemoteAccessError):
        RetryExecutor(sleep=lambda _: None).execute(
            operation,
            RetryPolicy(max_attempts_after_first=0),
            "remote connect",
        )

    assert operation.calls == 1


def test_untyped_errors_are_treated_as_transient() -> None:
    operation = _FlakyOperation([RuntimeError("flaky sdk")])

    result = RetryExecutor(sleep=lambda _: None).execute(
        operation,
        RetryPolicy(max_attempts_after_first=1, base_delay_seconds=0.0),
        "upload",
    )

    assert result == "ok"
    assert operation.calls == 2


def test_attempt_failure_callback_sees_each_retried_failure() -> None:
    seen: list[tuple[str, int]] = []
    first = ExternalServiceError.rate_limited("transcription")
    second = ExternalServiceError.transcription_failed("/tmp/a.mp3", "boom", status_code=503)
    operation = _FlakyOperation([first, second])
    policy = RetryPolicy(
        max_attempts_after_first=3,
        base_delay_seconds=0.0,
        on_attempt_failure=lambda error, attempt: seen.append((str(error), attempt)),
    )

    RetryExecutor(sleep=lambda _: None).execute(operation, policy, "transcribe")

    assert seen == [(str(first), 1), (str(second), 2)]
