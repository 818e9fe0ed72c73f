from __future__ import annotations

import pytest

from casebook.components.field_registry import FieldRegistry
from casebook.config import Settings
from casebook.domain.errors import TransientError, ValidationError
from casebook.infrastructure.retry import RetryPolicy

ATTEMPTS = 3


class _Flaky:
    def __init__(self, failures: int, exc: Exception) -> None:
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self, value: str) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return value


def _fast_policy(attempts: int = ATTEMPTS) -> RetryPolicy:
    return RetryPolicy(attempts=attempts, min_wait=0.0, max_wait=0.0)


def test_transient_errors_are_retried_until_success() -> None:
    fn = _Flaky(failures=2, exc=TransientError("timeout"))
    assert _fast_policy().call(fn, "ok") == "ok"
    assert fn.calls == ATTEMPTS


def test_last_transient_error_is_reraised() -> None:
    fn = _Flaky(failures=10, exc=TransientError("timeout"))
    with pytest.raises(TransientError, match="timeout"):
        _fast_policy().call(fn, "ok")
    assert fn.calls == ATTEMPTS


def test_validation_errors_are_not_retried() -> None:
    fn = _Flaky(failures=1, exc=ValidationError("bad input"))
    with pytest.raises(ValidationError):
        _fast_policy().call(fn, "ok")
    assert fn.calls == 1


def test_no_retry_makes_a_single_attempt() -> None:
    fn = _Flaky(failures=1, exc=TransientError("timeout"))
    with pytest.raises(TransientError):
        RetryPolicy.no_retry().call(fn, "ok")
    assert fn.calls == 1


def test_policy_from_settings() -> None:
    settings = Settings(
        _env_file=None, retry_attempts=5, retry_min_wait_seconds=0.5, retry_max_wait_seconds=4.0
    )
    policy = RetryPolicy.from_settings(settings)
    assert (policy.attempts, policy.min_wait, policy.max_wait) == (5, 0.5, 4.0)


def test_attempts_are_at_least_one() -> None:
    assert RetryPolicy(attempts=0).attempts == 1


def test_move_is_not_retried(book, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    def _swap(field_id, direction):
        calls.append(field_id)
        raise TransientError("lock timeout")

    registry = FieldRegistry(book.backend, book.values, retry=_fast_policy())
    monkeypatch.setattr(book.backend, "swap_field", _swap)

    with pytest.raises(TransientError):
        registry.move("f1", "up")
    assert calls == ["f1"]
