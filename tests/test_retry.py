import pytest

from stagehand_automation.retry import retry


def test_never_satisfied_action_runs_exactly_max_attempts() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    def action() -> bool:
        calls.append(1)
        return False

    outcome = retry(action, 4, 2.5, lambda ok: ok, sleep=sleeps.append)

    assert outcome.succeeded is False
    assert outcome.attempts == 4
    assert len(calls) == 4
    # No sleep after the final attempt.
    assert sleeps == [2.5, 2.5, 2.5]


def test_success_on_attempt_k_stops_there() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    def action() -> int:
        calls.append(1)
        return len(calls)

    outcome = retry(action, 10, 1.0, lambda n: n >= 3, sleep=sleeps.append)

    assert outcome.succeeded is True
    assert outcome.attempts == 3
    assert outcome.result == 3
    assert len(calls) == 3
    assert sleeps == [1.0, 1.0]


def test_success_on_first_attempt_never_sleeps() -> None:
    sleeps: list[float] = []
    outcome = retry(lambda: "ok", 5, 9.0, lambda value: value == "ok", sleep=sleeps.append)
    assert outcome.attempts == 1
    assert sleeps == []


def test_exceptions_count_as_failed_attempts() -> None:
    def action() -> None:
        raise RuntimeError("lock held")

    outcome = retry(action, 2, 0, lambda _: True, sleep=lambda _: None)

    assert outcome.succeeded is False
    assert outcome.attempts == 2
    assert isinstance(outcome.error, RuntimeError)
    assert outcome.result is None


def test_on_retry_sees_each_failed_attempt() -> None:
    seen: list[int] = []
    retry(
        lambda: False,
        3,
        0,
        bool,
        sleep=lambda _: None,
        on_retry=lambda attempt, result, error: seen.append(attempt),
    )
    assert seen == [1, 2, 3]


def test_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        retry(lambda: True, 0, 1.0, bool)
