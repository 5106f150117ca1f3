"""Unit tests for action retry backoff and per-type circuit breakers."""

from __future__ import annotations

import pytest
from circuitbreaker import CircuitBreakerError

from workflow_automation.workflow.errors import ActionTimeoutError
from workflow_automation.workflow.models import ActionType, RetryOn, RetryPolicy
from workflow_automation.workflow.resilience import (
    ActionCircuitBreakers,
    build_retrying,
    is_retryable,
)


def _raise(message: str) -> None:
    raise RuntimeError(message)


def _always_fail(attempts: list[int]) -> None:
    attempts.append(len(attempts) + 1)
    raise ConnectionRefusedError("connection refused")


def test_backoff_grows_by_multiplier_and_is_capped() -> None:
    policy = RetryPolicy(
        max_attempts=5,
        initial_delay_seconds=1,
        max_delay_seconds=5,
        backoff_multiplier=2,
        retry_on=[RetryOn.ERROR],
    )
    sleeps: list[float] = []
    attempts: list[int] = []

    with pytest.raises(ConnectionRefusedError):
        for attempt in build_retrying(policy, sleep=sleeps.append):
            with attempt:
                _always_fail(attempts)

    assert attempts == [1, 2, 3, 4, 5]
    assert sleeps == [1, 2, 4, 5]


def test_should_stop_ends_retries_early() -> None:
    policy = RetryPolicy(max_attempts=5, initial_delay_seconds=0, retry_on=[RetryOn.ERROR])
    attempts: list[int] = []

    with pytest.raises(ConnectionRefusedError):
        for attempt in build_retrying(
            policy, sleep=lambda _s: None, should_stop=lambda: len(attempts) >= 2
        ):
            with attempt:
                _always_fail(attempts)

    assert attempts == [1, 2]


def test_retryable_kinds_follow_policy() -> None:
    timeouts_only = RetryPolicy()
    both = RetryPolicy(retry_on=[RetryOn.TIMEOUT, RetryOn.ERROR])
    timeout = ActionTimeoutError("Action timed out after 1s")
    error = RuntimeError("bad gateway")

    assert is_retryable(timeouts_only, timeout)
    assert not is_retryable(timeouts_only, error)
    assert is_retryable(both, error)
    assert not is_retryable(both, KeyboardInterrupt())


def test_breakers_are_shared_per_action_type() -> None:
    breakers = ActionCircuitBreakers(failure_threshold=2, recovery_timeout_seconds=60)

    assert breakers.for_type(ActionType.WEBHOOK) is breakers.for_type(ActionType.WEBHOOK)
    assert breakers.for_type(ActionType.WEBHOOK) is not breakers.for_type(ActionType.NOTIFY)


def test_breaker_opens_after_threshold_and_rejects_calls() -> None:
    breakers = ActionCircuitBreakers(failure_threshold=2, recovery_timeout_seconds=60)
    breaker = breakers.for_type(ActionType.WEBHOOK)
    calls: list[int] = []

    def _fail() -> None:
        calls.append(1)
        raise RuntimeError("bad gateway")

    for _ in range(2):
        with pytest.raises(RuntimeError):
            breaker.call(_fail)

    with pytest.raises(CircuitBreakerError):
        breaker.call(_fail)
    assert len(calls) == 2
    assert breakers.states() == {"WEBHOOK": "open"}


def test_breaker_recovers_after_a_successful_trial_call() -> None:
    breakers = ActionCircuitBreakers(failure_threshold=1, recovery_timeout_seconds=0)
    breaker = breakers.for_type(ActionType.NOTIFY)

    with pytest.raises(RuntimeError):
        breaker.call(_raise, "smtp down")

    assert breaker.call(lambda: "sent") == "sent"
    assert breakers.states() == {"NOTIFY": "closed"}
    assert breaker.failure_count == 0


def test_open_circuit_is_never_retried() -> None:
    breakers = ActionCircuitBreakers(failure_threshold=1, recovery_timeout_seconds=60)
    breaker = breakers.for_type(ActionType.WEBHOOK)
    with pytest.raises(RuntimeError):
        breaker.call(_raise, "bad gateway")

    with pytest.raises(CircuitBreakerError) as excinfo:
        breaker.call(lambda: "unreachable")

    policy = RetryPolicy(retry_on=[RetryOn.TIMEOUT, RetryOn.ERROR])
    assert not is_retryable(policy, excinfo.value)
