"""Retry and circuit breaking around action invocations.

Retries follow an action's :class:`RetryPolicy` and are driven by tenacity.
Circuit breakers are shared per action type, so an integration that keeps
failing fails fast for every workflow until its recovery timeout elapses.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from circuitbreaker import CircuitBreaker, CircuitBreakerError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from .errors import ActionTimeoutError
from .models import ActionType, RetryOn, RetryPolicy

logger = logging.getLogger(__name__)


def is_retryable(policy: RetryPolicy, error: BaseException) -> bool:
    if isinstance(error, CircuitBreakerError):
        return False
    if isinstance(error, ActionTimeoutError):
        return RetryOn.TIMEOUT in policy.retry_on
    if not isinstance(error, Exception):
        return False
    return RetryOn.ERROR in policy.retry_on


def _log_retry(retry_state: RetryCallState, log_context: Mapping[str, Any]) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Action attempt failed; retrying",
        extra={
            **log_context,
            "attempt": retry_state.attempt_number,
            "next_delay_seconds": (
                retry_state.next_action.sleep if retry_state.next_action else None
            ),
            "error": str(error) if error else None,
        },
    )


def build_retrying(
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], object],
    should_stop: Callable[[], bool] = lambda: False,
    log_context: Mapping[str, Any] | None = None,
) -> Retrying:
    """Return a tenacity controller that re-raises the last failure when exhausted.

    ``should_stop`` is consulted after every failed attempt; returning True
    ends the retries early (used for cancellation).
    """

    return Retrying(
        stop=stop_any(
            stop_after_attempt(policy.max_attempts),
            lambda _state: should_stop(),
        ),
        wait=wait_exponential(
            multiplier=policy.initial_delay_seconds,
            exp_base=policy.backoff_multiplier,
            max=policy.max_delay_seconds,
        ),
        retry=retry_if_exception(lambda e: is_retryable(policy, e)),
        sleep=sleep,
        before_sleep=lambda state: _log_retry(state, log_context or {}),
        reraise=True,
    )


class ActionCircuitBreakers:
    """One circuit breaker per action type, created on first use."""

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 30.0,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout_seconds
        self._breakers: dict[ActionType, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def for_type(self, action_type: ActionType) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(action_type)
            if breaker is None:
                breaker = CircuitBreaker(
                    failure_threshold=self._failure_threshold,
                    recovery_timeout=self._recovery_timeout,
                    expected_exception=Exception,
                    name=f"action:{action_type.value}",
                )
                self._breakers[action_type] = breaker
            return breaker

    def states(self) -> dict[str, str]:
        with self._lock:
            return {t.value: b.state for t, b in self._breakers.items()}
