"""Sequential action pipeline for a single execution.

Actions run strictly in ascending ``order``, one at a time. Each executor call
gets its own daemon thread and is bounded by a timeout measured from the
moment the call starts. A call that overruns is abandoned to its thread, so a
hung integration never holds capacity other executions need. Failures of any
kind, duplicate orders included, are turned into failed :class:`ActionResult`
records; nothing escapes ``run``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from enum import Enum
from typing import Any

from circuitbreaker import CircuitBreakerError

from .actions import ActionExecutor, ActionExecutorRegistry
from .context import ExecutionContext
from .errors import ActionExecutionError, ActionTimeoutError, UnknownActionTypeError
from .models import ActionResult, ExecutionStatus, WorkflowAction, utc_now
from .resilience import ActionCircuitBreakers, build_retrying
from .templates import TemplateResolver

logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    CONTINUE = "continue"
    HALT = "halt"


class CancellationToken:
    """Cooperative cancel flag shared by the manager and one pipeline run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True early if cancelled meanwhile."""

        return self._event.wait(timeout=seconds)


@dataclass(frozen=True, slots=True)
class PipelineOutcome:
    status: ExecutionStatus
    actions_executed: tuple[ActionResult, ...]
    error: str | None = None


ResultCallback = Callable[[ActionResult], None]


def _failure_summary(results: Sequence[ActionResult]) -> str | None:
    failed = [r for r in results if not r.success]
    if not failed:
        return None
    parts = [f"{r.action_type.value}#{r.order}: {r.error}" for r in failed]
    return f"{len(failed)} of {len(results)} actions failed: " + "; ".join(parts)




class ActionPipeline:
    def __init__(
        self,
        registry: ActionExecutorRegistry,
        *,
        resolver: TemplateResolver | None = None,
        breakers: ActionCircuitBreakers | None = None,
        default_timeout_seconds: float | None = 30.0,
        failure_policy: FailurePolicy = FailurePolicy.CONTINUE,
    ) -> None:
        self._registry = registry
        self._resolver = resolver or TemplateResolver()
        self._breakers = breakers
        self._default_timeout = default_timeout_seconds
        self._policy = failure_policy

    def run(
        self,
        actions: Sequence[WorkflowAction],
        context: ExecutionContext,
        token: CancellationToken | None = None,
        *,
        on_result: ResultCallback | None = None,
    ) -> PipelineOutcome:
        token = token or CancellationToken()
        results: list[ActionResult] = []
        seen_orders: set[int] = set()

        for action in sorted(actions, key=lambda a: a.order):
            if token.is_cancelled:
                logger.info(
                    "Cancellation observed; skipping remaining actions",
                    extra={"next_order": action.order, "completed": len(results)},
                )
                return PipelineOutcome(
                    status=ExecutionStatus.CANCELLED,
                    actions_executed=tuple(results),
                    error="Cancelled",
                )

            if action.order in seen_orders:
                logger.warning(
                    "Duplicate action order; not executed",
                    extra={"order": action.order, "action_type": action.type.value},
                )
                result = ActionResult(
                    action_type=action.type,
                    order=action.order,
                    success=False,
                    error=f"Duplicate action order {action.order}; action not executed",
                    attempts=0,
                )
            else:
                result = self._run_action(action, context, token)
                context.record(result)
            seen_orders.add(action.order)
            results.append(result)
            if on_result is not None:
                on_result(result)

            if not result.success and self._policy == FailurePolicy.HALT:
                logger.info(
                    "Action failed; halting pipeline",
                    extra={"order": action.order, "action_type": action.type.value},
                )
                break

        error = _failure_summary(results)
        status = ExecutionStatus.FAILED if error else ExecutionStatus.COMPLETED
        return PipelineOutcome(status=status, actions_executed=tuple(results), error=error)

    def _run_action(
        self,
        action: WorkflowAction,
        context: ExecutionContext,
        token: CancellationToken,
    ) -> ActionResult:
        executed_at = utc_now()
        started = time.monotonic()
        attempts = 0
        log_extra = {"order": action.order, "action_type": action.type.value}

        def _result(
            *, success: bool, result: Any = None, error: str | None = None
        ) -> ActionResult:
            return ActionResult(
                action_type=action.type,
                order=action.order,
                success=success,
                result=result,
                error=error,
                executed_at=executed_at,
                duration_ms=(time.monotonic() - started) * 1000.0,
                attempts=attempts,
            )

        try:
            executor = self._registry.resolve(action.type)
        except UnknownActionTypeError as e:
            logger.warning("No executor for action type", extra=log_extra)
            return _result(success=False, error=str(e))

        config = self._resolver.resolve_config(action.config, context)
        timeout = action.timeout_seconds or self._default_timeout
        breaker = self._breakers.for_type(action.type) if self._breakers else None

        def _attempt() -> Any:
            nonlocal attempts
            if attempts and token.is_cancelled:
                raise ActionExecutionError("Cancelled before retry")
            attempts += 1
            if breaker is None:
                return self._invoke(executor, config, action, timeout)
            return breaker.call(self._invoke, executor, config, action, timeout)

        try:
            if action.retry_policy is None:
                value = _attempt()
            else:
                retrying = build_retrying(
                    action.retry_policy,
                    sleep=token.wait,
                    should_stop=lambda: token.is_cancelled,
                    log_context=log_extra,
                )
                for attempt in retrying:
                    with attempt:
                        value = _attempt()
        except CircuitBreakerError as e:
            logger.warning("Circuit open; action not executed", extra=log_extra)
            return _result(success=False, error=str(e))
        except ActionTimeoutError as e:
            logger.warning(
                "Action timed out", extra={**log_extra, "timeout_seconds": timeout}
            )
            return _result(success=False, error=str(e))
        except Exception as e:
            logger.warning("Action failed", extra={**log_extra, "error": str(e)})
            return _result(success=False, error=str(e) or type(e).__name__)

        logger.debug("Action succeeded", extra={**log_extra, "attempts": attempts})
        return _result(success=True, result=value)

    def _invoke(
        self,
        executor: ActionExecutor,
        config: dict[str, Any],
        action: WorkflowAction,
        timeout: float | None,
    ) -> Any:
        """Run one executor call on its own daemon thread and wait up to ``timeout``.

        The clock starts when the thread does. An overrunning call keeps its
        thread until it returns on its own; its late result is discarded.
        """

        future: Future[Any] = Future()

        def _call() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(executor.execute(config))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(
            target=_call,
            name=f"workflow-action-{action.type.value.lower()}-{action.order}",
            daemon=True,
        ).start()

        done, _ = wait_futures([future], timeout=timeout)
        if not done:
            raise ActionTimeoutError(f"Action timed out after {timeout:g}s")
        return future.result()
