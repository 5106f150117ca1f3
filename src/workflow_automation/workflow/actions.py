from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import UnknownActionTypeError
from .models import ActionType

logger = logging.getLogger(__name__)


class ActionExecutor(Protocol):
    """Carries out one action type's side effect.

    Receives the action config with templates already resolved. Returning a
    value means success (the value is recorded as the action's result);
    raising means failure.
    """

    def execute(self, config: dict[str, Any]) -> Any: ...


class ActionExecutorRegistry:
    """Maps each action type to the executor that performs it."""

    def __init__(self, executors: Mapping[ActionType, ActionExecutor] | None = None) -> None:
        self._executors: dict[ActionType, ActionExecutor] = dict(executors or {})
        self._lock = threading.Lock()

    def register(self, action_type: ActionType, executor: ActionExecutor) -> None:
        with self._lock:
            if action_type in self._executors:
                logger.info(
                    "Replacing action executor", extra={"action_type": action_type.value}
                )
            self._executors[action_type] = executor

    def resolve(self, action_type: ActionType) -> ActionExecutor:
        with self._lock:
            executor = self._executors.get(action_type)
        if executor is None:
            raise UnknownActionTypeError(
                f"No executor registered for action type {action_type.value}"
            )
        return executor

    def registered_types(self) -> list[ActionType]:
        with self._lock:
            return sorted(self._executors, key=lambda t: t.value)

    def __contains__(self, action_type: object) -> bool:
        with self._lock:
            return action_type in self._executors


@dataclass(slots=True)
class LoggingActionExecutor:
    """Records the resolved config instead of touching an external system.

    Used by the CLI and for dry runs where no real integrations are wired.
    """

    action_type: ActionType
    calls: list[dict[str, Any]] = field(default_factory=list)

    def execute(self, config: dict[str, Any]) -> Any:
        self.calls.append(dict(config))
        logger.info(
            "Action executed",
            extra={"action_type": self.action_type.value, "config": config},
        )
        return {"action_type": self.action_type.value, "config": config}


def logging_registry(
    action_types: Iterable[ActionType] = tuple(ActionType),
) -> ActionExecutorRegistry:
    return ActionExecutorRegistry({t: LoggingActionExecutor(action_type=t) for t in action_types})
