"""Trigger context and dot-path lookup.

Conditions and templates both read values out of the context with the same
path syntax: ``entity.status``, ``signal.health``, ``entity.tags.0`` or
``entity.tags[0]``. A path that does not resolve yields :data:`ABSENT`, never
an error.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field

from .models import ActionResult

_INDEXED_SEGMENT = re.compile(r"^(?P<key>[^\[\]]+)\[(?P<index>\d+)\]$")

# Reserved lookup prefix under which earlier action results are exposed.
ACTIONS_PREFIX = "actions"


class _Absent:
    """Marker for a path that does not resolve."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


def _split_path(path: str) -> list[str]:
    parts: list[str] = []
    for raw in path.strip().split("."):
        segment = raw.strip()
        if not segment:
            return []
        match = _INDEXED_SEGMENT.match(segment)
        if match:
            parts.append(match.group("key"))
            parts.append(match.group("index"))
        else:
            parts.append(segment)
    return parts


def _step(current: object, segment: str) -> object:
    if isinstance(current, Mapping):
        return current.get(segment, ABSENT)
    if isinstance(current, Sequence) and not isinstance(current, (str, bytes, bytearray)):
        if not segment.isdigit():
            return ABSENT
        index = int(segment)
        if index >= len(current):
            return ABSENT
        return current[index]
    return ABSENT


def lookup_path(root: Mapping[str, object], path: str) -> Any:
    """Resolve ``path`` against ``root``; returns ``ABSENT`` when it does not resolve."""

    segments = _split_path(path)
    if not segments:
        return ABSENT

    current: object = root
    for segment in segments:
        current = _step(current, segment)
        if current is ABSENT:
            return ABSENT
    return current


class TriggerContext(BaseModel):
    """Everything a single dispatch knows about what triggered it."""

    event_type: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    entity: dict[str, Any] = Field(default_factory=dict)
    previous_state: dict[str, Any] = Field(default_factory=dict)
    signal: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    # Role of the caller for manual invocations.
    role: str | None = None

    def lookup_root(self) -> dict[str, Any]:
        data = self.model_dump(mode="python")
        return {
            "event": {
                "type": self.event_type,
                "entity_type": self.entity_type,
                "entity_id": self.entity_id,
            },
            "entity": data["entity"],
            "previous_state": data["previous_state"],
            "signal": data["signal"],
            "metadata": data["metadata"],
            "role": self.role,
            "trigger": data,
        }

    def lookup(self, path: str) -> Any:
        return lookup_path(self.lookup_root(), path)

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ExecutionContext:
    """Append-only accumulator for one execution.

    Holds the trigger context as it was at dispatch time plus the results of
    actions that already ran, exposed as ``actions.<order>.{type,success,result,error}``.
    """

    def __init__(self, trigger: TriggerContext) -> None:
        self._trigger = trigger
        self._base = trigger.lookup_root()
        self._outputs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    @property
    def trigger(self) -> TriggerContext:
        return self._trigger

    def record(self, result: ActionResult) -> None:
        key = str(result.order)
        with self._lock:
            if key in self._outputs:
                raise ValueError(f"Action {result.order} already recorded for this execution")
            self._outputs[key] = {
                "type": result.action_type.value,
                "success": result.success,
                "result": result.result,
                "error": result.error,
            }

    def lookup_root(self) -> dict[str, Any]:
        with self._lock:
            outputs = dict(self._outputs)
        return {**self._base, ACTIONS_PREFIX: outputs}

    def lookup(self, path: str) -> Any:
        return lookup_path(self.lookup_root(), path)
