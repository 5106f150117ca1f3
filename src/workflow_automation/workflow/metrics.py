from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field

from .models import ExecutionStatus, WorkflowExecution


@dataclass(frozen=True, slots=True)
class WorkflowMetrics:
    workflow_id: str
    total: int
    by_status: dict[str, int]
    success_rate: float | None
    average_duration_ms: float | None
    last_status: str | None


@dataclass
class _Bucket:
    statuses: Counter[ExecutionStatus] = field(default_factory=Counter)
    durations_ms: list[float] = field(default_factory=list)
    last_status: ExecutionStatus | None = None


class ExecutionMetrics:
    """In-process counters of finished executions, per workflow."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[str, _Bucket] = {}

    def record(self, execution: WorkflowExecution) -> None:
        if not execution.is_terminal:
            return
        duration_ms: float | None = None
        if execution.started_at is not None and execution.completed_at is not None:
            duration_ms = (execution.completed_at - execution.started_at).total_seconds() * 1000.0

        with self._lock:
            bucket = self._buckets.setdefault(execution.workflow_id, _Bucket())
            bucket.statuses[execution.status] += 1
            bucket.last_status = execution.status
            if duration_ms is not None:
                bucket.durations_ms.append(duration_ms)

    def snapshot(self, workflow_id: str) -> WorkflowMetrics:
        with self._lock:
            bucket = self._buckets.get(workflow_id, _Bucket())
            statuses = Counter(bucket.statuses)
            durations = list(bucket.durations_ms)
            last_status = bucket.last_status

        total = sum(statuses.values())
        finished = statuses[ExecutionStatus.COMPLETED] + statuses[ExecutionStatus.FAILED]
        return WorkflowMetrics(
            workflow_id=workflow_id,
            total=total,
            by_status={status.value: statuses[status] for status in ExecutionStatus},
            success_rate=(statuses[ExecutionStatus.COMPLETED] / finished) if finished else None,
            average_duration_ms=(sum(durations) / len(durations)) if durations else None,
            last_status=last_status.value if last_status is not None else None,
        )
