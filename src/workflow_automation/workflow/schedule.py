"""Cron occurrences and the "last fired occurrence" ledger for schedule triggers.

Occurrences are computed with APScheduler's :class:`CronTrigger` in the
workflow's timezone. The ledger records, per workflow, the latest occurrence
that was dispatched; claiming an occurrence is atomic so concurrent evaluators
and restarted processes never fire the same occurrence twice.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

from apscheduler.triggers.cron import CronTrigger

from .errors import DuplicateOccurrenceError

logger = logging.getLogger(__name__)


def build_cron_trigger(expression: str, timezone: str) -> CronTrigger:
    """Parse a five-field crontab expression; raises ``ValueError`` when malformed."""

    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Cron expression must have 5 fields, got {len(fields)}: {expression!r}")
    return CronTrigger.from_crontab(expression, timezone=timezone)


def due_occurrence(
    trigger: CronTrigger,
    *,
    at: datetime,
    last_fired: datetime | None,
    grace: timedelta,
) -> datetime | None:
    """Return the earliest occurrence in ``(max(at - grace, last_fired), at]``, if any.

    ``at`` must be timezone-aware. Occurrences older than the grace window are
    skipped; a missed backlog is caught up one occurrence per tick.
    """

    window_start = at - grace
    if last_fired is not None and last_fired >= window_start:
        window_start = last_fired + timedelta(seconds=1)
    occurrence = trigger.get_next_fire_time(None, window_start)
    if occurrence is None or occurrence > at:
        return None
    return occurrence


def next_occurrence(trigger: CronTrigger, *, after: datetime) -> datetime | None:
    return trigger.get_next_fire_time(None, after + timedelta(seconds=1))


class ScheduleLedger(Protocol):
    def last_fired(self, workflow_id: str) -> datetime | None: ...

    def claim(self, workflow_id: str, occurrence: datetime) -> None:
        """Record ``occurrence`` as fired or raise :class:`DuplicateOccurrenceError`."""
        ...


class InMemoryScheduleLedger:
    def __init__(self) -> None:
        self._fired: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def last_fired(self, workflow_id: str) -> datetime | None:
        with self._lock:
            return self._fired.get(workflow_id)

    def claim(self, workflow_id: str, occurrence: datetime) -> None:
        with self._lock:
            previous = self._fired.get(workflow_id)
            if previous is not None and occurrence <= previous:
                raise DuplicateOccurrenceError(workflow_id=workflow_id, occurrence=occurrence)
            self._fired[workflow_id] = occurrence


class JsonScheduleLedger:
    """JSON-file backed ledger so restarts do not refire dispatched occurrences."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def _load_unlocked(self) -> dict[str, datetime]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Schedule ledger is not valid JSON; treating as empty",
                extra={"path": str(self._path)},
            )
            return {}
        if not isinstance(raw, dict):
            return {}
        fired: dict[str, datetime] = {}
        for workflow_id, value in raw.items():
            if not isinstance(value, str):
                continue
            try:
                fired[workflow_id] = datetime.fromisoformat(value)
            except ValueError:
                continue
        return fired

    def _save_unlocked(self, fired: dict[str, datetime]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {workflow_id: value.isoformat() for workflow_id, value in fired.items()}
        self._path.write_text(
            json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )

    def last_fired(self, workflow_id: str) -> datetime | None:
        with self._lock:
            return self._load_unlocked().get(workflow_id)

    def claim(self, workflow_id: str, occurrence: datetime) -> None:
        with self._lock:
            fired = self._load_unlocked()
            previous = fired.get(workflow_id)
            if previous is not None and occurrence <= previous:
                raise DuplicateOccurrenceError(workflow_id=workflow_id, occurrence=occurrence)
            fired[workflow_id] = occurrence
            self._save_unlocked(fired)
