"""Condition evaluation over a trigger context.

Evaluation is pure: no I/O and no mutation, so the same code serves live
dispatch and dry-run tests. Malformed rules (wrong value shape, unparsable
dates or durations, non-numeric operands) evaluate to ``False`` so a broken
condition fails closed instead of interrupting dispatch.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any, Protocol

from .context import ABSENT
from .models import ConditionOperator, ConditionRule, ConditionSet, RuleOperator

logger = logging.getLogger(__name__)

_DURATION = re.compile(r"^\s*(?P<amount>\d+)\s*(?P<unit>[mhd])\s*$")
_DURATION_UNITS: dict[str, str] = {"m": "minutes", "h": "hours", "d": "days"}


class SupportsLookup(Protocol):
    def lookup(self, path: str) -> Any: ...


def values_equal(actual: object, expected: object) -> bool:
    """Structural equality where ABSENT equals nothing and booleans never equal numbers."""

    if actual is ABSENT or expected is ABSENT:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if isinstance(actual, (int, float)) and isinstance(expected, (int, float)):
        return actual == expected
    if isinstance(actual, Mapping) and isinstance(expected, Mapping):
        if actual.keys() != expected.keys():
            return False
        return all(values_equal(actual[k], expected[k]) for k in actual)
    if isinstance(actual, (list, tuple)) and isinstance(expected, (list, tuple)):
        if len(actual) != len(expected):
            return False
        return all(values_equal(a, e) for a, e in zip(actual, expected, strict=True))
    if type(actual) is not type(expected):
        return False
    return actual == expected


def parse_duration(value: object) -> timedelta | None:
    """Parse ``"<n>m"``, ``"<n>h"`` or ``"<n>d"``; anything else is ``None``."""

    if not isinstance(value, str):
        return None
    match = _DURATION.match(value)
    if match is None:
        return None
    unit = _DURATION_UNITS[match.group("unit")]
    return timedelta(**{unit: int(match.group("amount"))})


def parse_instant(value: object) -> datetime | None:
    if isinstance(value, datetime):
        instant = value
    elif isinstance(value, date):
        instant = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            instant = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant


def as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _is_null(actual: object) -> bool:
    return actual is ABSENT or actual is None


class ConditionEvaluator:
    """Evaluate a workflow's :class:`ConditionSet` against a context."""

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._operators: dict[RuleOperator, Callable[[object, object], bool]] = {
            RuleOperator.EQUALS: values_equal,
            RuleOperator.NOT_EQUALS: lambda a, v: not values_equal(a, v),
            RuleOperator.IN: self._in,
            RuleOperator.NOT_IN: self._not_in,
            RuleOperator.CONTAINS: self._contains,
            RuleOperator.GREATER_THAN: self._greater_than,
            RuleOperator.LESS_THAN: self._less_than,
            RuleOperator.OLDER_THAN: self._older_than,
            RuleOperator.NEWER_THAN: self._newer_than,
            RuleOperator.IS_NULL: lambda a, _v: _is_null(a),
            RuleOperator.IS_NOT_NULL: lambda a, _v: not _is_null(a),
        }

    def evaluate(self, conditions: ConditionSet | None, context: SupportsLookup) -> bool:
        if conditions is None or not conditions.rules:
            return True

        results = (self.evaluate_rule(rule, context) for rule in conditions.rules)
        if conditions.operator == ConditionOperator.OR:
            return any(results)
        return all(results)

    def evaluate_rule(self, rule: ConditionRule, context: SupportsLookup) -> bool:
        compare = self._operators.get(rule.operator)
        if compare is None:
            logger.debug("Unsupported rule operator", extra={"operator": str(rule.operator)})
            return False
        actual = context.lookup(rule.field)
        try:
            return bool(compare(actual, rule.value))
        except (TypeError, ValueError, OverflowError):
            logger.debug(
                "Rule evaluation failed; treating as no match",
                extra={"field": rule.field, "operator": rule.operator.value},
                exc_info=True,
            )
            return False

    # Operators

    @staticmethod
    def _in(actual: object, expected: object) -> bool:
        if not isinstance(expected, (list, tuple)) or actual is ABSENT:
            return False
        return any(values_equal(actual, candidate) for candidate in expected)

    @staticmethod
    def _not_in(actual: object, expected: object) -> bool:
        if not isinstance(expected, (list, tuple)):
            return False
        if actual is ABSENT:
            return True
        return not any(values_equal(actual, candidate) for candidate in expected)

    @staticmethod
    def _contains(actual: object, expected: object) -> bool:
        if isinstance(actual, str):
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, (list, tuple)):
            return any(values_equal(item, expected) for item in actual)
        return False

    @staticmethod
    def _greater_than(actual: object, expected: object) -> bool:
        left, right = as_number(actual), as_number(expected)
        return left is not None and right is not None and left > right

    @staticmethod
    def _less_than(actual: object, expected: object) -> bool:
        left, right = as_number(actual), as_number(expected)
        return left is not None and right is not None and left < right

    def _age(self, actual: object) -> timedelta | None:
        instant = parse_instant(actual)
        if instant is None:
            return None
        return self._clock() - instant

    def _older_than(self, actual: object, expected: object) -> bool:
        age, duration = self._age(actual), parse_duration(expected)
        return age is not None and duration is not None and age > duration

    def _newer_than(self, actual: object, expected: object) -> bool:
        age, duration = self._age(actual), parse_duration(expected)
        return age is not None and duration is not None and age <= duration
