"""Condition matching with trace generation.

Every check fails closed: a condition that refers to a context value the
caller did not supply never matches.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any, Callable

from universal_config.core.models import FieldCondition, RuleConditions, TraceStep
from universal_config.core.timeparse import Moment, in_time_range, normalize_weekday, parse_moment
from universal_config.families.registry import FamilyDefinition

logger = logging.getLogger(__name__)

OPERATORS = frozenset({
    "==", "!=", ">", "<", ">=", "<=",
    "contains", "starts_with", "ends_with", "regex",
    "in", "not_in", "exists",
})

THRESHOLD_SUFFIXES = ("_below", "_above")

_MISSING = object()


def get_path(context: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path into nested mappings; returns _MISSING if absent."""
    value: Any = context
    for key in path.split("."):
        if not isinstance(value, Mapping) or key not in value:
            return _MISSING
        value = value[key]
    return _MISSING if value is None else value


def threshold_metric(key: str) -> tuple[str, str] | None:
    """Split ``utilization_below`` into ``("utilization", "_below")``."""
    for suffix in THRESHOLD_SUFFIXES:
        if key.endswith(suffix) and len(key) > len(suffix):
            return key[: -len(suffix)], suffix
    return None


class ConditionMatcher:
    """Decides whether a rule's conditions hold for a context."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def matches(
        self,
        conditions: RuleConditions | Mapping[str, Any],
        context: Mapping[str, Any],
        family: FamilyDefinition | None = None,
        now: datetime | None = None,
    ) -> bool:
        matched, _ = self.explain(conditions, context, family, now)
        return matched

    def explain(
        self,
        conditions: RuleConditions | Mapping[str, Any],
        context: Mapping[str, Any],
        family: FamilyDefinition | None = None,
        now: datetime | None = None,
    ) -> tuple[bool, list[TraceStep]]:
        """Evaluate conditions and return the outcome with the checks performed.

        Stops at the first failing check.
        """
        if not isinstance(conditions, RuleConditions):
            conditions = RuleConditions.model_validate(dict(conditions))

        trace: list[TraceStep] = []
        moment = self._reference_moment(context, family)
        today = self._today(moment, now)

        checks = [
            self._check_effective_window(conditions, today),
            self._check_days_of_week(conditions, moment),
            self._check_time_ranges(conditions, moment),
        ]
        for check in checks:
            if check is None:
                continue
            trace.append(check)
            if not check.result:
                return False, trace

        for key, expected in sorted((conditions.match or {}).items()):
            step = self._check_equality(f"match.{key}", key, expected, context)
            trace.append(step)
            if not step.result:
                return False, trace

        for i, cond in enumerate(conditions.all or []):
            step = self._check_field_condition(cond, context, f"all[{i}]")
            trace.append(step)
            if not step.result:
                return False, trace

        for key, expected in sorted(conditions.extra_conditions().items()):
            if family is not None and not family.is_condition_key(key):
                logger.warning(
                    "Ignoring unknown condition key '%s' for family '%s'", key, family.name
                )
                trace.append(TraceStep(
                    node=key, condition=f"{key} (unknown, ignored)", result=True
                ))
                continue
            step = self._check_extra(key, expected, context)
            trace.append(step)
            if not step.result:
                return False, trace

        return True, trace

    # =========================================================================
    # Time conditions
    # =========================================================================

    def _reference_moment(
        self, context: Mapping[str, Any], family: FamilyDefinition | None
    ) -> Moment | None:
        if family is not None and family.time_key:
            return parse_moment(context.get(family.time_key))
        return None

    def _today(self, moment: Moment | None, now: datetime | None) -> date:
        if moment is not None and moment.day is not None:
            return moment.day
        return (now or self.clock()).date()

    def _check_effective_window(self, conditions: RuleConditions, today: date) -> TraceStep | None:
        start, end = conditions.effective_from, conditions.effective_to
        if start is None and end is None:
            return None
        result = (start is None or start <= today) and (end is None or today <= end)
        return TraceStep(
            node="effective_window",
            condition=f"{start or '-inf'} <= date <= {end or '+inf'}",
            result=result,
            value_checked=today.isoformat(),
        )

    def _check_days_of_week(
        self, conditions: RuleConditions, moment: Moment | None
    ) -> TraceStep | None:
        if not conditions.days_of_week:
            return None
        allowed = {normalize_weekday(d) for d in conditions.days_of_week}
        weekday = moment.weekday if moment else None
        return TraceStep(
            node="days_of_week",
            condition=f"weekday in {sorted(d for d in allowed if d)}",
            result=weekday is not None and weekday in allowed,
            value_checked=weekday,
        )

    def _check_time_ranges(
        self, conditions: RuleConditions, moment: Moment | None
    ) -> TraceStep | None:
        if not conditions.time_ranges:
            return None
        clock = moment.clock if moment else None
        result = clock is not None and any(
            in_time_range(clock, r.start, r.end) for r in conditions.time_ranges
        )
        ranges = ", ".join(f"{r.start}-{r.end}" for r in conditions.time_ranges)
        return TraceStep(
            node="time_ranges",
            condition=f"time in [{ranges}]",
            result=result,
            value_checked=clock.strftime("%H:%M") if clock else None,
        )

    # =========================================================================
    # Context conditions
    # =========================================================================

    def _check_extra(self, key: str, expected: Any, context: Mapping[str, Any]) -> TraceStep:
        split = threshold_metric(key)
        if split is None:
            return self._check_equality(key, key, expected, context)

        metric, suffix = split
        actual = get_path(context, metric)
        result = False
        if actual is not _MISSING and _is_number(actual) and _is_number(expected):
            result = actual < expected if suffix == "_below" else actual > expected
        op = "<" if suffix == "_below" else ">"
        return TraceStep(
            node=key,
            condition=f"{metric} {op} {expected}",
            result=result,
            value_checked=None if actual is _MISSING else actual,
        )

    def _check_equality(
        self, node: str, path: str, expected: Any, context: Mapping[str, Any]
    ) -> TraceStep:
        actual = get_path(context, path)
        result = False
        if actual is not _MISSING:
            actual_values = actual if isinstance(actual, (list, tuple, set)) else [actual]
            expected_values = expected if isinstance(expected, (list, tuple, set)) else [expected]
            result = any(_loose_equal(a, e) for a in actual_values for e in expected_values)
        return TraceStep(
            node=node,
            condition=f"{path} in {expected!r}" if isinstance(expected, list) else f"{path} == {expected!r}",
            result=result,
            value_checked=None if actual is _MISSING else actual,
        )

    def _check_field_condition(
        self, cond: FieldCondition, context: Mapping[str, Any], node: str
    ) -> TraceStep:
        actual = get_path(context, cond.field)
        op = cond.operator
        expected = cond.value
        result = False

        if op == "exists":
            result = (actual is not _MISSING) == (expected is not False)
        elif actual is _MISSING:
            result = False
        elif op not in OPERATORS:
            logger.warning("Unknown condition operator '%s' on field '%s'", op, cond.field)
            result = False
        else:
            try:
                result = _compare(op, actual, expected)
            except (TypeError, re.error):
                result = False

        return TraceStep(
            node=node,
            condition=f"{cond.field} {op} {expected!r}",
            result=result,
            value_checked=None if actual is _MISSING else actual,
        )


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "==":
        return _loose_equal(actual, expected)
    if op == "!=":
        return not _loose_equal(actual, expected)
    if op == ">":
        return actual > expected
    if op == "<":
        return actual < expected
    if op == ">=":
        return actual >= expected
    if op == "<=":
        return actual <= expected
    if op == "contains":
        if isinstance(actual, (list, tuple, set)):
            return expected in actual
        return str(expected) in str(actual)
    if op == "starts_with":
        return str(actual).startswith(str(expected))
    if op == "ends_with":
        return str(actual).endswith(str(expected))
    if op == "regex":
        return re.search(str(expected), str(actual)) is not None
    if op == "in":
        return isinstance(expected, (list, tuple, set)) and actual in expected
    if op == "not_in":
        return isinstance(expected, (list, tuple, set)) and actual not in expected
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _loose_equal(actual: Any, expected: Any) -> bool:
    """Equality that ignores case for strings."""
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.lower() == expected.lower()
    return actual == expected
