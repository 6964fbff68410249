"""Condition evaluator — the single matching path for live and test mode.

``evaluate`` is total and side-effect-free: malformed conditions (bad regex,
unknown operator, non-numeric threshold) degrade to ``matched=False`` with an
``invalid`` flag instead of raising, so one broken rule never takes the
engine down.
"""
from __future__ import annotations

import functools
import re
from dataclasses import asdict, dataclass
from typing import Any, Iterable

from ..events.normalizer import Event, to_text
from .models import AlertCondition


@dataclass(frozen=True)
class ConditionResult:
    field: str
    operator: str
    expected: str
    actual: str
    matched: bool
    invalid: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TestResult:
    all_matched: bool
    results: tuple[ConditionResult, ...]

    __test__ = False  # not a pytest class

    def to_dict(self) -> dict[str, Any]:
        return {
            "all_matched": self.all_matched,
            "results": [r.to_dict() for r in self.results],
        }


@functools.lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a regex condition once; the cache is shared by every rule load."""
    return re.compile(pattern)


def _to_number(text: str) -> float | None:
    try:
        return float(text.strip())
    except ValueError:
        return None


def _check(operator: str, actual: str, expected: str) -> tuple[bool, str | None]:
    """Return (matched, error). A non-None error marks the condition invalid."""
    if operator in ("equals", "not_equals", "contains", "not_contains", "starts_with", "ends_with"):
        a, e = actual.lower(), expected.lower()
        if operator == "equals":
            return a == e, None
        if operator == "not_equals":
            return a != e, None
        if operator == "contains":
            return e in a, None
        if operator == "not_contains":
            return e not in a, None
        if operator == "starts_with":
            return a.startswith(e), None
        return a.endswith(e), None

    if operator == "regex":
        try:
            return compile_pattern(expected).search(actual) is not None, None
        except re.error as exc:
            return False, f"invalid regex: {exc}"

    if operator in ("gt", "lt"):
        threshold = _to_number(expected)
        if threshold is None:
            return False, f"non-numeric threshold {expected!r}"
        value = _to_number(actual)
        if value is None:
            return False, None
        return (value > threshold if operator == "gt" else value < threshold), None

    if operator == "in":
        options = {item.strip().lower() for item in expected.split(",")}
        return actual.strip().lower() in options, None

    return False, f"unknown operator {operator!r}"


def evaluate_condition(condition: AlertCondition, event: Event) -> ConditionResult:
    actual = to_text(event.get(condition.field))
    matched, error = _check(condition.operator, actual, condition.value)
    return ConditionResult(
        field=condition.field,
        operator=condition.operator,
        expected=condition.value,
        actual=actual,
        matched=matched,
        invalid=error is not None,
        error=error,
    )


def evaluate(
    conditions: Iterable[AlertCondition], event: Event
) -> tuple[bool, tuple[ConditionResult, ...]]:
    """Evaluate every condition against event; AND the results.

    All conditions are evaluated (no short-circuit) so callers always get a
    full per-condition report. An empty condition list matches.
    """
    results = tuple(evaluate_condition(c, event) for c in conditions)
    return all(r.matched for r in results), results


def precompile(conditions: Iterable[AlertCondition]) -> list[str]:
    """Warm the pattern cache for a rule's regex conditions.

    Returns the error messages of patterns that fail to compile, for logging
    at rule load time.
    """
    errors: list[str] = []
    for condition in conditions:
        if condition.operator != "regex":
            continue
        try:
            compile_pattern(condition.value)
        except re.error as exc:
            errors.append(f"{condition.field}: {condition.value!r}: {exc}")
    return errors
