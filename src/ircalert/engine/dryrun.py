"""Rule test mode — evaluate conditions against sample fields, no side effects."""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from ..events.normalizer import synthetic_event
from ..rules.conditions import TestResult, evaluate
from ..rules.models import AlertCondition


def _as_condition(item: AlertCondition | Mapping[str, Any]) -> AlertCondition:
    if isinstance(item, AlertCondition):
        return item
    return AlertCondition.from_dict(item)


def dry_run(
    conditions: Iterable[AlertCondition | Mapping[str, Any]],
    sample_fields: Mapping[str, Any],
) -> TestResult:
    """Run conditions against caller-supplied fields.

    Bad conditions (e.g. an unclosed regex) come back as ``invalid`` results
    rather than exceptions.
    """
    event = synthetic_event(sample_fields)
    all_matched, results = evaluate([_as_condition(c) for c in conditions], event)
    return TestResult(all_matched=all_matched, results=results)
