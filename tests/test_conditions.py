"""Tests for the condition evaluator and rule test mode."""
from __future__ import annotations

import pytest

from ircalert.engine.dryrun import dry_run
from ircalert.events.normalizer import normalize
from ircalert.rules.conditions import evaluate, evaluate_condition, precompile
from ircalert.rules.models import AlertCondition, RuleValidationError


def _event(**fields):
    return normalize(fields, now="2025-08-01T00:00:00Z")


class TestOperators:
    @pytest.mark.parametrize(
        "operator, value, actual, expected",
        [
            ("equals", "ERROR", "error", True),
            ("equals", "error", "errors", False),
            ("not_equals", "info", "error", True),
            ("not_equals", "INFO", "info", False),
            ("contains", "DISK", "disk full", True),
            ("not_contains", "spam", "hello", True),
            ("not_contains", "SPAM", "spam!", False),
            ("starts_with", "link", "Link denied", True),
            ("ends_with", "NET", "hub.example.net", True),
            ("ends_with", "org", "hub.example.net", False),
            ("regex", r"^Link \w+", "Link denied", True),
            ("regex", r"^link", "Link denied", False),
            ("gt", "10", "11", True),
            ("gt", "10", "10", False),
            ("lt", "1.5", "0.25", True),
            ("in", "warn, error,fatal", "ERROR", True),
            ("in", "warn,error", "info", False),
        ],
    )
    def test_operator(self, operator, value, actual, expected) -> None:
        result = evaluate_condition(AlertCondition("message", operator, value), _event(message=actual))
        assert result.matched is expected
        assert not result.invalid

    def test_gt_non_numeric_actual_is_plain_mismatch(self) -> None:
        result = evaluate_condition(AlertCondition("users", "gt", "5"), _event(users="many"))
        assert not result.matched
        assert not result.invalid

    def test_gt_non_numeric_threshold_is_invalid(self) -> None:
        result = evaluate_condition(AlertCondition("users", "gt", "lots"), _event(users=3))
        assert not result.matched
        assert result.invalid

    def test_numeric_extra_field(self) -> None:
        result = evaluate_condition(AlertCondition("users", "gt", "100"), _event(users=250))
        assert result.matched
        assert result.actual == "250"

    def test_invalid_regex_flagged(self) -> None:
        result = evaluate_condition(AlertCondition("message", "regex", "(unclosed"), _event(message="x"))
        assert not result.matched
        assert result.invalid
        assert "regex" in (result.error or "")

    def test_unknown_operator_flagged(self) -> None:
        result = evaluate_condition(AlertCondition("level", "approximately", "error"), _event(level="error"))
        assert not result.matched
        assert result.invalid
        assert "approximately" in (result.error or "")

    def test_missing_field_reads_empty(self) -> None:
        result = evaluate_condition(AlertCondition("nick", "equals", ""), _event())
        assert result.actual == ""
        assert result.matched


class TestEvaluate:
    def test_empty_conditions_match(self) -> None:
        matched, results = evaluate([], _event(level="info"))
        assert matched
        assert results == ()

    def test_and_semantics(self) -> None:
        conditions = [
            AlertCondition("level", "equals", "error"),
            AlertCondition("subsystem", "equals", "link"),
            AlertCondition("message", "contains", "denied"),
        ]
        event = _event(level="error", subsystem="link", message="Link denied")
        matched, results = evaluate(conditions, event)
        assert matched
        assert all(r.matched for r in results)

        for i in range(len(conditions)):
            flipped = list(conditions)
            flipped[i] = AlertCondition(conditions[i].field, "not_equals" if conditions[i].operator == "equals" else "not_contains", conditions[i].value)
            matched, results = evaluate(flipped, event)
            assert not matched
            assert [r.matched for r in results].count(False) == 1

    def test_pure(self) -> None:
        conditions = [AlertCondition("message", "regex", "disk"), AlertCondition("level", "equals", "error")]
        event = _event(level="error", message="disk full")
        assert evaluate(conditions, event) == evaluate(conditions, event)

    def test_bad_condition_does_not_stop_others(self) -> None:
        conditions = [AlertCondition("message", "regex", "(unclosed"), AlertCondition("level", "equals", "error")]
        matched, results = evaluate(conditions, _event(level="error"))
        assert not matched
        assert results[0].invalid
        assert results[1].matched

    def test_precompile_reports_bad_patterns(self) -> None:
        errors = precompile([AlertCondition("message", "regex", "(unclosed"), AlertCondition("message", "regex", "ok")])
        assert len(errors) == 1
        assert "(unclosed" in errors[0]


class TestDryRun:
    def test_contains_scenario(self) -> None:
        result = dry_run(
            [{"field": "message", "operator": "contains", "value": "spam"}],
            {"message": "this is spam content"},
        )
        assert result.to_dict() == {
            "all_matched": True,
            "results": [
                {
                    "field": "message",
                    "operator": "contains",
                    "expected": "spam",
                    "actual": "this is spam content",
                    "matched": True,
                    "invalid": False,
                    "error": None,
                }
            ],
        }

    def test_bad_regex_returned_not_raised(self) -> None:
        result = dry_run([AlertCondition("message", "regex", "(unclosed")], {"message": "x"})
        assert not result.all_matched
        assert result.results[0].invalid

    @pytest.mark.parametrize("item", ["level", 3, ["level", "equals", "error"]])
    def test_non_object_condition_rejected(self, item) -> None:
        with pytest.raises(RuleValidationError, match="must be an object"):
            dry_run([item], {"level": "error"})

    def test_absent_field_has_no_default(self) -> None:
        result = dry_run([AlertCondition("level", "equals", "info")], {})
        assert result.results[0].actual == ""
        assert not result.all_matched
