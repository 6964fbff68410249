"""Rule store — the engine's source of rule snapshots.

The engine only needs ``list_rules`` and ``record_trigger``; CRUD lives here so
the in-memory store can stand in for the admin API's database in tests and
in the CLI.
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Protocol, runtime_checkable

from .models import AlertRule, RuleNotFoundError, RuleValidationError, validate_rule

logger = logging.getLogger(__name__)


@runtime_checkable
class RuleStore(Protocol):
    def list_rules(self) -> list[AlertRule]:
        """Return copies of every rule (enabled or not)."""
        ...

    def record_trigger(self, rule_id: int, now: float) -> None:
        """Increment trigger_count and set last_triggered for a real firing."""
        ...


class InMemoryRuleStore:
    """Thread-safe rule store backed by a dict.

    Usage::

        store = InMemoryRuleStore()
        store.create(AlertRule(id=1, name="errors", actions=[LogAction()]))
        store.toggle(1)
    """

    def __init__(self, rules: Iterable[AlertRule] = ()) -> None:
        self._lock = threading.Lock()
        self._rules: dict[int, AlertRule] = {}
        for rule in rules:
            self.create(rule)

    # ------------------------------------------------------------------
    # Snapshot contract
    # ------------------------------------------------------------------

    def list_rules(
        self, enabled: bool | None = None, event_type: str | None = None
    ) -> list[AlertRule]:
        """Return rule copies, highest priority first.

        ``enabled`` and ``event_type`` filter the listing like the admin
        API's query parameters do.
        """
        with self._lock:
            rules = [r.copy() for r in self._rules.values()]
        if enabled is not None:
            rules = [r for r in rules if r.is_enabled == enabled]
        if event_type is not None:
            rules = [r for r in rules if r.event_type == event_type]
        rules.sort(key=lambda r: (-r.priority, r.id))
        return rules

    def record_trigger(self, rule_id: int, now: float) -> None:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                # deleted after it was matched; the firing still stands
                logger.debug("Trigger recorded for deleted rule %s ignored", rule_id)
                return
            rule.trigger_count += 1
            rule.last_triggered = now

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def get(self, rule_id: int) -> AlertRule:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise RuleNotFoundError(f"Alert rule {rule_id} not found")
            return rule.copy()

    def create(self, rule: AlertRule) -> AlertRule:
        validate_rule(rule)
        with self._lock:
            if rule.id in self._rules:
                raise RuleValidationError(f"Alert rule {rule.id} already exists")
            self._rules[rule.id] = rule.copy()
        return rule.copy()

    def update(self, rule_id: int, **changes: Any) -> AlertRule:
        """Apply field changes; counters cannot be edited through here."""
        forbidden = {"id", "trigger_count", "last_triggered"} & changes.keys()
        if forbidden:
            raise RuleValidationError(f"Fields not editable: {', '.join(sorted(forbidden))}")
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise RuleNotFoundError(f"Alert rule {rule_id} not found")
            updated = current.copy()
            for key, value in changes.items():
                if not hasattr(updated, key):
                    raise RuleValidationError(f"Unknown rule field {key!r}")
                setattr(updated, key, value)
            validate_rule(updated)
            self._rules[rule_id] = updated
            return updated.copy()

    def toggle(self, rule_id: int) -> AlertRule:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise RuleNotFoundError(f"Alert rule {rule_id} not found")
            updated = current.copy()
            updated.is_enabled = not updated.is_enabled
            validate_rule(updated)
            self._rules[rule_id] = updated
            return updated.copy()

    def delete(self, rule_id: int) -> None:
        with self._lock:
            if self._rules.pop(rule_id, None) is None:
                raise RuleNotFoundError(f"Alert rule {rule_id} not found")

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)


def load_rules_file(path: str | Path) -> InMemoryRuleStore:
    """Load a JSON array of rules (admin API shape) into a new store.

    Raises RuleValidationError naming the offending rule on bad content.
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RuleValidationError(f"{path}: not valid JSON: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise RuleValidationError(f"{path}: expected a JSON array of rules")
    return InMemoryRuleStore(AlertRule.from_dict(item) for item in data)
