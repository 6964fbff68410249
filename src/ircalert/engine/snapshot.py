"""Rule snapshot — the matcher's read view of the rule store.

With ``ttl=0`` the store is re-read for every event, so disabling or
deleting a rule is visible to the very next event. A short positive TTL
trades that for fewer store reads under bursty traffic.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from ..rules.conditions import precompile
from ..rules.models import AlertRule, RuleValidationError, validate_rule
from ..rules.store import RuleStore

logger = logging.getLogger(__name__)


class RuleSnapshot:
    """Cached, validated, priority-ordered view of the enabled rules.

    Args:
        store:      Source of rule copies.
        ttl:        Seconds a loaded snapshot is reused (0 = always reload).
        on_removed: Called with each rule id that disappeared from the
                    store since the previous load.
    """

    def __init__(
        self,
        store: RuleStore,
        ttl: float = 0.0,
        on_removed: Callable[[int], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._on_removed = on_removed
        self._clock = clock
        self._lock = threading.Lock()
        self._rules: list[AlertRule] = []
        self._known_ids: set[int] = set()
        self._loaded_at: float | None = None
        # rule id -> rule shape last warned about
        self._reported: dict[int, tuple] = {}

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = None

    def rules(self) -> list[AlertRule]:
        """Enabled, valid rules ordered by priority desc, then id asc."""
        with self._lock:
            now = self._clock()
            if self._loaded_at is None or self._ttl <= 0 or now - self._loaded_at >= self._ttl:
                self._load()
                self._loaded_at = now
            return self._rules

    def candidates(self, event_type: str) -> list[AlertRule]:
        return [r for r in self.rules() if r.applies_to(event_type)]

    def _load(self) -> None:
        all_rules = self._store.list_rules()
        ids = {r.id for r in all_rules}
        removed = self._known_ids - ids
        self._known_ids = ids
        for rule_id in removed:
            self._reported.pop(rule_id, None)
            if self._on_removed is not None:
                self._on_removed(rule_id)

        active: list[AlertRule] = []
        for rule in all_rules:
            if not rule.is_enabled:
                continue
            try:
                validate_rule(rule)
            except RuleValidationError as exc:
                self._report(rule, f"skipped: {exc}")
                continue
            errors = precompile(rule.conditions)
            if errors:
                self._report(rule, "has invalid regex conditions: " + "; ".join(errors))
            active.append(rule)
        active.sort(key=lambda r: (-r.priority, r.id))
        self._rules = active

    def _report(self, rule: AlertRule, message: str) -> None:
        key = (tuple(rule.conditions), len(rule.actions))
        if self._reported.get(rule.id) == key:
            return
        self._reported[rule.id] = key
        logger.warning("Alert rule %s (%r) %s", rule.id, rule.name, message)
