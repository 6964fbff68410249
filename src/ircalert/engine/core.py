"""AlertEngine — wires normalizer, matcher, cooldowns and dispatcher.

Usage::

    store = load_rules_file("rules.json")
    with AlertEngine.from_settings(store) as engine:
        for line in sys.stdin:
            engine.ingest(line)

``ingest`` is safe to call from many threads at once; it never waits for
action delivery.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Iterable, Mapping

from ..config import Settings
from ..dispatch.audit import AuditSink, JsonlAuditSink, MemoryAuditSink
from ..dispatch.delivery import Deliverer
from ..dispatch.dispatcher import ActionDispatcher
from ..events.normalizer import Event, normalize
from ..rules.conditions import TestResult
from ..rules.cooldown import CooldownStore, MemoryCooldownStore, build_cooldown_store
from ..rules.models import AlertCondition, RuleNotFoundError
from ..rules.store import RuleStore
from ..stats import DEFAULT_WINDOW, RuleStats, compute_stats
from . import dryrun
from .matcher import Firing, RuleMatcher
from .snapshot import RuleSnapshot


class AlertEngine:
    def __init__(
        self,
        store: RuleStore,
        dispatcher: ActionDispatcher | None = None,
        cooldowns: CooldownStore | None = None,
        rule_cache_ttl: float = 0.0,
        stats_window: float = DEFAULT_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.cooldowns = cooldowns if cooldowns is not None else MemoryCooldownStore()
        self.dispatcher = dispatcher if dispatcher is not None else ActionDispatcher()
        self.snapshot = RuleSnapshot(store, ttl=rule_cache_ttl, on_removed=self.cooldowns.clear)
        self.matcher = RuleMatcher(self.snapshot, store, self.cooldowns, self.dispatcher, clock=clock)
        self._stats_window = stats_window
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: RuleStore,
        settings: Settings | None = None,
        deliverer: Deliverer | None = None,
        audit_sink: AuditSink | None = None,
    ) -> "AlertEngine":
        if settings is None:
            settings = Settings()
        if audit_sink is None:
            audit_sink = (
                JsonlAuditSink(settings.audit_log_path) if settings.audit_log_path else MemoryAuditSink()
            )
        dispatcher = ActionDispatcher(
            deliverer=deliverer,
            audit_sink=audit_sink,
            workers=settings.dispatch_workers,
            queue_size=settings.dispatch_queue_size,
            timeout=settings.action_timeout,
            max_attempts=settings.action_max_attempts,
            backoff=settings.action_retry_backoff,
        )
        return cls(
            store,
            dispatcher=dispatcher,
            cooldowns=build_cooldown_store(settings.cooldown_backend, settings.redis_url),
            rule_cache_ttl=settings.rule_cache_ttl,
            stats_window=settings.stats_window,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.dispatcher.start()

    def stop(self, drain: bool = True) -> None:
        self.dispatcher.stop(drain=drain)

    def __enter__(self) -> "AlertEngine":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def ingest(self, raw: Any, now: float | None = None) -> list[Firing]:
        """Normalize one raw record and fire matching rules."""
        return self.process(normalize(raw), now=now)

    def process(self, event: Event, now: float | None = None, dry_run: bool = False) -> list[Firing]:
        return self.matcher.process(event, now=now, dry_run=dry_run)

    def test(
        self,
        conditions: Iterable[AlertCondition | Mapping[str, Any]],
        sample_fields: Mapping[str, Any],
    ) -> TestResult:
        """Evaluate ad-hoc conditions; no cooldown, counter or dispatch effects."""
        return dryrun.dry_run(conditions, sample_fields)

    def test_rule(self, rule_id: int, sample_fields: Mapping[str, Any]) -> TestResult:
        """Evaluate a stored rule's conditions against sample fields."""
        for rule in self.store.list_rules():
            if rule.id == rule_id:
                return dryrun.dry_run(rule.conditions, sample_fields)
        raise RuleNotFoundError(f"Alert rule {rule_id} not found")

    def stats(self, window: float | None = None) -> RuleStats:
        return compute_stats(
            self.store.list_rules(),
            now=self._clock(),
            window=self._stats_window if window is None else window,
        )
