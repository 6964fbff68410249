"""Rule matcher — decide which rules an event fires.

For each event, candidate rules (enabled, event type ``*`` or exact match)
are visited by priority descending, rule id ascending. Per candidate:

1. Ask the cooldown store whether the rule is eligible; skip if not.
   Suppressed rules are never evaluated and their counters never move.
2. Evaluate the conditions.
3. Commit the firing with the store's atomic ``try_fire``. A concurrent
   event that committed first makes this one lose quietly.
4. Bump the rule's counters and hand the actions to the dispatcher.

The cooldown mark is only written after a real match, so a non-matching
event can never burn a rule's cooldown window. Every candidate is
visited: one event may fire any number of rules.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from ..dispatch.jobs import DispatchJob
from ..events.normalizer import Event
from ..rules.conditions import ConditionResult, evaluate
from ..rules.cooldown import CooldownStore
from ..rules.models import AlertRule
from ..rules.store import RuleStore
from .snapshot import RuleSnapshot

logger = logging.getLogger(__name__)


class JobSink(Protocol):
    def submit(self, job: DispatchJob) -> None: ...


@dataclass(frozen=True)
class Firing:
    rule_id: int
    rule_name: str
    priority: int
    event: Event
    fired_at: float
    results: tuple[ConditionResult, ...]
    dry_run: bool = False


class RuleMatcher:
    """Match events against the rule snapshot and dispatch firings.

    Usage::

        matcher = RuleMatcher(snapshot, store, cooldowns, dispatcher)
        for firing in matcher.process(normalize(record)):
            print(firing.rule_name)
    """

    def __init__(
        self,
        snapshot: RuleSnapshot,
        store: RuleStore,
        cooldowns: CooldownStore,
        dispatcher: JobSink,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._snapshot = snapshot
        self._store = store
        self._cooldowns = cooldowns
        self._dispatcher = dispatcher
        self._clock = clock

    def process(self, event: Event, now: float | None = None, dry_run: bool = False) -> list[Firing]:
        """Evaluate event against every candidate rule.

        With ``dry_run`` the same path runs without touching cooldowns,
        counters or the dispatcher, and every matching rule is reported.
        """
        if now is None:
            now = self._clock()
        firings: list[Firing] = []
        for rule in self._snapshot.candidates(event.event_type):
            firing = self._consider(rule, event, now, dry_run)
            if firing is not None:
                firings.append(firing)
        return firings

    def _consider(self, rule: AlertRule, event: Event, now: float, dry_run: bool) -> Firing | None:
        if not dry_run and not self._cooldowns.is_eligible(rule.id, rule.cooldown, now):
            logger.debug("Rule %s in cooldown, skipped", rule.id)
            return None

        matched, results = evaluate(rule.conditions, event)
        if not matched:
            return None

        firing = Firing(
            rule_id=rule.id,
            rule_name=rule.name,
            priority=rule.priority,
            event=event,
            fired_at=now,
            results=results,
            dry_run=dry_run,
        )
        if dry_run:
            return firing

        if not self._cooldowns.try_fire(rule.id, rule.cooldown, now):
            logger.debug("Rule %s lost the cooldown race, skipped", rule.id)
            return None

        self._store.record_trigger(rule.id, now)
        self._dispatcher.submit(
            DispatchJob(
                rule_id=rule.id,
                rule_name=rule.name,
                event=event,
                actions=tuple(rule.actions),
                matched_conditions=results,
                fired_at=now,
            )
        )
        logger.debug("Rule %s (%r) fired on %s event", rule.id, rule.name, event.event_type or "untyped")
        return firing
