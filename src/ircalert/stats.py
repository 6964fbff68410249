"""Stats projection over rule counters (read-only)."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable

from .rules.models import AlertRule

DEFAULT_WINDOW = 24 * 60 * 60


@dataclass(frozen=True)
class RuleStats:
    total_rules: int
    enabled_rules: int
    total_triggers: int
    recent_triggers: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def compute_stats(rules: Iterable[AlertRule], now: float, window: float = DEFAULT_WINDOW) -> RuleStats:
    """Summarize rules; ``recent_triggers`` counts rules fired within ``window``."""
    rules = list(rules)
    cutoff = now - window
    return RuleStats(
        total_rules=len(rules),
        enabled_rules=sum(1 for r in rules if r.is_enabled),
        total_triggers=sum(r.trigger_count for r in rules),
        recent_triggers=sum(
            1 for r in rules if r.last_triggered is not None and r.last_triggered > cutoff
        ),
    )
