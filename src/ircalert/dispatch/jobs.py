"""Units of work handed from the matcher to the dispatcher."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from ..events.normalizer import Event
from ..rules.conditions import ConditionResult
from ..rules.models import AlertAction


@dataclass(frozen=True)
class DispatchJob:
    """One rule firing: the actions to run and what triggered them."""

    rule_id: int
    rule_name: str
    event: Event
    actions: tuple[AlertAction, ...]
    matched_conditions: tuple[ConditionResult, ...]
    fired_at: float


@dataclass(frozen=True)
class DeliveryRecord:
    """Outcome of one action of one firing, kept for observability."""

    rule_id: int
    rule_name: str
    action: str
    ok: bool
    attempts: int
    status: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
