"""Alert rule data model — rules, conditions, and tagged action variants.

Rules arrive in the admin API's JSON shape::

    {
        "id": 7,
        "name": "Link denied",
        "event_type": "link",
        "conditions": [{"field": "level", "operator": "equals", "value": "error"}],
        "actions": [
            {"type": "discord", "config": {"webhook_url": "https://..."}, "enabled": true},
            {"type": "log", "config": {}, "enabled": true}
        ],
        "priority": 10,
        "cooldown": 60,
        "is_enabled": true
    }

Each action kind is parsed into its own dataclass so that a Discord action
always has a ``webhook_url`` and a log action never carries a URL at all.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, ClassVar, Mapping, Union

WILDCARD = "*"

OPERATORS = frozenset({
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "regex",
    "gt",
    "lt",
    "in",
})


class RuleValidationError(ValueError):
    """Raised when a rule cannot be activated as written."""


class RuleNotFoundError(LookupError):
    """Raised when a rule id is not present in the store."""


def _flag(data: Mapping[str, Any], key: str, owner: str) -> bool:
    value = data.get(key, True)
    if not isinstance(value, bool):
        raise RuleValidationError(f"{owner}: {key} must be true or false, got {value!r}")
    return value


def _epoch(value: Any, rule_id: int) -> float | None:
    """Epoch seconds from a number or an ISO-8601 / RFC 3339 timestamp."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                return float(text)
            except ValueError:
                pass
        else:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.timestamp()
    raise RuleValidationError(f"Rule {rule_id}: bad last_triggered value {value!r}")


@dataclass(frozen=True)
class AlertCondition:
    field: str
    operator: str
    value: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertCondition":
        if not isinstance(data, Mapping):
            raise RuleValidationError(f"Condition must be an object, got {type(data).__name__}")
        value = data.get("value", "")
        return cls(
            field=str(data.get("field", "")),
            operator=str(data.get("operator", "")),
            value="" if value is None else str(value),
        )

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


# ── Actions ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WebhookAction:
    kind: ClassVar[str] = "webhook"
    url: str
    enabled: bool = True

    @property
    def target(self) -> str:
        return self.url

    def config(self) -> dict[str, Any]:
        return {"url": self.url}


@dataclass(frozen=True)
class DiscordAction:
    kind: ClassVar[str] = "discord"
    webhook_url: str
    enabled: bool = True

    @property
    def target(self) -> str:
        return self.webhook_url

    def config(self) -> dict[str, Any]:
        return {"webhook_url": self.webhook_url}


@dataclass(frozen=True)
class SlackAction:
    kind: ClassVar[str] = "slack"
    webhook_url: str
    enabled: bool = True

    @property
    def target(self) -> str:
        return self.webhook_url

    def config(self) -> dict[str, Any]:
        return {"webhook_url": self.webhook_url}


@dataclass(frozen=True)
class LogAction:
    kind: ClassVar[str] = "log"
    enabled: bool = True

    @property
    def target(self) -> str:
        return ""

    def config(self) -> dict[str, Any]:
        return {}


AlertAction = Union[WebhookAction, DiscordAction, SlackAction, LogAction]

ACTION_TYPES: dict[str, type] = {
    cls.kind: cls for cls in (WebhookAction, DiscordAction, SlackAction, LogAction)
}


def action_from_dict(data: Mapping[str, Any]) -> AlertAction:
    """Parse ``{"type", "config", "enabled"}`` into the matching action variant."""
    if not isinstance(data, Mapping):
        raise RuleValidationError(f"Action must be an object, got {type(data).__name__}")
    kind = str(data.get("type") or data.get("kind") or "")
    config = data.get("config") or {}
    if not isinstance(config, Mapping):
        raise RuleValidationError(f"Action config for {kind!r} must be an object")
    enabled = _flag(data, "enabled", f"Action {kind!r}")

    if kind == "webhook":
        return WebhookAction(url=str(config.get("url") or ""), enabled=enabled)
    if kind == "discord":
        return DiscordAction(webhook_url=str(config.get("webhook_url") or ""), enabled=enabled)
    if kind == "slack":
        return SlackAction(webhook_url=str(config.get("webhook_url") or ""), enabled=enabled)
    if kind == "log":
        return LogAction(enabled=enabled)
    raise RuleValidationError(
        f"Unknown action type {kind!r} (expected one of {', '.join(sorted(ACTION_TYPES))})"
    )


def action_to_dict(action: AlertAction) -> dict[str, Any]:
    return {"type": action.kind, "config": action.config(), "enabled": action.enabled}


# ── Rule ────────────────────────────────────────────────────────────────────


@dataclass
class AlertRule:
    """A named set of conditions and actions.

    Attributes:
        event_type:     Event type to match exactly, or ``"*"`` for all events.
        conditions:     AND-combined; an empty list matches every event of the type.
        priority:       Higher priority rules are evaluated and dispatched first.
        cooldown:       Minimum seconds between firings. 0 disables suppression.
        last_triggered: Epoch seconds of the last real firing, or None.
    """

    id: int
    name: str
    event_type: str = WILDCARD
    conditions: list[AlertCondition] = field(default_factory=list)
    actions: list[AlertAction] = field(default_factory=list)
    description: str = ""
    priority: int = 0
    cooldown: float = 0.0
    is_enabled: bool = True
    last_triggered: float | None = None
    trigger_count: int = 0
    created_by_username: str = ""

    def applies_to(self, event_type: str) -> bool:
        return self.event_type == WILDCARD or self.event_type == event_type

    def copy(self) -> "AlertRule":
        return replace(self, conditions=list(self.conditions), actions=list(self.actions))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertRule":
        if not isinstance(data, Mapping):
            raise RuleValidationError(f"Rule must be an object, got {type(data).__name__}")
        try:
            rule_id = int(data["id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise RuleValidationError(f"Rule needs an integer id: {exc}") from exc
        try:
            priority = int(data.get("priority") or 0)
            cooldown = float(data.get("cooldown") or 0)
            trigger_count = int(data.get("trigger_count") or 0)
        except (TypeError, ValueError) as exc:
            raise RuleValidationError(f"Rule {rule_id}: bad numeric field: {exc}") from exc
        return cls(
            id=rule_id,
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            event_type=str(data.get("event_type") or ""),
            conditions=[AlertCondition.from_dict(c) for c in data.get("conditions") or []],
            actions=[action_from_dict(a) for a in data.get("actions") or []],
            priority=priority,
            cooldown=cooldown,
            is_enabled=_flag(data, "is_enabled", f"Rule {rule_id}"),
            last_triggered=_epoch(data.get("last_triggered"), rule_id),
            trigger_count=trigger_count,
            created_by_username=str(data.get("created_by_username") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "event_type": self.event_type,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [action_to_dict(a) for a in self.actions],
            "priority": self.priority,
            "cooldown": self.cooldown,
            "is_enabled": self.is_enabled,
            "last_triggered": self.last_triggered,
            "trigger_count": self.trigger_count,
            "created_by_username": self.created_by_username,
        }


def validate_rule(rule: AlertRule) -> None:
    """Raise RuleValidationError if the rule must not be activated.

    Operators and fields are not checked here: an unknown operator degrades
    to a non-match at evaluation time instead of rejecting the rule.
    """
    if not rule.name.strip():
        raise RuleValidationError(f"Rule {rule.id}: name must not be empty")
    if not rule.event_type.strip():
        raise RuleValidationError(f"Rule {rule.id}: event_type must not be empty (use '*' for all)")
    if rule.cooldown < 0:
        raise RuleValidationError(f"Rule {rule.id}: cooldown must be >= 0")
    if rule.is_enabled and not rule.actions:
        raise RuleValidationError(f"Rule {rule.id}: an enabled rule needs at least one action")
