"""Shared pytest fixtures for ircalert tests."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from ircalert.dispatch.audit import MemoryAuditSink
from ircalert.dispatch.delivery import DeliveryOutcome
from ircalert.dispatch.dispatcher import ActionDispatcher
from ircalert.engine.core import AlertEngine
from ircalert.rules.cooldown import MemoryCooldownStore
from ircalert.rules.models import AlertCondition, AlertRule, LogAction
from ircalert.rules.store import InMemoryRuleStore


class RecordingDeliverer:
    """Deliverer double: records calls, replays scripted outcomes per URL."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any], float]] = []
        self.scripted: dict[str, list[DeliveryOutcome]] = {}

    def script(self, url: str, *outcomes: DeliveryOutcome) -> None:
        self.scripted[url] = list(outcomes)

    def deliver(self, url: str, payload: dict[str, Any], timeout: float) -> DeliveryOutcome:
        self.calls.append((url, payload, timeout))
        queue = self.scripted.get(url)
        if queue:
            return queue.pop(0)
        return DeliveryOutcome(ok=True, status=200)

    def urls(self) -> list[str]:
        return [url for url, _, _ in self.calls]


class RecordingSink:
    """Stands in for the dispatcher when only submission order matters."""

    def __init__(self) -> None:
        self.jobs: list[Any] = []

    def submit(self, job: Any) -> None:
        self.jobs.append(job)


@pytest.fixture()
def deliverer() -> RecordingDeliverer:
    return RecordingDeliverer()


@pytest.fixture()
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture()
def dispatcher(deliverer: RecordingDeliverer, audit: MemoryAuditSink) -> ActionDispatcher:
    """A dispatcher that is not started: ``join()`` drains it on the test thread."""
    return ActionDispatcher(deliverer, audit, backoff=0.0, sleep=lambda _: None)


@pytest.fixture()
def make_rule():
    """Factory for valid rules with a log action and no cooldown by default."""

    def _make(rule_id: int = 1, **overrides: Any) -> AlertRule:
        conditions = overrides.pop("conditions", [])
        fields: dict[str, Any] = {
            "name": f"rule-{rule_id}",
            "event_type": "*",
            "actions": [LogAction()],
            "cooldown": 0,
        }
        fields.update(overrides)
        return AlertRule(
            id=rule_id,
            conditions=[
                c if isinstance(c, AlertCondition) else AlertCondition(*c) for c in conditions
            ],
            **fields,
        )

    return _make


@pytest.fixture()
def store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture()
def engine(store: InMemoryRuleStore, dispatcher: ActionDispatcher) -> AlertEngine:
    return AlertEngine(store, dispatcher=dispatcher, cooldowns=MemoryCooldownStore(), clock=lambda: 1000.0)


@pytest.fixture()
def rules_file(tmp_path: Path):
    """Return a factory that writes a rules JSON file."""

    def _make(rules: list[dict[str, Any]], name: str = "rules.json") -> Path:
        p = tmp_path / name
        p.write_text(json.dumps(rules), encoding="utf-8")
        return p

    return _make


@pytest.fixture()
def irc_events() -> list[str]:
    return [
        json.dumps({"timestamp": "2025-08-01T10:00:00Z", "level": "info", "subsystem": "connect",
                    "event_id": "LOCAL_CLIENT_CONNECT", "msg": "Client connecting: alice"}),
        json.dumps({"timestamp": "2025-08-01T10:00:01Z", "level": "error", "subsystem": "link",
                    "event_id": "LINK_DENIED", "msg": "Link denied for hub.example.net"}),
        json.dumps({"timestamp": "2025-08-01T10:00:02Z", "level": "warn", "subsystem": "flood",
                    "event_id": "FLOOD_BLOCKED", "msg": "Flood blocked from 10.0.0.7"}),
    ]
