"""Outbound payload builders for each action kind.

Every payload carries the common alert body::

    {
        "rule_name": "Link denied",
        "event": {"event_type": "link", "level": "error", "message": "...", ...},
        "timestamp": "2025-08-01T10:00:01+00:00",
        "matched_conditions": [{"field": "level", "operator": "equals", ...}]
    }

Discord and Slack payloads add the fields their webhooks render.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..rules.models import AlertAction, DiscordAction, SlackAction
from .jobs import DispatchJob

_DISCORD_COLOURS = {"error": 0xE74C3C, "fatal": 0xE74C3C, "warn": 0xF39C12, "warning": 0xF39C12}
_DISCORD_DEFAULT_COLOUR = 0x3498DB

_SLACK_EMOJI = {"error": ":x:", "fatal": ":x:", "warn": ":warning:", "warning": ":warning:"}
_SLACK_DEFAULT_EMOJI = ":information_source:"


def iso_time(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def base_payload(job: DispatchJob) -> dict[str, Any]:
    """The common alert body for a DispatchJob."""
    return {
        "rule_name": job.rule_name,
        "event": job.event.to_dict(),
        "timestamp": iso_time(job.fired_at),
        "matched_conditions": [r.to_dict() for r in job.matched_conditions],
    }


def discord_payload(job: DispatchJob) -> dict[str, Any]:
    event = job.event
    payload = base_payload(job)
    payload["embeds"] = [
        {
            "title": f"\U0001f6a8 {job.rule_name}",
            "description": event.message[:2000],
            "color": _DISCORD_COLOURS.get(event.level.lower(), _DISCORD_DEFAULT_COLOUR),
            "fields": [
                {"name": "Subsystem", "value": event.subsystem or "-", "inline": True},
                {"name": "Level", "value": event.level or "-", "inline": True},
                {"name": "Event ID", "value": event.event_id or "-", "inline": True},
            ],
            "timestamp": payload["timestamp"],
        }
    ]
    return payload


def slack_payload(job: DispatchJob) -> dict[str, Any]:
    event = job.event
    emoji = _SLACK_EMOJI.get(event.level.lower(), _SLACK_DEFAULT_EMOJI)
    payload = base_payload(job)
    payload["text"] = f"{emoji} *{job.rule_name}*"
    payload["attachments"] = [
        {
            "text": event.message[:300],
            "fields": [
                {"title": "Subsystem", "value": event.subsystem, "short": True},
                {"title": "Level", "value": event.level, "short": True},
            ],
        }
    ]
    return payload


def build_payload(action: AlertAction, job: DispatchJob) -> dict[str, Any]:
    if isinstance(action, DiscordAction):
        return discord_payload(job)
    if isinstance(action, SlackAction):
        return slack_payload(job)
    return base_payload(job)
