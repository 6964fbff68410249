"""Event normalizer — turn raw webhook log records into canonical Events.

UnrealIRCd posts one JSON object per log line::

    {"timestamp": "2025-08-01T10:00:01.123Z", "level": "error",
     "subsystem": "link", "event_id": "LINK_DENIED", "msg": "...",
     "log_source": "irc1.example.net", "source": {...}}

Parsing is permissive: a body that is not a JSON object still produces an
Event (the raw text becomes the message), so a malformed upstream record
never stops the pipeline.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

logger = logging.getLogger(__name__)

STANDARD_FIELDS = ("event_type", "subsystem", "event_id", "level", "message", "timestamp")

# Accepted on input, folded into the standard field it names.
FIELD_ALIASES = {"msg": "message"}


def to_text(value: Any) -> str:
    """Stringify a field value the way conditions compare it."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value, default=str, sort_keys=True)
    except (TypeError, ValueError):
        return str(value)


@dataclass(frozen=True)
class Event:
    """Canonical, immutable view of one inbound log record."""

    event_type: str = ""
    subsystem: str = ""
    event_id: str = ""
    level: str = "info"
    message: str = ""
    timestamp: str = ""
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, name: str) -> Any:
        """Return a field value, falling back to ``extra`` for custom fields."""
        name = FIELD_ALIASES.get(name, name)
        if name in STANDARD_FIELDS:
            return getattr(self, name)
        return self.extra.get(name)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {name: getattr(self, name) for name in STANDARD_FIELDS}
        out.update(self.extra)
        return out


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return {"message": raw}
    return raw


def _split(record: Mapping[str, Any]) -> tuple[dict[str, str], dict[str, Any]]:
    known: dict[str, str] = {}
    extra: dict[str, Any] = {}
    for key, value in record.items():
        key = str(key)
        target = FIELD_ALIASES.get(key, key)
        if target in STANDARD_FIELDS:
            # "message" wins over its "msg" alias when both are present
            if target in known and key != target:
                continue
            known[target] = to_text(value).strip()
        else:
            extra[key] = value
    return known, extra


def normalize(raw: Any, now: str | None = None) -> Event:
    """Build an Event from a raw record. Never raises.

    Accepts a mapping, a JSON document as str/bytes, or any other value
    (stringified into the message). Missing fields get defaults:
    ``level="info"``, empty subsystem/event_id/message, and the current
    UTC time as timestamp. ``event_type`` falls back to the subsystem.
    """
    record = _decode(raw)
    if not isinstance(record, Mapping):
        logger.debug("Non-object event record, keeping it as message text")
        record = {"message": to_text(record)}

    known, extra = _split(record)
    subsystem = known.get("subsystem", "")
    return Event(
        event_type=known.get("event_type") or subsystem,
        subsystem=subsystem,
        event_id=known.get("event_id", ""),
        level=known.get("level") or "info",
        message=known.get("message", ""),
        timestamp=known.get("timestamp") or now or _utc_now_iso(),
        extra=MappingProxyType(extra),
    )


def synthetic_event(fields: Mapping[str, Any]) -> Event:
    """Event-shaped value from caller-supplied fields, without defaults.

    Used by rule test mode so that a field the author left out reads as
    an empty string rather than a made-up default.
    """
    known, extra = _split(fields or {})
    return Event(
        event_type=known.get("event_type") or known.get("subsystem", ""),
        subsystem=known.get("subsystem", ""),
        event_id=known.get("event_id", ""),
        level=known.get("level", ""),
        message=known.get("message", ""),
        timestamp=known.get("timestamp", ""),
        extra=MappingProxyType(extra),
    )
