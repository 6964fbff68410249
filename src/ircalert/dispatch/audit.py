"""Audit sinks for ``log`` actions."""
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class AuditSink(Protocol):
    def append(self, record: dict[str, Any]) -> None: ...


class MemoryAuditSink:
    """Keep audit records in a list. Used by tests and dry CLI runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[dict[str, Any]] = []

    def append(self, record: dict[str, Any]) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._records)


class JsonlAuditSink:
    """Append audit records as JSON lines to a file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, record: dict[str, Any]) -> None:
        line = json.dumps({"action": "alert_triggered", **record}, default=str) + "\n"
        with self._lock, open(self._path, "a", encoding="utf-8") as fh:
            fh.write(line)

    @property
    def path(self) -> Path:
        return self._path
