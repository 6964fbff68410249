"""Outbound delivery — POST a JSON payload to a webhook URL."""
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Rate limiting and server-side errors are worth another attempt.
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class DeliveryOutcome:
    ok: bool
    retryable: bool = False
    status: int | None = None
    error: str | None = None


@runtime_checkable
class Deliverer(Protocol):
    """The external capability used for webhook, Discord and Slack actions."""

    def deliver(self, url: str, payload: dict[str, Any], timeout: float) -> DeliveryOutcome: ...


class HttpDeliverer:
    """Deliver payloads with ``urllib.request``.

    Network errors and timeouts are reported as retryable; any other
    non-2xx response is reported as a permanent rejection unless its
    status is in RETRYABLE_STATUSES.
    """

    def __init__(self, user_agent: str = "ircalert/1.0") -> None:
        self._user_agent = user_agent

    def deliver(self, url: str, payload: dict[str, Any], timeout: float) -> DeliveryOutcome:
        scheme = urllib.parse.urlsplit(url).scheme.lower()
        if scheme not in ("http", "https"):
            return DeliveryOutcome(ok=False, retryable=False, error=f"bad url: unsupported scheme {scheme!r}")
        data = json.dumps(payload, default=str).encode()
        try:
            req = urllib.request.Request(
                url,
                data=data,
                headers={"Content-Type": "application/json", "User-Agent": self._user_agent},
                method="POST",
            )
        except ValueError as exc:
            return DeliveryOutcome(ok=False, retryable=False, error=f"bad url: {exc}")

        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                status = resp.status
        except urllib.error.HTTPError as exc:
            return DeliveryOutcome(
                ok=False,
                retryable=exc.code in RETRYABLE_STATUSES,
                status=exc.code,
                error=f"HTTP {exc.code}",
            )
        except OSError as exc:
            # URLError, socket timeouts, connection refused
            return DeliveryOutcome(ok=False, retryable=True, error=str(exc))

        if 200 <= status < 300:
            return DeliveryOutcome(ok=True, status=status)
        return DeliveryOutcome(
            ok=False,
            retryable=status in RETRYABLE_STATUSES,
            status=status,
            error=f"HTTP {status}",
        )
