"""Cooldown tracking — per-rule "last fired" state with atomic check-and-set.

Two backends share the ``CooldownStore`` protocol:

* ``MemoryCooldownStore`` — process-local, striped locks.
* ``RedisCooldownStore``  — shared between engine processes; the
  check-and-set runs as a Lua script so it is atomic on the server.

Key schema (Redis)::

    ircalert:cooldown:{rule_id}  ->  last fired time (epoch seconds)
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class CooldownStore(Protocol):
    """Small store abstraction so the matcher never cares where state lives."""

    def is_eligible(self, rule_id: int, cooldown: float, now: float) -> bool:
        """True when the rule may fire at ``now``. Read-only."""
        ...

    def try_fire(self, rule_id: int, cooldown: float, now: float) -> bool:
        """Atomically mark the rule fired at ``now`` if it is still eligible."""
        ...

    def last_fired(self, rule_id: int) -> float | None: ...

    def clear(self, rule_id: int) -> None: ...


def _eligible(last: float | None, cooldown: float, now: float) -> bool:
    if cooldown <= 0 or last is None:
        return True
    return now - last >= cooldown


class MemoryCooldownStore:
    """In-process cooldown store.

    Rule ids hash onto a fixed set of lock stripes, so two threads racing on
    the same rule serialize while unrelated rules rarely contend.
    """

    def __init__(self, stripes: int = 16) -> None:
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks = [threading.Lock() for _ in range(stripes)]
        self._last: dict[int, float] = {}

    def _lock(self, rule_id: int) -> threading.Lock:
        return self._locks[hash(rule_id) % len(self._locks)]

    def is_eligible(self, rule_id: int, cooldown: float, now: float) -> bool:
        return _eligible(self._last.get(rule_id), cooldown, now)

    def try_fire(self, rule_id: int, cooldown: float, now: float) -> bool:
        with self._lock(rule_id):
            if not _eligible(self._last.get(rule_id), cooldown, now):
                return False
            self._last[rule_id] = now
            return True

    def last_fired(self, rule_id: int) -> float | None:
        return self._last.get(rule_id)

    def clear(self, rule_id: int) -> None:
        with self._lock(rule_id):
            self._last.pop(rule_id, None)

    def __len__(self) -> int:
        return len(self._last)


# KEYS[1] = cooldown key, ARGV[1] = now, ARGV[2] = cooldown seconds
_TRY_FIRE_LUA = """
local last = redis.call('GET', KEYS[1])
local now = tonumber(ARGV[1])
local cooldown = tonumber(ARGV[2])
if last and cooldown > 0 and (now - tonumber(last)) < cooldown then
    return 0
end
redis.call('SET', KEYS[1], ARGV[1])
return 1
"""


def cooldown_key(rule_id: int) -> str:
    return f"ircalert:cooldown:{rule_id}"


class RedisCooldownStore:
    """Redis-backed cooldown store shared across engine processes.

    Backend errors are logged and read as "not eligible": a Redis outage
    silences alerts rather than crashing ingestion or causing a storm.

    Args:
        client: A ``redis.Redis`` client (``decode_responses=True``).
    """

    def __init__(self, client: Any) -> None:
        self._client = client
        self._script = client.register_script(_TRY_FIRE_LUA)

    @classmethod
    def from_url(cls, url: str) -> "RedisCooldownStore":
        import redis

        return cls(redis.Redis.from_url(url, decode_responses=True))

    def last_fired(self, rule_id: int) -> float | None:
        raw = self._client.get(cooldown_key(rule_id))
        return float(raw) if raw is not None else None

    def is_eligible(self, rule_id: int, cooldown: float, now: float) -> bool:
        if cooldown <= 0:
            return True
        try:
            return _eligible(self.last_fired(rule_id), cooldown, now)
        except Exception as exc:
            logger.warning("Cooldown lookup failed for rule %s: %s", rule_id, exc)
            return False

    def try_fire(self, rule_id: int, cooldown: float, now: float) -> bool:
        try:
            return bool(self._script(keys=[cooldown_key(rule_id)], args=[repr(float(now)), repr(float(cooldown))]))
        except Exception as exc:
            logger.warning("Cooldown update failed for rule %s: %s", rule_id, exc)
            return False

    def clear(self, rule_id: int) -> None:
        try:
            self._client.delete(cooldown_key(rule_id))
        except Exception as exc:
            logger.warning("Cooldown clear failed for rule %s: %s", rule_id, exc)


def build_cooldown_store(backend: str = "memory", redis_url: str = "") -> CooldownStore:
    """Create the configured cooldown store ("memory" or "redis")."""
    if backend == "memory":
        return MemoryCooldownStore()
    if backend == "redis":
        return RedisCooldownStore.from_url(redis_url)
    raise ValueError(f"Unknown cooldown backend {backend!r}")
