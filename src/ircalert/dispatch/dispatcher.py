"""Action dispatcher — run a firing's actions off the ingestion path.

Jobs go into a bounded queue drained by a small pool of worker threads.
When the queue is full the *oldest* pending job is dropped with a warning,
so a webhook outage never blocks event ingestion.

Within one job every action runs independently: a failing or raising
action is recorded and the next action still runs. HTTP actions get a
per-call timeout and a fixed retry budget for transient failures only.
Delivery results never feed back into rule counters or cooldowns.

Usage::

    dispatcher = ActionDispatcher(HttpDeliverer(), JsonlAuditSink("alerts.jsonl"))
    dispatcher.start()
    dispatcher.submit(job)
    ...
    dispatcher.stop()
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable

from ..rules.models import AlertAction, LogAction
from .audit import AuditSink, MemoryAuditSink
from .channels import build_payload
from .delivery import Deliverer, HttpDeliverer
from .jobs import DeliveryRecord, DispatchJob

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Bounded worker pool executing alert actions.

    Args:
        deliverer:    Outbound capability for webhook/discord/slack actions.
        audit_sink:   Destination of ``log`` actions.
        workers:      Number of worker threads.
        queue_size:   Pending jobs kept before the oldest is dropped.
        timeout:      Per-call delivery timeout in seconds.
        max_attempts: Attempts per action for retryable failures.
        backoff:      Delay before the 2nd attempt; doubles after that.
        history:      Number of DeliveryRecords kept for inspection.
    """

    def __init__(
        self,
        deliverer: Deliverer | None = None,
        audit_sink: AuditSink | None = None,
        workers: int = 4,
        queue_size: int = 1000,
        timeout: float = 5.0,
        max_attempts: int = 2,
        backoff: float = 0.5,
        history: int = 500,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        self._deliverer = deliverer or HttpDeliverer()
        self._audit = audit_sink if audit_sink is not None else MemoryAuditSink()
        self._workers = workers
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff
        self._sleep = sleep

        self._queue: deque[DispatchJob] = deque()
        self._queue_size = queue_size
        self._cond = threading.Condition()
        self._in_flight = 0
        self._threads: list[threading.Thread] = []
        self._stopping = False

        self._history: deque[DeliveryRecord] = deque(maxlen=history)
        self._counts = {"submitted": 0, "dropped": 0, "delivered": 0, "failed": 0}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._cond:
            if self._threads:
                return
            self._stopping = False
            for n in range(self._workers):
                t = threading.Thread(target=self._run, name=f"ircalert-dispatch-{n}", daemon=True)
                self._threads.append(t)
                t.start()
        logger.debug("Dispatcher started with %d workers", self._workers)

    def stop(self, drain: bool = True, timeout: float | None = None) -> None:
        """Stop the workers. With ``drain`` pending jobs are finished first."""
        with self._cond:
            if not drain:
                dropped = len(self._queue)
                self._queue.clear()
                self._counts["dropped"] += dropped
                if dropped:
                    logger.warning("Dispatcher stopped with %d pending jobs discarded", dropped)
            self._stopping = True
            self._cond.notify_all()
            threads, self._threads = self._threads, []
        for t in threads:
            t.join(timeout)

    def __enter__(self) -> "ActionDispatcher":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return bool(self._threads)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def submit(self, job: DispatchJob) -> None:
        """Enqueue a job without blocking; drops the oldest job when full."""
        with self._cond:
            if len(self._queue) >= self._queue_size:
                stale = self._queue.popleft()
                self._counts["dropped"] += 1
                logger.warning(
                    "Dispatch queue full (%d), dropped oldest job for rule %r",
                    self._queue_size, stale.rule_name,
                )
            self._queue.append(job)
            self._counts["submitted"] += 1
            self._cond.notify()

    def join(self, timeout: float | None = None) -> bool:
        """Wait until the queue is empty and no job is running.

        Returns False if the timeout expired first. Without running workers
        the queue is drained on the calling thread.
        """
        if not self.running:
            while True:
                with self._cond:
                    if not self._queue:
                        return True
                    job = self._queue.popleft()
                self.run_job(job)
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._queue and self._in_flight == 0, timeout
            )

    def pending(self) -> int:
        with self._cond:
            return len(self._queue)

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._queue or self._stopping)
                if not self._queue:
                    return
                job = self._queue.popleft()
                self._in_flight += 1
            try:
                self.run_job(job)
            finally:
                with self._cond:
                    self._in_flight -= 1
                    self._cond.notify_all()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_job(self, job: DispatchJob) -> list[DeliveryRecord]:
        """Execute every enabled action of a job, isolating failures."""
        records: list[DeliveryRecord] = []
        for action in job.actions:
            if not action.enabled:
                continue
            try:
                record = self._execute(action, job)
            except Exception as exc:
                logger.exception("Action %s for rule %r raised", action.kind, job.rule_name)
                record = DeliveryRecord(
                    rule_id=job.rule_id, rule_name=job.rule_name, action=action.kind,
                    ok=False, attempts=1, error=f"{type(exc).__name__}: {exc}",
                )
            self._record(record)
            records.append(record)
        return records

    def _execute(self, action: AlertAction, job: DispatchJob) -> DeliveryRecord:
        payload = build_payload(action, job)

        if isinstance(action, LogAction):
            self._audit.append(payload)
            logger.info("Alert rule %r triggered: %s", job.rule_name, job.event.message)
            return DeliveryRecord(job.rule_id, job.rule_name, action.kind, ok=True, attempts=1)

        url = action.target
        if not url:
            return DeliveryRecord(
                job.rule_id, job.rule_name, action.kind, ok=False, attempts=0,
                error="no target URL configured",
            )

        attempt = 0
        while True:
            attempt += 1
            outcome = self._deliverer.deliver(url, payload, self._timeout)
            if outcome.ok or not outcome.retryable or attempt >= self._max_attempts:
                break
            delay = self._backoff * (2 ** (attempt - 1))
            logger.debug(
                "Retrying %s action for rule %r in %.2fs (%s)",
                action.kind, job.rule_name, delay, outcome.error,
            )
            self._sleep(delay)

        return DeliveryRecord(
            rule_id=job.rule_id,
            rule_name=job.rule_name,
            action=action.kind,
            ok=outcome.ok,
            attempts=attempt,
            status=outcome.status,
            error=outcome.error,
        )

    def _record(self, record: DeliveryRecord) -> None:
        with self._cond:
            self._history.append(record)
            self._counts["delivered" if record.ok else "failed"] += 1
        if not record.ok:
            logger.warning(
                "Alert delivery failed: rule=%r action=%s attempts=%d error=%s",
                record.rule_name, record.action, record.attempts, record.error,
            )

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def recent_deliveries(self) -> list[DeliveryRecord]:
        with self._cond:
            return list(self._history)

    def stats(self) -> dict[str, int]:
        with self._cond:
            return {**self._counts, "pending": len(self._queue), "in_flight": self._in_flight}
