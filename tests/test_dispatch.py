"""Tests for the action dispatcher, payload builders and HTTP delivery."""
from __future__ import annotations

import io
import json
import threading
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from ircalert.dispatch.audit import JsonlAuditSink, MemoryAuditSink
from ircalert.dispatch.channels import build_payload
from ircalert.dispatch.delivery import DeliveryOutcome, HttpDeliverer
from ircalert.dispatch.dispatcher import ActionDispatcher
from ircalert.dispatch.jobs import DispatchJob
from ircalert.events.normalizer import normalize
from ircalert.rules.conditions import ConditionResult
from ircalert.rules.models import DiscordAction, LogAction, SlackAction, WebhookAction

HOOK = "https://hooks.example.net/alert"


def _job(*actions, rule_name: str = "Link denied", level: str = "error") -> DispatchJob:
    return DispatchJob(
        rule_id=1,
        rule_name=rule_name,
        event=normalize({"level": level, "subsystem": "link", "event_id": "LINK_DENIED", "msg": "denied"}),
        actions=tuple(actions),
        matched_conditions=(ConditionResult("level", "equals", "error", level, True),),
        fired_at=0.0,
    )


class TestPayloads:
    def test_common_body(self) -> None:
        payload = build_payload(WebhookAction(HOOK), _job())
        assert set(payload) == {"rule_name", "event", "timestamp", "matched_conditions"}
        assert payload["timestamp"] == "1970-01-01T00:00:00+00:00"
        assert payload["matched_conditions"][0]["field"] == "level"

    def test_discord_embed(self) -> None:
        payload = build_payload(DiscordAction(HOOK), _job())
        embed = payload["embeds"][0]
        assert "Link denied" in embed["title"]
        assert embed["color"] == 0xE74C3C
        assert payload["rule_name"] == "Link denied"

    def test_slack_message(self) -> None:
        payload = build_payload(SlackAction(HOOK), _job(level="warn"))
        assert payload["text"].startswith(":warning:")
        assert payload["attachments"][0]["text"] == "denied"


class TestRunJob:
    def test_isolation_on_failed_action(self, dispatcher, deliverer, audit) -> None:
        deliverer.script(HOOK, DeliveryOutcome(ok=False, retryable=False, status=400, error="HTTP 400"))
        records = dispatcher.run_job(_job(WebhookAction(HOOK), LogAction()))
        assert [r.ok for r in records] == [False, True]
        assert len(audit.records) == 1

    def test_isolation_on_raising_action(self, dispatcher, deliverer, audit) -> None:
        deliverer.deliver = MagicMock(side_effect=RuntimeError("boom"))
        records = dispatcher.run_job(_job(SlackAction(HOOK), LogAction()))
        assert not records[0].ok
        assert "boom" in records[0].error
        assert records[1].ok
        assert len(audit.records) == 1

    def test_transient_failure_retried(self, dispatcher, deliverer) -> None:
        deliverer.script(HOOK, DeliveryOutcome(ok=False, retryable=True, error="timed out"))
        [record] = dispatcher.run_job(_job(WebhookAction(HOOK)))
        assert record.ok
        assert record.attempts == 2
        assert len(deliverer.calls) == 2

    def test_retry_budget_exhausted(self, dispatcher, deliverer) -> None:
        failing = DeliveryOutcome(ok=False, retryable=True, status=503, error="HTTP 503")
        deliverer.script(HOOK, failing, failing, failing)
        [record] = dispatcher.run_job(_job(WebhookAction(HOOK)))
        assert not record.ok
        assert record.attempts == 2
        assert dispatcher.stats()["failed"] == 1

    def test_backoff_doubles(self, deliverer, audit) -> None:
        sleeps: list[float] = []
        dispatcher = ActionDispatcher(deliverer, audit, max_attempts=3, backoff=0.5, sleep=sleeps.append)
        failing = DeliveryOutcome(ok=False, retryable=True, error="refused")
        deliverer.script(HOOK, failing, failing, failing)
        dispatcher.run_job(_job(WebhookAction(HOOK)))
        assert sleeps == [0.5, 1.0]

    def test_rejection_not_retried(self, dispatcher, deliverer) -> None:
        deliverer.script(HOOK, DeliveryOutcome(ok=False, retryable=False, status=404, error="HTTP 404"))
        [record] = dispatcher.run_job(_job(DiscordAction(HOOK)))
        assert record.attempts == 1
        assert record.status == 404

    def test_missing_url_recorded(self, dispatcher, deliverer) -> None:
        [record] = dispatcher.run_job(_job(WebhookAction("")))
        assert not record.ok
        assert deliverer.calls == []

    def test_disabled_action_skipped(self, dispatcher, deliverer) -> None:
        records = dispatcher.run_job(_job(WebhookAction(HOOK, enabled=False), LogAction()))
        assert [r.action for r in records] == ["log"]
        assert deliverer.calls == []

    def test_timeout_passed_to_deliverer(self, deliverer, audit) -> None:
        dispatcher = ActionDispatcher(deliverer, audit, timeout=2.5)
        dispatcher.run_job(_job(WebhookAction(HOOK)))
        assert deliverer.calls[0][2] == 2.5


class TestQueue:
    def test_overflow_drops_oldest(self, deliverer, audit) -> None:
        dispatcher = ActionDispatcher(deliverer, audit, queue_size=2)
        for name in ("first", "second", "third"):
            dispatcher.submit(_job(LogAction(), rule_name=name))
        assert dispatcher.stats()["dropped"] == 1
        dispatcher.join()
        assert [r["rule_name"] for r in audit.records] == ["second", "third"]

    def test_workers_drain_queue(self, deliverer, audit) -> None:
        with ActionDispatcher(deliverer, audit, workers=3) as dispatcher:
            for i in range(20):
                dispatcher.submit(_job(WebhookAction(f"{HOOK}/{i}")))
            assert dispatcher.join(timeout=5)
        assert len(deliverer.calls) == 20
        assert dispatcher.stats()["delivered"] == 20
        assert not dispatcher.running

    def test_slow_endpoint_does_not_block_submit(self, audit) -> None:
        release = threading.Event()

        class SlowDeliverer:
            def deliver(self, url, payload, timeout):
                release.wait(5)
                return DeliveryOutcome(ok=True, status=200)

        dispatcher = ActionDispatcher(SlowDeliverer(), audit, workers=1, queue_size=3)
        dispatcher.start()
        try:
            for _ in range(10):
                dispatcher.submit(_job(WebhookAction(HOOK)))
            assert dispatcher.pending() <= 3
        finally:
            release.set()
            dispatcher.stop()

    def test_stop_without_drain_discards(self, deliverer, audit) -> None:
        dispatcher = ActionDispatcher(deliverer, audit)
        dispatcher.submit(_job(LogAction()))
        dispatcher.stop(drain=False)
        assert dispatcher.pending() == 0
        assert audit.records == []

    def test_recent_deliveries(self, dispatcher) -> None:
        dispatcher.run_job(_job(LogAction()))
        [record] = dispatcher.recent_deliveries()
        assert record.to_dict()["action"] == "log"

    @pytest.mark.parametrize("kwargs", [{"workers": 0}, {"queue_size": 0}])
    def test_invalid_sizes(self, kwargs) -> None:
        with pytest.raises(ValueError):
            ActionDispatcher(**kwargs)


class TestJsonlAuditSink:
    def test_appends_lines(self, tmp_path) -> None:
        sink = JsonlAuditSink(tmp_path / "audit" / "alerts.jsonl")
        sink.append({"rule_name": "a"})
        sink.append({"rule_name": "b"})
        lines = sink.path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["rule_name"] for line in lines] == ["a", "b"]
        assert json.loads(lines[0])["action"] == "alert_triggered"


class TestHttpDeliverer:
    def _response(self, status: int) -> MagicMock:
        resp = MagicMock()
        resp.status = status
        resp.__enter__.return_value = resp
        return resp

    def test_success(self) -> None:
        with patch("urllib.request.urlopen", return_value=self._response(204)) as urlopen:
            outcome = HttpDeliverer().deliver(HOOK, {"a": 1}, timeout=5.0)
        assert outcome.ok
        req = urlopen.call_args[0][0]
        assert req.get_method() == "POST"
        assert json.loads(req.data) == {"a": 1}
        assert urlopen.call_args.kwargs["timeout"] == 5.0

    def test_network_error_is_retryable(self) -> None:
        with patch("urllib.request.urlopen", side_effect=OSError("Connection refused")):
            outcome = HttpDeliverer().deliver(HOOK, {}, timeout=1.0)
        assert not outcome.ok
        assert outcome.retryable

    @pytest.mark.parametrize("code, retryable", [(400, False), (404, False), (429, True), (502, True)])
    def test_http_errors(self, code: int, retryable: bool) -> None:
        error = urllib.error.HTTPError(HOOK, code, "err", {}, io.BytesIO(b""))
        with patch("urllib.request.urlopen", side_effect=error):
            outcome = HttpDeliverer().deliver(HOOK, {}, timeout=1.0)
        assert not outcome.ok
        assert outcome.status == code
        assert outcome.retryable is retryable

    def test_bad_url_not_retryable(self) -> None:
        outcome = HttpDeliverer().deliver("not a url", {}, timeout=1.0)
        assert not outcome.ok
        assert not outcome.retryable

    @pytest.mark.parametrize("url", ["file:///etc/passwd", "ftp://example.net/hook", "data:,x"])
    def test_non_http_scheme_rejected_without_request(self, url: str) -> None:
        with patch("urllib.request.urlopen") as urlopen:
            outcome = HttpDeliverer().deliver(url, {}, timeout=1.0)
        urlopen.assert_not_called()
        assert not outcome.ok
        assert not outcome.retryable
        assert (outcome.error or "").startswith("bad url")
