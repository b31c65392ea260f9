"""Tests for event emission."""

import logging
import threading
from unittest.mock import MagicMock, patch

import httpx

from promoctl.deploy.events import EventEmitter, EventType, LogSink, MemorySink, WebhookSink


class ExplodingSink:
    def send(self, event) -> None:
        raise RuntimeError("sink down")


class TestEventEmitter:
    def test_fans_out_to_sinks(self):
        first, second = MemorySink(), MemorySink()
        emitter = EventEmitter([first, second])

        event = emitter.emit(EventType.SUCCEEDED, "checkout", "prod", "v2 is live", attempt_id="a1")

        assert first.events == [event]
        assert second.events == [event]
        assert event.to_dict()["type"] == "Succeeded"
        assert event.attempt_id == "a1"

    def test_failing_sink_does_not_block_others(self, caplog):
        sink = MemorySink()
        emitter = EventEmitter([ExplodingSink(), sink])

        with caplog.at_level(logging.WARNING, logger="promoctl"):
            emitter.emit(EventType.FAILED, "checkout", "prod", "rollback exhausted")

        assert sink.types == [EventType.FAILED]
        assert "Event delivery failed" in caplog.text

    def test_default_sink_logs(self, caplog):
        emitter = EventEmitter()

        with caplog.at_level(logging.INFO, logger="promoctl"):
            emitter.emit(EventType.ROLLOUT_STARTED, "checkout", "prod", "v1 -> v2")

        assert "RolloutStarted: v1 -> v2" in caplog.text

    def test_add_sink(self):
        emitter = EventEmitter([])
        sink = MemorySink()
        emitter.add_sink(sink)

        emitter.emit(EventType.ROLLED_BACK, "checkout", "qa", "unhealthy at 50%")

        assert sink.types == [EventType.ROLLED_BACK]


class TestLogSink:
    def test_failures_log_at_warning(self, caplog):
        emitter = EventEmitter([LogSink()])

        with caplog.at_level(logging.INFO, logger="promoctl"):
            emitter.emit(EventType.ROLLING_BACK, "checkout", "prod", "step 2 unhealthy")

        record = next(r for r in caplog.records if "RollingBack" in r.getMessage())
        assert record.levelno == logging.WARNING


class TestWebhookSink:
    def test_posts_event(self):
        with patch("promoctl.deploy.events.httpx.post") as mock_post:
            mock_post.return_value = MagicMock()
            sink = WebhookSink("https://hooks.example.com/T000", timeout=3)
            emitter = EventEmitter([sink])

            emitter.emit(EventType.SUCCEEDED, "checkout", "prod", "v2 is live")
            sink.flush(timeout=5)

        mock_post.assert_called_once()
        payload = mock_post.call_args.kwargs["json"]
        assert payload["text"] == "[checkout/prod] Succeeded: v2 is live"
        assert payload["event"]["environment"] == "prod"
        assert mock_post.call_args.kwargs["timeout"] == 3

    def test_slow_endpoint_does_not_block_emit(self):
        released = threading.Event()
        waited: list[bool] = []

        def slow_post(*args, **kwargs):
            waited.append(released.wait(timeout=5))
            return MagicMock()

        with patch("promoctl.deploy.events.httpx.post", side_effect=slow_post) as mock_post:
            sink = WebhookSink("https://hooks.example.com/T000")
            emitter = EventEmitter([sink])

            emitter.emit(EventType.ROLLOUT_STARTED, "checkout", "prod", "v1 -> v2")
            emitter.emit(EventType.SUCCEEDED, "checkout", "prod", "v2 is live")
            released.set()
            sink.flush(timeout=10)

        assert waited == [True, True]

        texts = [c.kwargs["json"]["text"] for c in mock_post.call_args_list]
        assert texts == [
            "[checkout/prod] RolloutStarted: v1 -> v2",
            "[checkout/prod] Succeeded: v2 is live",
        ]

    def test_http_error_is_logged(self, caplog):
        with patch("promoctl.deploy.events.httpx.post", side_effect=httpx.ConnectError("refused")):
            sink = WebhookSink("https://hooks.example.com/T000")
            emitter = EventEmitter([sink])

            with caplog.at_level(logging.WARNING, logger="promoctl"):
                event = emitter.emit(EventType.FAILED, "checkout", "prod", "boom")
                sink.flush(timeout=5)

        assert event.type == EventType.FAILED
        assert "Webhook delivery failed" in caplog.text
