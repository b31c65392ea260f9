"""Rollout event emission.

Events are fire-and-forget: a sink that fails is logged and skipped, and
never affects the rollout that emitted the event.
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import httpx

from promoctl.core.logging import get_logger
from promoctl.core.utils import utcnow

logger = get_logger(__name__)


class EventType(str, Enum):
    """Observable rollout and promotion events."""

    ROLLOUT_STARTED = "RolloutStarted"
    STEP_COMPLETED = "StepCompleted"
    ROLLING_BACK = "RollingBack"
    ROLLED_BACK = "RolledBack"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    PROMOTION_REQUESTED = "PromotionRequested"
    PROMOTION_APPROVED = "PromotionApproved"
    PROMOTION_REJECTED = "PromotionRejected"


@dataclass
class Event:
    """An emitted event."""

    type: EventType
    service: str
    environment: str
    message: str
    attempt_id: str | None = None
    promotion_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "service": self.service,
            "environment": self.environment,
            "message": self.message,
            "attempt_id": self.attempt_id,
            "promotion_id": self.promotion_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class EventSink(Protocol):
    def send(self, event: Event) -> None: ...


class LogSink:
    """Writes events to the promoctl logger."""

    _FAILURES = {EventType.FAILED, EventType.ROLLED_BACK, EventType.ROLLING_BACK}

    def send(self, event: Event) -> None:
        fields = {"service": event.service, "env": event.environment}
        if event.attempt_id:
            fields["attempt"] = event.attempt_id
        if event.type in self._FAILURES:
            logger.warning(f"{event.type.value}: {event.message}", **fields)
        else:
            logger.info(f"{event.type.value}: {event.message}", **fields)


class WebhookSink:
    """Posts events as JSON, compatible with Slack incoming webhooks.

    Delivery runs on a single background worker so a slow endpoint never
    holds up the rollout; events are posted in emission order. Pending
    posts still finish before the interpreter exits.
    """

    def __init__(self, url: str, timeout: float = 5.0):
        self._url = url
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="promoctl-webhook")
        self._pending: list[Future[None]] = []

    def send(self, event: Event) -> None:
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(self._executor.submit(self._post, event))

    def flush(self, timeout: float | None = None) -> None:
        """Wait for queued deliveries."""
        wait(self._pending, timeout=timeout)

    def _post(self, event: Event) -> None:
        payload = {
            "text": f"[{event.service}/{event.environment}] {event.type.value}: {event.message}",
            "event": event.to_dict(),
        }
        try:
            response = httpx.post(self._url, json=payload, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Webhook delivery failed: {e}", event=event.type.value)


class MemorySink:
    """Keeps events in memory."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def send(self, event: Event) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[EventType]:
        return [e.type for e in self.events]


class EventEmitter:
    """Fans events out to sinks."""

    def __init__(self, sinks: list[EventSink] | None = None):
        self._sinks: list[EventSink] = list(sinks) if sinks is not None else [LogSink()]

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, event_type: EventType, service: str, environment: str, message: str, **kwargs: Any) -> Event:
        """Emit an event to every sink."""
        event = Event(type=event_type, service=service, environment=environment, message=message, **kwargs)
        for sink in self._sinks:
            try:
                sink.send(event)
            except Exception as e:
                logger.warning(f"Event delivery failed: {e}", sink=type(sink).__name__, event=event_type.value)
        return event
