"""Event bus for lifecycle notifications emitted by the trading automation."""

from __future__ import annotations

import asyncio
import inspect
import logging
import queue
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Union

from ..utils.constants import utc_now
from .alerts import AlertManager
from .logger import current_correlation_id
from .metrics import MetricsRegistry


class EventType(str, Enum):
    """Lifecycle notifications a host may subscribe to."""

    RULE_CREATED = "rule:created"
    RULE_UPDATED = "rule:updated"
    RULE_DELETED = "rule:deleted"
    RULE_EXECUTED = "rule:executed"
    TRADE_EXECUTED = "trade:executed"
    OPPORTUNITIES_SCANNED = "opportunities:scanned"
    REBALANCE_REQUESTED = "rebalance:requested"
    ALERT_TRIGGERED = "alert:triggered"
    AUTOMATION_STARTED = "automation:started"
    AUTOMATION_STOPPED = "automation:stopped"
    AUTOMATION_CYCLE = "automation:cycle"


class EventSeverity(str, Enum):
    """Severity levels associated with events."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(slots=True)
class Event:
    """Normalized representation of a lifecycle event."""

    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
    severity: EventSeverity = EventSeverity.INFO
    correlation_id: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def owner(self) -> Optional[str]:
        owner = self.payload.get("owner")
        return str(owner) if owner is not None else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert the event to a JSON-serialisable dictionary."""

        return {
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "labels": self.labels,
        }


Subscriber = Callable[[Event], Union[None, Any]]

_ALERTING_SEVERITIES = {EventSeverity.WARNING, EventSeverity.ERROR, EventSeverity.CRITICAL}


class EventBus:
    """Fans out structured events to subscribers and queue listeners.

    Dispatch happens synchronously on the publishing thread, so a subscriber sees
    an event before ``publish`` returns. Each service owns its own bus.
    """

    def __init__(self, history_size: int = 500) -> None:
        self._subscribers: Dict[Optional[EventType], List[Subscriber]] = defaultdict(list)
        self._listeners: List["queue.SimpleQueue[Event]"] = []
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)
        self._metrics: Optional[MetricsRegistry] = None
        self._alerts: Optional[AlertManager] = None
        self._pending: Set["asyncio.Task[Any]"] = set()

    def attach_metrics(self, registry: Optional[MetricsRegistry]) -> None:
        self._metrics = registry

    def attach_alert_manager(self, manager: Optional[AlertManager]) -> None:
        self._alerts = manager

    def flush_alerts(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued alert deliveries; True when nothing is left pending."""

        return self._alerts.flush(timeout) if self._alerts is not None else True

    def subscribe(
        self, event_type: Optional[Union[EventType, str]], handler: Subscriber
    ) -> Callable[[], None]:
        """Register a subscriber for one event type, or every event when ``None``.

        Returns a callable that removes the subscription.
        """

        key = EventType(event_type) if event_type is not None else None
        with self._lock:
            self._subscribers[key].append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(key, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def create_listener(self) -> "queue.SimpleQueue[Event]":
        """Create a queue listener that receives every dispatched event."""

        listener: "queue.SimpleQueue[Event]" = queue.SimpleQueue()
        with self._lock:
            self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: "queue.SimpleQueue[Event]") -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(
        self,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        *,
        severity: EventSeverity = EventSeverity.INFO,
        correlation_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> Event:
        """Publish a new event and dispatch it to every interested party."""

        if isinstance(event_type, str) and not isinstance(event_type, EventType):
            try:
                event_type = EventType(event_type)
            except ValueError as exc:
                raise ValueError(f"Unsupported event type: {event_type}") from exc
        if correlation_id is None:
            scoped = current_correlation_id()
            correlation_id = None if scoped == "-" else scoped
        event = Event(
            type=event_type,
            payload=dict(payload or {}),
            severity=severity,
            correlation_id=correlation_id,
            labels=dict(labels or {}),
        )
        self._dispatch(event)
        return event

    def history(self, limit: int = 100, *, owner: Optional[str] = None) -> List[Event]:
        with self._lock:
            events = list(self._history)
        if owner is not None:
            events = [event for event in events if event.owner == owner]
        return events[-limit:]

    def reset(self) -> None:
        """Clear subscribers and history. Intended for tests."""

        with self._lock:
            self._subscribers.clear()
            self._listeners.clear()
            self._history.clear()
        self._metrics = None
        self._alerts = None

    def _dispatch(self, event: Event) -> None:
        with self._lock:
            self._history.append(event)
            handlers = list(self._subscribers.get(event.type, [])) + list(
                self._subscribers.get(None, [])
            )
            listeners = list(self._listeners)
        self._update_metrics(event)
        self._trigger_alerts(event)
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._run_awaitable(result)
            except Exception:  # subscriber failures never break dispatch
                self._logger.exception(
                    "Event handler %s failed for %s", getattr(handler, "__name__", handler), event.type.value
                )
        for listener in listeners:
            listener.put_nowait(event)

    def _run_awaitable(self, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(awaitable)
            return
        task = loop.create_task(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _update_metrics(self, event: Event) -> None:
        if not self._metrics:
            return
        self._metrics.increment(f"events.{event.type.value}", 1.0)
        if event.type == EventType.TRADE_EXECUTED:
            status = event.payload.get("status")
            if isinstance(status, str):
                self._metrics.increment(f"trades.{status}", 1.0)
        elif event.type == EventType.OPPORTUNITIES_SCANNED:
            count = event.payload.get("count")
            if isinstance(count, (int, float)):
                self._metrics.gauge("opportunities.last_scan_count", float(count))
        elif event.type == EventType.AUTOMATION_CYCLE:
            duration = event.payload.get("duration_seconds")
            if isinstance(duration, (int, float)):
                self._metrics.observe("automation.cycle_seconds", float(duration))

    def _trigger_alerts(self, event: Event) -> None:
        if self._alerts and event.severity in _ALERTING_SEVERITIES:
            self._alerts.notify(event)


__all__ = [
    "Event",
    "EventBus",
    "EventSeverity",
    "EventType",
    "Subscriber",
]
