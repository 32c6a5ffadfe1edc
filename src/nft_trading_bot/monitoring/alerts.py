"""Trading alerts delivered to Slack and generic webhooks."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import requests

from ..config.settings import MonitoringConfig, get_app_config
from .logger import get_logger

if TYPE_CHECKING:
    from .event_bus import Event


class AlertSeverity(str, Enum):
    """Common severity levels recognised by the alert manager."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_SLACK_PREFIX = {
    AlertSeverity.INFO: ":information_source:",
    AlertSeverity.WARNING: ":warning:",
    AlertSeverity.ERROR: ":x:",
    AlertSeverity.CRITICAL: ":rotating_light:",
}


@dataclass(slots=True)
class Alert:
    """One notification about a rule, trade or automation loop."""

    title: str
    message: str
    severity: AlertSeverity = AlertSeverity.INFO
    owner: Optional[str] = None
    rule_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        return f"{self.title}:{self.owner or ''}:{self.rule_id or ''}:{self.message}"

    def to_webhook(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "owner": self.owner,
            "rule_id": self.rule_id,
            "context": self.context,
        }

    def to_slack(self) -> Dict[str, Any]:
        scope = " ".join(part for part in (self.owner, self.rule_id) if part)
        header = f"{_SLACK_PREFIX[self.severity]} *{self.title}*"
        if scope:
            header = f"{header} ({scope})"
        return {"text": f"{header}\n{self.message}"}


def alert_from_event(event: "Event") -> Alert:
    """Describe a warning-level lifecycle event as an alert."""

    payload = event.payload
    if payload.get("message"):
        message = str(payload["message"])
    elif payload.get("error"):
        message = f"{payload.get('action_type', 'trade')} failed: {payload['error']}"
    else:
        message = ", ".join(f"{key}={value}" for key, value in sorted(payload.items()) if key != "owner")
    rule_id = payload.get("rule_id")
    return Alert(
        title=event.type.value.replace(":", " ").title(),
        message=message,
        severity=AlertSeverity(event.severity.value),
        owner=event.owner,
        rule_id=str(rule_id) if rule_id is not None else None,
        context=dict(payload),
    )


class AlertManager:
    """Dispatch alerts to configured endpoints, throttling repeats per key.

    HTTP delivery runs on a background thread so callers on the event loop never
    wait on a webhook.
    """

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or get_app_config().monitoring
        self._session = session or requests.Session()
        self._clock = clock
        self._logger = get_logger(__name__)
        self._last_sent: Dict[str, float] = {}
        self._throttle_lock = threading.Lock()
        self._outbox: "queue.SimpleQueue[Optional[Tuple[str, Dict[str, Any]]]]" = queue.SimpleQueue()
        self._idle = threading.Condition()
        self._in_flight = 0
        self._worker: Optional[threading.Thread] = None

    def notify(self, event: "Event") -> bool:
        return self.deliver(alert_from_event(event))

    def deliver(self, alert: Alert) -> bool:
        """Queue ``alert`` for every configured endpoint; returns False when throttled."""

        if self._throttled(alert.dedupe_key):
            self._logger.debug("Alert throttled: %s", alert.dedupe_key)
            return False
        self._logger.info(
            "Alert [%s] %s: %s",
            alert.severity.value,
            alert.title,
            alert.message,
            extra={"owner": alert.owner, "rule_id": alert.rule_id},
        )
        for target in self._targets(alert):
            self._enqueue(target)
        return True

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued alert has been posted; False on timeout."""

        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        worker = self._worker
        if worker is None:
            return
        self._outbox.put(None)
        worker.join(timeout)
        self._worker = None

    @property
    def tracked_keys(self) -> int:
        return len(self._last_sent)

    def _throttled(self, key: str) -> bool:
        now = self._clock()
        window = max(self._config.alert_throttle_seconds, 0)
        with self._throttle_lock:
            # forget keys whose window has lapsed
            for stale in [item for item, sent in self._last_sent.items() if now - sent >= window]:
                del self._last_sent[stale]
            if key in self._last_sent:
                return True
            if window > 0:
                self._last_sent[key] = now
            return False

    def _targets(self, alert: Alert) -> List[Tuple[str, Dict[str, Any]]]:
        targets: List[Tuple[str, Dict[str, Any]]] = []
        if self._config.slack_webhook_url:
            targets.append((str(self._config.slack_webhook_url), alert.to_slack()))
        targets.extend((str(url), alert.to_webhook()) for url in self._config.webhook_urls)
        return targets

    def _enqueue(self, target: Tuple[str, Dict[str, Any]]) -> None:
        with self._idle:
            self._in_flight += 1
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._drain, name="alert-delivery", daemon=True)
                self._worker.start()
        self._outbox.put(target)

    def _drain(self) -> None:
        while True:
            target = self._outbox.get()
            if target is None:
                return
            try:
                self._post(*target)
            except Exception:  # noqa: BLE001 - the worker outlives a broken session
                self._logger.exception("Alert delivery to %s failed", target[0])
            finally:
                with self._idle:
                    self._in_flight -= 1
                    self._idle.notify_all()

    def _post(self, url: str, payload: Dict[str, Any]) -> None:
        try:
            response = self._session.post(url, json=payload, timeout=5)
            response.raise_for_status()
        except requests.RequestException as exc:  # pragma: no cover - network failures
            self._logger.warning("Failed to send alert to %s: %s", url, exc)


__all__ = ["Alert", "AlertManager", "AlertSeverity", "alert_from_event"]
