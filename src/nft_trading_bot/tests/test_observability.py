from __future__ import annotations

import asyncio
import json
import logging
import threading

from nft_trading_bot.config.settings import MonitoringConfig
from nft_trading_bot.monitoring import bootstrap_observability
from nft_trading_bot.monitoring.alerts import Alert, AlertManager, AlertSeverity, alert_from_event
from nft_trading_bot.monitoring.event_bus import Event, EventBus, EventSeverity, EventType
from nft_trading_bot.monitoring.logger import (
    StructuredFormatter,
    correlation_scope,
    current_correlation_id,
    current_owner,
)
from nft_trading_bot.monitoring.metrics import METRICS, MetricsRegistry


class RecordingSession:
    def __init__(self) -> None:
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        return self

    def raise_for_status(self) -> None:
        return None


def test_event_bus_updates_metrics() -> None:
    bus = EventBus()
    bootstrap_observability(bus)
    bus.publish(EventType.TRADE_EXECUTED, {"owner": "alice", "status": "completed"})
    bus.publish(EventType.OPPORTUNITIES_SCANNED, {"owner": "alice", "count": 4})
    bus.publish(EventType.AUTOMATION_CYCLE, {"owner": "alice", "duration_seconds": 0.25})

    assert METRICS.get("events.trade:executed") == 1
    assert METRICS.get("trades.completed") == 1
    assert METRICS.get_gauge("opportunities.last_scan_count") == 4.0
    assert METRICS.snapshot()["histograms"]["automation.cycle_seconds"]["count"] == 1.0


def test_subscribers_and_owner_history() -> None:
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(EventType.RULE_CREATED, seen.append)
    everything = []
    bus.subscribe(None, everything.append)

    bus.publish(EventType.RULE_CREATED, {"owner": "alice", "rule_id": "r1"})
    bus.publish("rule:deleted", {"owner": "bob", "rule_id": "r2"})
    unsubscribe()
    bus.publish(EventType.RULE_CREATED, {"owner": "alice", "rule_id": "r3"})

    assert [event.payload["rule_id"] for event in seen] == ["r1"]
    assert len(everything) == 3
    assert [event.payload["rule_id"] for event in bus.history(owner="alice")] == ["r1", "r3"]
    assert bus.history(1)[0].payload["rule_id"] == "r3"


def test_failing_and_async_subscribers_do_not_break_dispatch() -> None:
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    async def collect(event):
        received.append(event.type)

    bus.subscribe(EventType.RULE_EXECUTED, broken)
    bus.subscribe(EventType.RULE_EXECUTED, collect)
    listener = bus.create_listener()

    bus.publish(EventType.RULE_EXECUTED, {"owner": "alice"})

    assert received == [EventType.RULE_EXECUTED]
    assert listener.get_nowait().type is EventType.RULE_EXECUTED
    bus.remove_listener(listener)


def test_async_subscriber_runs_on_the_active_loop() -> None:
    bus = EventBus()
    received = []

    async def collect(event):
        received.append(event.payload["owner"])

    bus.subscribe(None, collect)

    async def _exercise() -> None:
        bus.publish(EventType.AUTOMATION_STARTED, {"owner": "alice"})
        await asyncio.sleep(0)

    asyncio.run(_exercise())
    assert received == ["alice"]


def test_warning_events_route_to_alerts_with_throttling() -> None:
    session = RecordingSession()
    config = MonitoringConfig(webhook_urls=["https://hooks.example.com/bot"], alert_throttle_seconds=60)
    bus = EventBus()
    manager = AlertManager(config, session=session)
    bus.attach_alert_manager(manager)

    bus.publish(EventType.ALERT_TRIGGERED, {"rule_id": "r1", "message": "floor moved"}, severity=EventSeverity.WARNING)
    bus.publish(EventType.ALERT_TRIGGERED, {"rule_id": "r1", "message": "floor moved"}, severity=EventSeverity.WARNING)
    bus.publish(EventType.RULE_CREATED, {"rule_id": "r2"})

    assert manager.flush(timeout=2.0)
    assert len(session.posts) == 1
    url, payload = session.posts[0]
    assert url.startswith("https://hooks.example.com")
    assert payload["severity"] == AlertSeverity.WARNING.value
    assert "floor moved" in payload["message"]


def test_structured_formatter_emits_json_with_correlation_id() -> None:
    record = logging.LogRecord("nft_trading_bot.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.correlation_id = "tick-123"
    record.cycle = 3
    payload = json.loads(StructuredFormatter().format(record))

    assert payload["message"] == "hello world"
    assert payload["correlation_id"] == "tick-123"
    assert payload["extra"] == {"cycle": 3}


def test_correlation_scope_restores_previous_value() -> None:
    assert current_correlation_id() == "-"
    with correlation_scope("tick-1"):
        assert current_correlation_id() == "tick-1"
    assert current_correlation_id() == "-"


def test_prometheus_export_sanitizes_metric_names() -> None:
    METRICS.reset()
    METRICS.increment("events.trade:executed")
    METRICS.increment("trades.buy.completed", 2)
    METRICS.gauge("automation.running_owners", 3)
    METRICS.observe("automation.cycle_seconds", 0.5)
    output = METRICS.export_prometheus()
    lines = [line for line in output.splitlines() if line]
    assert "# TYPE nft_trading_bot_events_trade:executed counter" in lines
    assert "trades.buy.completed" not in output
    assert any("trades_buy_completed" in line for line in lines)
    assert any("automation_running_owners" in line for line in lines)
    assert 'nft_trading_bot_automation_cycle_seconds{quantile="0.5"} 0.5' in lines
    assert "nft_trading_bot_automation_cycle_seconds_count 1" in lines
    METRICS.reset()


def test_failed_trade_alert_reaches_slack_with_owner_and_rule() -> None:
    session = RecordingSession()
    config = MonitoringConfig(slack_webhook_url="https://hooks.slack.com/services/T/B/X", alert_throttle_seconds=0)
    bus = EventBus()
    manager = AlertManager(config, session=session)
    bus.attach_alert_manager(manager)

    bus.publish(
        EventType.TRADE_EXECUTED,
        {"owner": "alice", "rule_id": "rule-1", "action_type": "buy", "status": "failed", "error": "order rejected"},
        severity=EventSeverity.WARNING,
    )

    assert bus.flush_alerts(timeout=2.0)
    assert len(session.posts) == 1
    text = session.posts[0][1]["text"]
    assert text.startswith(":warning: *Trade Executed* (alice rule-1)")
    assert text.endswith("buy failed: order rejected")


def test_alert_from_event_summarises_payload_without_message() -> None:
    event = Event(
        type=EventType.REBALANCE_REQUESTED,
        payload={"owner": "bob", "trade_id": "trade-1", "target": "0xabc"},
        severity=EventSeverity.ERROR,
    )
    alert = alert_from_event(event)
    assert alert.owner == "bob"
    assert alert.rule_id is None
    assert alert.severity is AlertSeverity.ERROR
    assert alert.message == "target=0xabc, trade_id=trade-1"
    assert alert.to_webhook()["context"]["trade_id"] == "trade-1"


def test_timer_records_duration_and_call_count() -> None:
    registry = MetricsRegistry()
    with registry.timer("bot.cycle"):
        pass
    with registry.timer("bot.cycle"):
        pass
    stats = registry.snapshot()["histograms"]["bot.cycle.duration_seconds"]
    assert stats["count"] == 2.0
    assert registry.get("bot.cycle.calls_total") == 2.0
    assert registry.export_prometheus().startswith("# TYPE bot_cycle_calls_total counter")


def test_structured_formatter_includes_scoped_owner() -> None:
    formatter = StructuredFormatter()
    record = logging.LogRecord("nft_trading_bot.test", logging.INFO, __file__, 1, "tick", (), None)
    record.correlation_id = "tick-9"
    record.owner = "carol"
    payload = json.loads(formatter.format(record))
    assert payload["owner"] == "carol"
    assert "extra" not in payload

    with correlation_scope("tick-10", owner="dave"):
        assert current_owner() == "dave"
    assert current_owner() is None


class SlowSession(RecordingSession):
    """Holds every post until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def post(self, url, json=None, timeout=None):
        self.started.set()
        self.release.wait(5)
        return super().post(url, json=json, timeout=timeout)


def test_publish_does_not_wait_for_alert_delivery() -> None:
    session = SlowSession()
    config = MonitoringConfig(webhook_urls=["https://hooks.example.com/bot"], alert_throttle_seconds=0)
    bus = EventBus()
    manager = AlertManager(config, session=session)
    bus.attach_alert_manager(manager)

    async def _exercise() -> None:
        bus.publish(EventType.ALERT_TRIGGERED, {"message": "slow hook"}, severity=EventSeverity.ERROR)
        # the loop keeps running while the webhook is still blocked
        await asyncio.sleep(0)

    asyncio.run(_exercise())
    assert session.started.wait(2)
    assert session.posts == []
    assert manager.flush(timeout=0.05) is False

    session.release.set()
    assert manager.flush(timeout=2.0)
    assert [payload["message"] for _, payload in session.posts] == ["slow hook"]
    manager.close()


def test_alert_throttle_forgets_keys_outside_the_window() -> None:
    now = [0.0]
    session = RecordingSession()
    config = MonitoringConfig(webhook_urls=["https://hooks.example.com/bot"], alert_throttle_seconds=60)
    manager = AlertManager(config, session=session, clock=lambda: now[0])

    assert manager.deliver(Alert(title="Floor", message="a")) is True
    now[0] = 10.0
    assert manager.deliver(Alert(title="Floor", message="b")) is True
    assert manager.deliver(Alert(title="Floor", message="a")) is False
    assert manager.tracked_keys == 2

    now[0] = 65.0
    assert manager.deliver(Alert(title="Floor", message="c")) is True
    assert manager.tracked_keys == 2
    now[0] = 200.0
    assert manager.deliver(Alert(title="Floor", message="a")) is True
    assert manager.tracked_keys == 1

    assert manager.flush(timeout=2.0)
    assert [payload["message"] for _, payload in session.posts] == ["a", "b", "c", "a"]
    manager.close()
