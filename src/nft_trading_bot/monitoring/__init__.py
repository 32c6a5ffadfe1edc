"""Logging, metrics, lifecycle events and alert delivery for the bot."""

from __future__ import annotations

from typing import Optional

from ..config.settings import AppConfig, get_app_config
from .alerts import AlertManager
from .event_bus import EventBus
from .logger import configure_logging
from .metrics import METRICS, MetricsRegistry


def bootstrap_observability(
    bus: EventBus,
    *,
    config: Optional[AppConfig] = None,
    metrics: MetricsRegistry = METRICS,
) -> AlertManager:
    """Configure logging, event bus metrics, and alert routing."""

    app_config = config or get_app_config()
    configure_logging(app_config.monitoring)
    manager = AlertManager(app_config.monitoring)
    bus.attach_metrics(metrics)
    bus.attach_alert_manager(manager)
    return manager


__all__ = ["bootstrap_observability", "EventBus", "METRICS"]
