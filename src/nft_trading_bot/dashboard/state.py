"""Shared dashboard state and data access helpers."""

from __future__ import annotations

import queue
from typing import Any, Dict, List, Optional

from ..config.settings import AppConfig
from ..monitoring.metrics import MetricsRegistry
from ..service import TradingAutomationService
from .utils import to_serializable


class DashboardState:
    """Lightweight wrapper around the automation service, metrics, and its event bus."""

    def __init__(
        self,
        *,
        service: TradingAutomationService,
        config: Optional[AppConfig] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self.service = service
        self.config = config or service.config
        self.metrics = metrics if metrics is not None else service.metrics
        self.event_bus = service.event_bus

    def metrics_snapshot(self) -> Dict[str, object]:
        return {
            "metrics": self.metrics.snapshot(),
            "health": self.service.get_health_status(),
            "disclaimer": self.config.monitoring.risk_disclaimer,
        }

    def health(self) -> Dict[str, Any]:
        return self.service.get_health_status()

    def event_history(self, limit: int = 200, owner: Optional[str] = None) -> List[Dict[str, object]]:
        return [event.to_dict() for event in self.event_bus.history(limit, owner=owner)]

    def rules(self, owner: str) -> List[Dict[str, object]]:
        return [to_serializable(rule) for rule in self.service.get_rules(owner)]

    def trades(self, owner: str, limit: int = 100) -> List[Dict[str, object]]:
        trades = self.service.get_active_trades(owner)
        return [to_serializable(trade) for trade in reversed(trades[-limit:])]

    def opportunities(self, owner: str) -> List[Dict[str, object]]:
        return [to_serializable(item) for item in self.service.get_opportunities(owner)]

    def performance(self, owner: str) -> Dict[str, object]:
        return to_serializable(self.service.get_trading_performance(owner))

    def subscribe_events(self) -> "queue.SimpleQueue":
        return self.event_bus.create_listener()

    def remove_listener(self, listener: "queue.SimpleQueue") -> None:
        self.event_bus.remove_listener(listener)


__all__ = ["DashboardState"]
