"""Host-facing façade wiring valuation, scanning, rules and automation together."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import requests

from .analysis.valuation import ValuationEngine
from .analytics.performance import summarize_performance
from .config.settings import AppConfig, AppMode, get_app_config
from .datalake.parsing import parse_rule_draft, parse_rule_updates
from .datalake.schemas import (
    AutomatedTrade,
    CollectionAnalytics,
    PortfolioPosition,
    RuleDraft,
    TradeStatus,
    TradingOpportunity,
    TradingPerformance,
    TradingRule,
    Valuation,
)
from .datalake.storage import TradingState
from .execution.executor import ActionExecutor
from .execution.paper import PaperMarketplaceExecutor
from .execution.scheduler import AutomationScheduler, TickReport
from .ingestion.market_trends import StaticMarketTrends
from .ingestion.opensea_api import OpenSeaClient
from .ingestion.portfolio import InMemoryPortfolio
from .ingestion.providers import (
    MarketDataProvider,
    MarketTrendsProvider,
    MarketplaceExecutor,
    PortfolioProvider,
)
from .ingestion.zora_api import ZORA_NETWORKS, ZoraClient
from .monitoring.event_bus import Event, EventBus, EventType, Subscriber
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS_NAMESPACE, MetricsRegistry
from .strategy.base import OpportunityStrategy
from .strategy.conditions import ConditionEvaluator
from .strategy.rules import RuleEngine
from .strategy.scanner import OpportunityScanner
from .utils.constants import utc_now
from .utils.errors import ConfigurationError


class TradingAutomationService:
    """One long-lived context: every instance owns its own state and event bus.

    An ``InMemoryPortfolio`` is wired to value positions through this service's
    valuation engine.
    """

    def __init__(
        self,
        sources: Sequence[MarketDataProvider],
        portfolio: PortfolioProvider,
        trends: MarketTrendsProvider,
        marketplace: MarketplaceExecutor,
        *,
        config: Optional[AppConfig] = None,
        state: Optional[TradingState] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsRegistry] = None,
        strategies: Optional[Sequence[OpportunityStrategy]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or get_app_config()
        self.state = state or TradingState()
        self.event_bus = event_bus or EventBus(history_size=self.config.monitoring.event_history_size)
        self.metrics = metrics if metrics is not None else MetricsRegistry(namespace=METRICS_NAMESPACE)
        self.portfolio = portfolio
        self.trends = trends
        self._clock = clock
        self._logger = get_logger(__name__)

        self.valuation = ValuationEngine(
            sources,
            state=self.state,
            config=self.config.valuation,
            sale_history_limit=self.config.data_sources.sale_history_limit,
            clock=clock,
        )
        self.evaluator = ConditionEvaluator(self.valuation, portfolio, clock=clock)
        self.executor = ActionExecutor(
            marketplace, state=self.state, event_bus=self.event_bus, metrics=self.metrics, clock=clock
        )
        self.rules = RuleEngine(
            self.evaluator,
            self.executor,
            state=self.state,
            event_bus=self.event_bus,
            config=self.config.automation,
            clock=clock,
        )
        self.scanner = OpportunityScanner(
            self.valuation,
            portfolio,
            trends,
            state=self.state,
            event_bus=self.event_bus,
            config=self.config.scanner,
            strategies=strategies,
            clock=clock,
        )
        self.scheduler = AutomationScheduler(
            self.scanner,
            self.rules,
            event_bus=self.event_bus,
            config=self.config.automation,
            metrics=self.metrics,
        )
        if isinstance(portfolio, InMemoryPortfolio):
            portfolio.set_valuer(self._position_value)

    @classmethod
    def from_config(
        cls,
        config: Optional[AppConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        marketplace: Optional[MarketplaceExecutor] = None,
        event_bus: Optional[EventBus] = None,
    ) -> "TradingAutomationService":
        """Build a service backed by OpenSea (then Zora) data and an in-memory portfolio."""

        app_config = config or get_app_config()
        if marketplace is None:
            if app_config.mode.active is AppMode.LIVE:
                raise ConfigurationError("Live mode requires a marketplace executor")
            marketplace = PaperMarketplaceExecutor()
        data_sources = app_config.data_sources
        sources: List[MarketDataProvider] = [OpenSeaClient(data_sources, session=session)]
        if data_sources.enable_zora and data_sources.chain in ZORA_NETWORKS:
            sources.append(ZoraClient(data_sources, session=session))
        elif data_sources.enable_zora:
            get_logger(__name__).warning("Zora source skipped; chain %s is not indexed", data_sources.chain)
        return cls(
            sources,
            InMemoryPortfolio(),
            StaticMarketTrends(app_config.scanner),
            marketplace,
            config=app_config,
            event_bus=event_bus,
        )

    async def _position_value(self, position: PortfolioPosition) -> Optional[float]:
        valuation = await self.valuation.valuate(position.contract_address, position.token_id)
        return valuation.estimated_value

    # ------------------------------------------------------------------
    # Valuation queries
    # ------------------------------------------------------------------

    async def get_valuation(self, contract_address: str, token_id: str, *, refresh: bool = False) -> Valuation:
        return await self.valuation.valuate(contract_address, token_id, refresh=refresh)

    async def get_collection_analytics(self, collection_id: str) -> CollectionAnalytics:
        return await self.valuation.collection_analytics(collection_id)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def create_rule(self, owner: str, draft: Union[RuleDraft, Mapping[str, Any]]) -> TradingRule:
        if not isinstance(draft, RuleDraft):
            draft = parse_rule_draft(draft)
        return self.rules.create_rule(owner, draft)

    def update_rule(self, owner: str, rule_id: str, updates: Mapping[str, Any]) -> bool:
        return self.rules.update_rule(owner, rule_id, parse_rule_updates(updates))

    def delete_rule(self, owner: str, rule_id: str) -> bool:
        return self.rules.delete_rule(owner, rule_id)

    def get_rules(self, owner: str) -> List[TradingRule]:
        return self.rules.get_rules(owner)

    def get_rule(self, owner: str, rule_id: str) -> Optional[TradingRule]:
        return self.rules.get_rule(owner, rule_id)

    async def execute_rule(self, owner: str, rule_id: str) -> Optional[AutomatedTrade]:
        return await self.rules.execute_rule(owner, rule_id)

    # ------------------------------------------------------------------
    # Opportunities and automation
    # ------------------------------------------------------------------

    async def scan_opportunities(self, owner: str) -> List[TradingOpportunity]:
        return await self.scanner.scan(owner)

    def get_opportunities(self, owner: str) -> List[TradingOpportunity]:
        return self.scanner.get_opportunities(owner)

    def start_automation(self, owner: str, interval_minutes: Optional[float] = None) -> None:
        self.scheduler.start(owner, interval_minutes)

    def stop_automation(self, owner: str) -> bool:
        return self.scheduler.stop(owner)

    async def run_cycle(self, owner: str) -> TickReport:
        return await self.scheduler.tick(owner)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_active_trades(self, owner: str) -> List[AutomatedTrade]:
        return self.state.trades_for(owner)

    def get_trading_performance(self, owner: str) -> TradingPerformance:
        return summarize_performance(self.state.trades_for(owner))

    def get_health_status(self) -> Dict[str, Any]:
        rules = [rule for _, owner_rules in self.state.rules.items() for rule in owner_rules]
        trades = [trade for _, owner_trades in self.state.trades.items() for trade in owner_trades]
        opportunities = sum(len(items) for _, items in self.state.opportunities.items())
        failed = sum(1 for trade in trades if trade.status is TradeStatus.FAILED)
        return {
            "status": "degraded" if trades and failed == len(trades) else "healthy",
            "timestamp": self._clock().isoformat(),
            "mode": self.config.mode.active.value,
            "metrics": {
                "active_rules": sum(1 for rule in rules if rule.enabled),
                "active_trades": len(trades),
                "failed_trades": failed,
                "monitoring_intervals": len(self.scheduler.running_owners()),
                "cached_opportunities": opportunities,
                "caches": self.valuation.cache_sizes(),
            },
        }

    def events(self, limit: int = 100, *, owner: Optional[str] = None) -> List[Event]:
        return self.event_bus.history(limit, owner=owner)

    def subscribe(self, event_type: Optional[Union[EventType, str]], handler: Subscriber) -> Callable[[], None]:
        return self.event_bus.subscribe(event_type, handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear_owner_data(self, owner: str) -> None:
        self.scheduler.stop(owner)
        self.state.clear_owner(owner)
        self.rules.forget_owner(owner)
        self._logger.info("Cleared all trading data for %s", owner)

    def clear_all_data(self) -> None:
        for owner in self.scheduler.stop_all():
            self.rules.forget_owner(owner)
        self.state.clear_all()
        self._logger.info("All trading automation data cleared")

    def clear_caches(self) -> None:
        self.valuation.clear_caches()

    async def aclose(self) -> None:
        await self.scheduler.aclose()


__all__ = ["TradingAutomationService"]
