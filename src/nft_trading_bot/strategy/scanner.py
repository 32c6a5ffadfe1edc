"""Scanner that runs every opportunity strategy and caches results per owner."""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from ..analysis.valuation import ValuationEngine
from ..config.settings import ScannerConfig, get_app_config
from ..datalake.schemas import TradingOpportunity
from ..datalake.storage import TradingState
from ..ingestion.providers import MarketTrendsProvider, PortfolioProvider
from ..monitoring.event_bus import EventBus, EventType
from ..monitoring.logger import get_logger
from ..utils.constants import utc_now
from .arbitrage import ArbitrageStrategy
from .base import OpportunityStrategy, ScanContext
from .flip import FlipStrategy
from .mean_reversion import MeanReversionStrategy
from .momentum import MomentumStrategy


def default_strategies() -> List[OpportunityStrategy]:
    return [ArbitrageStrategy(), FlipStrategy(), MomentumStrategy(), MeanReversionStrategy()]


class OpportunityScanner:
    """Runs strategies concurrently and concatenates results in invocation order."""

    def __init__(
        self,
        valuation: ValuationEngine,
        portfolio: PortfolioProvider,
        trends: MarketTrendsProvider,
        *,
        state: TradingState,
        event_bus: EventBus,
        config: Optional[ScannerConfig] = None,
        strategies: Optional[Sequence[OpportunityStrategy]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._valuation = valuation
        self._portfolio = portfolio
        self._trends = trends
        self._state = state
        self._bus = event_bus
        self._config = config or get_app_config().scanner
        self._strategies = list(strategies) if strategies is not None else default_strategies()
        self._clock = clock
        self._logger = get_logger(__name__)

    @property
    def strategies(self) -> List[OpportunityStrategy]:
        return list(self._strategies)

    async def _run_strategy(
        self, strategy: OpportunityStrategy, context: ScanContext
    ) -> List[TradingOpportunity]:
        try:
            return list(await strategy.generate(context))
        except Exception as exc:  # noqa: BLE001 - a failing strategy contributes nothing
            self._logger.warning("Strategy %s failed: %s", strategy.name, exc)
            return []

    async def scan(self, owner: str) -> List[TradingOpportunity]:
        """Replace the owner's cached opportunities with a fresh scan."""

        context = ScanContext(
            owner=owner,
            timestamp=self._clock(),
            valuation=self._valuation,
            portfolio=self._portfolio,
            trends=self._trends,
            config=self._config,
        )
        batches = await asyncio.gather(
            *(self._run_strategy(strategy, context) for strategy in self._strategies)
        )
        opportunities = [opportunity for batch in batches for opportunity in batch]
        self._state.opportunities.set(owner, opportunities)
        counts = Counter(opportunity.strategy_type.value for opportunity in opportunities)
        self._bus.publish(
            EventType.OPPORTUNITIES_SCANNED,
            {"owner": owner, "count": len(opportunities), "by_strategy": dict(counts)},
        )
        self._logger.info("Scanned %d opportunities for %s", len(opportunities), owner)
        return opportunities

    def get_opportunities(self, owner: str) -> List[TradingOpportunity]:
        return self._state.opportunities_for(owner)


__all__ = ["OpportunityScanner", "default_strategies"]
