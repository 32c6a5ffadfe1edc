"""Cross-marketplace arbitrage on trending collections."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from ..datalake.schemas import (
    ActionType,
    Listing,
    OpportunityMarketData,
    RiskLevel,
    StrategyType,
    TimeHorizon,
    TradingAction,
    TradingOpportunity,
    TrendingCollection,
)
from ..monitoring.logger import get_logger
from ..utils.constants import DEFAULT_MARKETPLACE, new_id
from .base import OpportunityStrategy, ScanContext


class ArbitrageStrategy(OpportunityStrategy):
    """Buys the cheapest listing when listings for the same item diverge across sources."""

    name = StrategyType.ARBITRAGE.value

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    async def generate(self, context: ScanContext) -> List[TradingOpportunity]:
        cfg = context.config
        collections = list(await context.trends.get_trending_collections())[: cfg.max_arbitrage_collections]
        results = await asyncio.gather(*(self._fetch_and_evaluate(context, item) for item in collections))
        return [opportunity for opportunity in results if opportunity is not None]

    async def _fetch_and_evaluate(
        self, context: ScanContext, collection: TrendingCollection
    ) -> Optional[TradingOpportunity]:
        try:
            listings = await context.valuation.fetch_listings(collection.contract_address, collection.token_id)
        except Exception as exc:  # noqa: BLE001 - one collection never fails the strategy
            self._logger.warning("Arbitrage listing fetch failed for %s: %s", collection.contract_address, exc)
            return None
        return self._evaluate(context, collection, listings)

    def _evaluate(
        self,
        context: ScanContext,
        collection: TrendingCollection,
        listings: List[Listing],
    ) -> Optional[TradingOpportunity]:
        cfg = context.config
        if len(listings) < 2:
            return None
        cheapest = min(listings, key=lambda listing: listing.price)
        priciest = max(listings, key=lambda listing: listing.price)
        if cheapest.price <= 0:
            return None
        gap = priciest.price - cheapest.price
        spread = gap / cheapest.price
        if spread <= cfg.arbitrage_min_spread:
            return None
        if spread > cfg.arbitrage_high_spread:
            risk = RiskLevel.HIGH
        elif spread > cfg.arbitrage_medium_spread:
            risk = RiskLevel.MEDIUM
        else:
            risk = RiskLevel.LOW
        return TradingOpportunity(
            id=new_id(self.name),
            strategy_type=StrategyType.ARBITRAGE,
            contract_address=collection.contract_address,
            token_id=collection.token_id or None,
            expected_return=cfg.arbitrage_fee_factor * gap,
            confidence=min(spread * 100, cfg.arbitrage_max_confidence),
            risk_level=risk,
            time_horizon=TimeHorizon.SHORT,
            reasoning=[
                f"Price spread of {spread * 100:.1f}% between marketplaces",
                f"Buy at {cheapest.price:.2f} on {cheapest.marketplace}, sell at {priciest.price:.2f} on {priciest.marketplace}",
                f"Potential profit: {gap:.2f}",
            ],
            suggested_action=TradingAction(
                type=ActionType.BUY,
                parameters={
                    "contract_address": collection.contract_address,
                    "token_id": collection.token_id or None,
                    "max_price": cheapest.price,
                    "marketplace": cheapest.marketplace,
                },
                marketplace=DEFAULT_MARKETPLACE,
            ),
            market_data=OpportunityMarketData(
                floor_price=cheapest.price,
                listings_count=len(listings),
            ),
            discovered_at=context.timestamp,
        )


__all__ = ["ArbitrageStrategy"]
