"""Mean-reversion entries on sharply declining collections."""

from __future__ import annotations

from typing import List

from ..datalake.schemas import (
    ActionType,
    OpportunityMarketData,
    RiskLevel,
    StrategyType,
    TimeHorizon,
    TradingAction,
    TradingOpportunity,
)
from ..utils.constants import DEFAULT_MARKETPLACE, new_id
from .base import OpportunityStrategy, ScanContext


class MeanReversionStrategy(OpportunityStrategy):
    """Bids below floor on top losers, expecting a partial rebound."""

    name = StrategyType.MEAN_REVERSION.value

    async def generate(self, context: ScanContext) -> List[TradingOpportunity]:
        cfg = context.config
        losers = list(await context.trends.get_top_losers())[: cfg.mean_reversion_top_n]
        opportunities: List[TradingOpportunity] = []
        for loser in losers:
            decline = abs(loser.change_percent)
            if decline <= cfg.mean_reversion_min_decline_pct:
                continue
            opportunities.append(
                TradingOpportunity(
                    id=new_id(self.name),
                    strategy_type=StrategyType.MEAN_REVERSION,
                    contract_address=loser.contract_address,
                    expected_return=loser.floor_price * cfg.mean_reversion_expected_return_pct,
                    confidence=min(decline, cfg.mean_reversion_max_confidence),
                    risk_level=RiskLevel.MEDIUM,
                    time_horizon=TimeHorizon.MEDIUM,
                    reasoning=[
                        f"Collection declined {decline:.1f}% recently",
                        "Potential mean reversion opportunity",
                        f"Floor price: {loser.floor_price:.2f}",
                    ],
                    suggested_action=TradingAction(
                        type=ActionType.BUY,
                        parameters={
                            "contract_address": loser.contract_address,
                            "max_price": loser.floor_price * cfg.mean_reversion_discount,
                        },
                        marketplace=DEFAULT_MARKETPLACE,
                    ),
                    market_data=OpportunityMarketData(floor_price=loser.floor_price),
                    discovered_at=context.timestamp,
                )
            )
        return opportunities


__all__ = ["MeanReversionStrategy"]
