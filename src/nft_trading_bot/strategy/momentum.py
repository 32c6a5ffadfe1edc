"""Momentum entries on the market's top gaining collections."""

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


class MomentumStrategy(OpportunityStrategy):
    name = StrategyType.MOMENTUM.value

    async def generate(self, context: ScanContext) -> List[TradingOpportunity]:
        cfg = context.config
        gainers = list(await context.trends.get_top_gainers())[: cfg.momentum_top_n]
        opportunities: List[TradingOpportunity] = []
        for gainer in gainers:
            risk = RiskLevel.HIGH if gainer.change_percent > cfg.momentum_high_risk_change_pct else RiskLevel.MEDIUM
            opportunities.append(
                TradingOpportunity(
                    id=new_id(self.name),
                    strategy_type=StrategyType.MOMENTUM,
                    contract_address=gainer.contract_address,
                    expected_return=gainer.floor_price * cfg.momentum_expected_return_pct,
                    confidence=max(0.0, min(gainer.change_percent * 2, cfg.momentum_max_confidence)),
                    risk_level=risk,
                    time_horizon=TimeHorizon.MEDIUM,
                    reasoning=[
                        f"Collection gained {gainer.change_percent:.1f}% recently",
                        "Strong upward momentum detected",
                        f"Floor price: {gainer.floor_price:.2f}",
                    ],
                    suggested_action=TradingAction(
                        type=ActionType.BUY,
                        parameters={
                            "contract_address": gainer.contract_address,
                            "max_price": gainer.floor_price * cfg.momentum_max_price_multiplier,
                        },
                        marketplace=DEFAULT_MARKETPLACE,
                    ),
                    market_data=OpportunityMarketData(floor_price=gainer.floor_price),
                    discovered_at=context.timestamp,
                )
            )
        return opportunities


__all__ = ["MomentumStrategy"]
