"""Quick-flip strategy over an owner's recently acquired positions."""

from __future__ import annotations

import asyncio
from typing import List

from ..datalake.schemas import (
    ActionType,
    OpportunityMarketData,
    PortfolioPosition,
    RiskLevel,
    StrategyType,
    TimeHorizon,
    TradingAction,
    TradingOpportunity,
)
from ..monitoring.logger import get_logger
from ..utils.constants import DEFAULT_MARKETPLACE, new_id
from .base import OpportunityStrategy, ScanContext


class FlipStrategy(OpportunityStrategy):
    """Suggests selling young positions whose value has run well past cost."""

    name = StrategyType.FLIP.value

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    async def generate(self, context: ScanContext) -> List[TradingOpportunity]:
        positions = list(await context.portfolio.get_positions(context.owner))
        results = await asyncio.gather(*(self._evaluate_isolated(context, position) for position in positions))
        return [opportunity for opportunity in results if opportunity is not None]

    async def _evaluate_isolated(
        self, context: ScanContext, position: PortfolioPosition
    ) -> TradingOpportunity | None:
        try:
            return await self._evaluate(context, position)
        except Exception as exc:  # noqa: BLE001 - one position never fails the strategy
            self._logger.warning("Flip evaluation failed for position %s: %s", position.id, exc)
            return None

    async def _evaluate(self, context: ScanContext, position: PortfolioPosition) -> TradingOpportunity | None:
        cfg = context.config
        if position.acquisition_price <= 0:
            return None
        held = position.holding_days(context.timestamp)
        if held >= cfg.flip_max_holding_days:
            return None
        # Fresh scan-time valuation; the cache is neither read nor written.
        valuation = await context.valuation.valuate(
            position.contract_address, position.token_id, refresh=True, persist=False
        )
        current = valuation.estimated_value
        margin = (current - position.acquisition_price) / position.acquisition_price
        if margin <= cfg.flip_min_margin:
            return None
        risk = RiskLevel.HIGH if held < cfg.flip_high_risk_holding_days else RiskLevel.MEDIUM
        return TradingOpportunity(
            id=new_id(self.name),
            strategy_type=StrategyType.FLIP,
            contract_address=position.contract_address,
            token_id=position.token_id,
            expected_return=current - position.acquisition_price,
            confidence=min(margin * 50, cfg.flip_max_confidence),
            risk_level=risk,
            time_horizon=TimeHorizon.SHORT,
            reasoning=[
                f"Held for {held:.0f} days",
                f"Current value: {current:.2f}",
                f"Profit potential: {margin * 100:.1f}%",
                f"Market sentiment: {valuation.sentiment.value}",
            ],
            suggested_action=TradingAction(
                type=ActionType.SELL,
                parameters={
                    "contract_address": position.contract_address,
                    "token_id": position.token_id,
                    "min_price": current * cfg.flip_sell_discount,
                },
                marketplace=DEFAULT_MARKETPLACE,
            ),
            market_data=OpportunityMarketData(
                floor_price=valuation.current_floor_price,
                last_sale_price=valuation.last_sale_price,
            ),
            discovered_at=context.timestamp,
        )


__all__ = ["FlipStrategy"]
