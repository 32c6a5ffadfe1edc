"""Trading performance summaries over an owner's trade log."""

from __future__ import annotations

from typing import Iterable

from ..datalake.schemas import AutomatedTrade, TradeStatus, TradingPerformance


def summarize_performance(trades: Iterable[AutomatedTrade]) -> TradingPerformance:
    """Summarise completed trades; a win is a trade with positive profit.

    ``win_rate`` is a percentage. Trades without a recorded profit count as zero.
    """

    profits = [trade.profit or 0.0 for trade in trades if trade.status is TradeStatus.COMPLETED]
    if not profits:
        return TradingPerformance(
            total_trades=0,
            successful_trades=0,
            total_profit=0.0,
            win_rate=0.0,
            average_profit=0.0,
            best_trade=0.0,
            worst_trade=0.0,
        )
    wins = sum(1 for profit in profits if profit > 0)
    total = sum(profits)
    return TradingPerformance(
        total_trades=len(profits),
        successful_trades=wins,
        total_profit=total,
        win_rate=wins / len(profits) * 100,
        average_profit=total / len(profits),
        best_trade=max(profits),
        worst_trade=min(profits),
    )


__all__ = ["summarize_performance"]
