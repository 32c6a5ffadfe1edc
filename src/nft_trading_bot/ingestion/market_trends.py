"""Market-trends provider backed by a configured watchlist.

No market-wide ranking feed is wired in, so gainers and losers stay empty until a
host seeds them and trending collections come from the scanner watchlist.
"""

from __future__ import annotations

import threading
from typing import Iterable, List, Optional, Sequence

from ..config.settings import ScannerConfig, get_app_config
from ..datalake.schemas import MarketMover, TrendingCollection


class StaticMarketTrends:
    """Placeholder ``MarketTrendsProvider`` returning neutral data."""

    def __init__(
        self,
        config: Optional[ScannerConfig] = None,
        *,
        trending: Optional[Iterable[TrendingCollection]] = None,
    ) -> None:
        self._config = config or get_app_config().scanner
        self._lock = threading.Lock()
        self._gainers: List[MarketMover] = []
        self._losers: List[MarketMover] = []
        if trending is not None:
            self._trending = list(trending)
        else:
            self._trending = [TrendingCollection(contract_address=item) for item in self._config.watchlist]

    def seed_movers(
        self,
        *,
        gainers: Sequence[MarketMover] = (),
        losers: Sequence[MarketMover] = (),
    ) -> None:
        with self._lock:
            self._gainers = list(gainers)
            self._losers = list(losers)

    async def get_top_gainers(self) -> Sequence[MarketMover]:
        with self._lock:
            return sorted(self._gainers, key=lambda mover: mover.change_percent, reverse=True)

    async def get_top_losers(self) -> Sequence[MarketMover]:
        with self._lock:
            return sorted(self._losers, key=lambda mover: mover.change_percent)

    async def get_trending_collections(self) -> Sequence[TrendingCollection]:
        with self._lock:
            return list(self._trending)


__all__ = ["StaticMarketTrends"]
