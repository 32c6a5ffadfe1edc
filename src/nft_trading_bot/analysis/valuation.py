"""Heuristic valuation and collection analytics for digital collectibles."""

from __future__ import annotations

import asyncio
import statistics
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from ..config.settings import ValuationConfig, get_app_config
from ..datalake.schemas import (
    AssetInfo,
    CollectionAnalytics,
    CollectionStats,
    Listing,
    MarketSnapshot,
    Offer,
    PricePoint,
    Sentiment,
    Valuation,
)
from ..datalake.storage import TradingState
from ..ingestion.providers import MarketDataProvider
from ..monitoring.logger import get_logger
from ..utils.constants import SECONDS_PER_DAY, utc_now
from ..utils.errors import NotFoundError

T = TypeVar("T")


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


def valuation_key(contract_address: str, token_id: str) -> str:
    return f"{contract_address}-{token_id}"


# ---------------------------------------------------------------------------
# Scoring functions
# ---------------------------------------------------------------------------


def estimate_value(snapshot: MarketSnapshot, config: ValuationConfig, now: datetime) -> float:
    """Floor price, blended with a recent sale and lifted by a rarity premium."""

    value = snapshot.floor_price
    if snapshot.last_sale_price is not None and snapshot.price_history:
        age_days = (now - snapshot.price_history[0].timestamp).total_seconds() / SECONDS_PER_DAY
        if age_days < config.recent_sale_days:
            value = (value + snapshot.last_sale_price) / 2
    rarity = snapshot.asset.rarity if snapshot.asset else None
    if rarity is not None and rarity > config.rarity_premium_threshold:
        value *= 1 + (min(rarity, 1.0) - config.rarity_premium_threshold) * config.rarity_premium_slope
    return value


def compute_confidence(snapshot: MarketSnapshot, config: ValuationConfig) -> float:
    asset = snapshot.asset
    confidence = config.base_confidence
    if snapshot.last_sale_price is not None:
        confidence += config.confidence_step
    if snapshot.price_history:
        confidence += config.confidence_step
    if asset is not None and asset.rarity is not None:
        confidence += config.confidence_step
    if asset is not None and asset.traits:
        confidence += config.confidence_step
    if asset is not None and (asset.collection_supply or 0) > config.established_supply:
        confidence += config.confidence_step
    return clamp(confidence, 0.0, 1.0)


def compute_volatility(prices: Sequence[float]) -> float:
    """Population standard deviation of sequential returns, in stored order."""

    if len(prices) < 2:
        return 0.0
    returns = [
        (current - previous) / previous
        for previous, current in zip(prices, prices[1:])
        if previous != 0
    ]
    if not returns:
        return 0.0
    return float(statistics.pstdev(returns))


def compute_liquidity_score(listings_count: int, analytics: Optional[CollectionAnalytics]) -> float:
    score = 0.0
    if listings_count >= 1:
        score += 20
    if listings_count >= 3:
        score += 20
    if analytics is not None:
        if analytics.volume_24h != 0:
            score += 30
        if analytics.listings_count > 10:
            score += 20
        if analytics.holders_count > 100:
            score += 10
    return clamp(score, 0.0, 100.0)


def compute_rarity_score(rarity: Optional[float], default: float = 50.0) -> float:
    if rarity is None:
        return default
    return clamp(rarity * 100, 0.0, 100.0)


def determine_sentiment(prices: Sequence[float], window: int = 7, threshold: float = 0.1) -> Sentiment:
    """Compare the most recent window of sales with the window before it."""

    recent = list(prices[:window])
    prior = list(prices[window : window * 2])
    if len(recent) < window or len(prior) < window:
        return Sentiment.NEUTRAL
    prior_mean = statistics.fmean(prior)
    if prior_mean == 0:
        return Sentiment.NEUTRAL
    change = (statistics.fmean(recent) - prior_mean) / prior_mean
    if change > threshold:
        return Sentiment.BULLISH
    if change < -threshold:
        return Sentiment.BEARISH
    return Sentiment.NEUTRAL


def compute_blue_chip_score(stats: CollectionStats) -> float:
    score = 0.0
    if stats.market_cap > 1_000_000:
        score += 30
    elif stats.market_cap > 100_000:
        score += 20
    if stats.holders_count > 1000:
        score += 25
    elif stats.holders_count > 100:
        score += 15
    if stats.total_volume > 100_000:
        score += 25
    elif stats.total_volume > 10_000:
        score += 15
    if stats.twitter_username:
        score += 5
    if stats.discord_url:
        score += 5
    return clamp(score, 0.0, 100.0)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ValuationEngine:
    """Builds market snapshots from every configured source and scores them.

    The first source is primary: it supplies the floor price and collection stats.
    Listings, offers and sales are merged across all sources.
    """

    def __init__(
        self,
        sources: Sequence[MarketDataProvider],
        *,
        state: Optional[TradingState] = None,
        config: Optional[ValuationConfig] = None,
        sale_history_limit: int = 20,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not sources:
            raise ValueError("ValuationEngine requires at least one market data source")
        self._sources = list(sources)
        self._state = state or TradingState()
        self._config = config or get_app_config().valuation
        self._sale_history_limit = sale_history_limit
        self._clock = clock
        self._logger = get_logger(__name__)

    @property
    def primary(self) -> MarketDataProvider:
        return self._sources[0]

    @property
    def sources(self) -> List[MarketDataProvider]:
        return list(self._sources)

    async def _safe(self, operation: str, source: MarketDataProvider, call: Awaitable[T], default: T) -> T:
        try:
            return await call
        except Exception as exc:  # noqa: BLE001 - a failing source degrades to its default
            self._logger.warning(
                "%s.%s failed, using default: %s", getattr(source, "name", "source"), operation, exc
            )
            return default

    async def fetch_listings(self, contract_address: str, token_id: str) -> List[Listing]:
        """Active listings for one item, gathered across every source."""

        results = await asyncio.gather(
            *(
                self._safe("get_asset_listings", source, source.get_asset_listings(contract_address, token_id), [])
                for source in self._sources
            )
        )
        return [listing for batch in results for listing in batch]

    async def _fetch_offers(self, contract_address: str, token_id: str) -> List[Offer]:
        results = await asyncio.gather(
            *(
                self._safe("get_asset_offers", source, source.get_asset_offers(contract_address, token_id), [])
                for source in self._sources
            )
        )
        return [offer for batch in results for offer in batch]

    async def _fetch_sales(self, contract_address: str, token_id: str) -> List[PricePoint]:
        results = await asyncio.gather(
            *(
                self._safe(
                    "get_asset_trades",
                    source,
                    source.get_asset_trades(contract_address, token_id, self._sale_history_limit),
                    [],
                )
                for source in self._sources
            )
        )
        if len(results) == 1:
            return list(results[0])
        merged = [point for batch in results for point in batch]
        merged.sort(key=lambda point: point.timestamp, reverse=True)
        return merged

    async def _fetch_asset(self, contract_address: str, token_id: str) -> Optional[AssetInfo]:
        assets = await asyncio.gather(
            *(
                self._safe("get_asset", source, source.get_asset(contract_address, token_id), None)
                for source in self._sources
            )
        )
        return next((asset for asset in assets if asset is not None), None)

    async def _fetch_floor_price(self, collection_id: str) -> Optional[float]:
        for source in self._sources:
            floor = await self._safe("get_floor_price", source, source.get_floor_price(collection_id), None)
            if floor is not None:
                return floor
        return None

    async def snapshot(self, contract_address: str, token_id: str) -> MarketSnapshot:
        """Capture an immutable bundle of market data for one item."""

        asset, sales, listings, offers = await asyncio.gather(
            self._fetch_asset(contract_address, token_id),
            self._fetch_sales(contract_address, token_id),
            self.fetch_listings(contract_address, token_id),
            self._fetch_offers(contract_address, token_id),
        )
        if asset is None:
            raise NotFoundError("asset", valuation_key(contract_address, token_id))
        floor = await self._fetch_floor_price(asset.collection_id or contract_address)
        last_sale = asset.last_sale_price
        if last_sale is None:
            last_sale = next((point.price for point in sales if point.price is not None), None)
        return MarketSnapshot(
            contract_address=contract_address,
            token_id=token_id,
            floor_price=floor or 0.0,
            last_sale_price=last_sale,
            price_history=tuple(sales),
            listings=tuple(listings),
            offers=tuple(offers),
            asset=asset,
            captured_at=self._clock(),
        )

    async def valuate(
        self,
        contract_address: str,
        token_id: str,
        *,
        refresh: bool = False,
        persist: bool = True,
    ) -> Valuation:
        """Return the valuation for an item, computing it on a cache miss.

        ``refresh`` skips the cache read; ``persist=False`` leaves both caches untouched.
        """

        key = valuation_key(contract_address, token_id)
        if not refresh:
            cached = self._state.valuations.get(key)
            if cached is not None:
                return cached

        snapshot = await self.snapshot(contract_address, token_id)
        collection_id = (snapshot.asset.collection_id if snapshot.asset else None) or contract_address
        analytics: Optional[CollectionAnalytics]
        try:
            analytics = await self.collection_analytics(collection_id, persist=persist)
        except Exception as exc:  # noqa: BLE001 - liquidity falls back to listing components
            self._logger.warning("Collection analytics unavailable for %s: %s", collection_id, exc)
            analytics = None

        prices = snapshot.priced_sales
        rarity = snapshot.asset.rarity if snapshot.asset else None
        valuation = Valuation(
            contract_address=contract_address,
            token_id=token_id,
            current_floor_price=snapshot.floor_price,
            estimated_value=estimate_value(snapshot, self._config, self._clock()),
            confidence=compute_confidence(snapshot, self._config),
            volatility=compute_volatility(prices),
            liquidity_score=compute_liquidity_score(len(snapshot.listings), analytics),
            rarity_score=compute_rarity_score(rarity, self._config.default_rarity_score),
            sentiment=determine_sentiment(
                prices, self._config.sentiment_window, self._config.sentiment_threshold
            ),
            last_sale_price=snapshot.last_sale_price,
            last_sale_date=snapshot.price_history[0].timestamp if snapshot.price_history else None,
            price_history=list(snapshot.price_history),
            computed_at=self._clock(),
        )
        if persist:
            self._state.valuations.set(key, valuation)
        self._logger.debug(
            "Valuated %s value=%.4f confidence=%.2f", key, valuation.estimated_value, valuation.confidence
        )
        return valuation

    async def collection_analytics(self, collection_id: str, *, persist: bool = True) -> CollectionAnalytics:
        cached = self._state.collections.get(collection_id)
        if cached is not None:
            return cached
        stats = await self._safe(
            "get_collection_stats", self.primary, self.primary.get_collection_stats(collection_id), None
        )
        if stats is None:
            raise NotFoundError("collection", collection_id)
        analytics = CollectionAnalytics(
            collection_id=collection_id,
            name=stats.name,
            total_supply=stats.total_supply,
            holders_count=stats.holders_count,
            floor_price=stats.floor_price,
            market_cap=stats.market_cap,
            volume_24h=stats.volume_24h,
            volume_7d=stats.volume_7d,
            volume_30d=stats.volume_30d,
            change_24h=stats.change_24h,
            change_7d=stats.change_7d,
            change_30d=stats.change_30d,
            average_price=stats.average_price,
            sales_24h=stats.sales_24h,
            sales_7d=stats.sales_7d,
            sales_30d=stats.sales_30d,
            listings_count=stats.listings_count,
            offers_count=stats.offers_count,
            # No trade-graph analysis is available; the score is a fixed low value.
            wash_trading_score=clamp(self._config.wash_trading_placeholder_score, 0.0, 100.0),
            blue_chip_score=compute_blue_chip_score(stats),
            wash_trading_is_placeholder=True,
            computed_at=self._clock(),
        )
        if persist:
            self._state.collections.set(collection_id, analytics)
        return analytics

    def clear_caches(self) -> None:
        self._state.clear_caches()

    def cache_sizes(self) -> Dict[str, Any]:
        return {
            "valuations": len(self._state.valuations),
            "collections": len(self._state.collections),
        }


__all__ = [
    "ValuationEngine",
    "clamp",
    "compute_blue_chip_score",
    "compute_confidence",
    "compute_liquidity_score",
    "compute_rarity_score",
    "compute_volatility",
    "determine_sentiment",
    "estimate_value",
    "valuation_key",
]
