from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from nft_trading_bot.analysis.valuation import ValuationEngine
from nft_trading_bot.config.settings import ScannerConfig, ValuationConfig
from nft_trading_bot.datalake.schemas import (
    ActionType,
    AssetInfo,
    Listing,
    MarketMover,
    PortfolioPosition,
    RiskLevel,
    StrategyType,
    TimeHorizon,
    TrendingCollection,
)
from nft_trading_bot.datalake.storage import TradingState
from nft_trading_bot.ingestion.market_trends import StaticMarketTrends
from nft_trading_bot.ingestion.portfolio import InMemoryPortfolio
from nft_trading_bot.monitoring.event_bus import EventBus, EventType
from nft_trading_bot.strategy import (
    ArbitrageStrategy,
    FlipStrategy,
    MeanReversionStrategy,
    MomentumStrategy,
    OpportunityScanner,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class MarketplaceSource:
    """Market data for a single marketplace with one listing per item."""

    def __init__(self, name: str, *, listing_price: float | None = None, floor: float = 1.0) -> None:
        self.name = name
        self.listing_price = listing_price
        self.floor = floor

    async def get_asset(self, contract_address, token_id):
        return AssetInfo(contract_address=contract_address, token_id=token_id)

    async def get_floor_price(self, collection_id):
        return self.floor

    async def get_asset_listings(self, contract_address, token_id):
        if self.listing_price is None:
            return []
        return [Listing(marketplace=self.name, price=self.listing_price)]

    async def get_asset_offers(self, contract_address, token_id):
        return []

    async def get_asset_trades(self, contract_address, token_id, limit=20):
        return []

    async def get_collection_stats(self, collection_id):
        return None


class OverlapTrackingSource(MarketplaceSource):
    """Counts how many listing lookups are in flight at once."""

    def __init__(self, name: str, **kwargs) -> None:
        super().__init__(name, **kwargs)
        self.in_flight = 0
        self.max_in_flight = 0
        self.missing: set[str] = set()

    async def get_asset(self, contract_address, token_id):
        if token_id in self.missing:
            return None
        return await super().get_asset(contract_address, token_id)

    async def get_asset_listings(self, contract_address, token_id):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().get_asset_listings(contract_address, token_id)
        finally:
            self.in_flight -= 1


class ExplodingStrategy:
    name = "exploding"

    async def generate(self, context):
        raise RuntimeError("strategy crashed")


def _scanner(sources, *, strategies, trends=None, portfolio=None, state=None, bus=None):
    state = state or TradingState()
    config = ScannerConfig()
    valuation = ValuationEngine(sources, state=state, config=ValuationConfig(), clock=lambda: NOW)
    return OpportunityScanner(
        valuation,
        portfolio or InMemoryPortfolio(),
        trends or StaticMarketTrends(config, trending=[TrendingCollection("0xabc", token_id="7")]),
        state=state,
        event_bus=bus or EventBus(),
        config=config,
        strategies=strategies,
        clock=lambda: NOW,
    )


def _position(days: float, price: float = 100.0) -> PortfolioPosition:
    return PortfolioPosition(
        id="pos-1",
        contract_address="0xabc",
        token_id="7",
        acquisition_price=price,
        holding_period_days=days,
    )


def test_arbitrage_detects_cross_marketplace_spread() -> None:
    sources = [MarketplaceSource("opensea", listing_price=100.0), MarketplaceSource("zora", listing_price=106.0)]
    opportunities = asyncio.run(_scanner(sources, strategies=[ArbitrageStrategy()]).scan("alice"))

    assert len(opportunities) == 1
    opportunity = opportunities[0]
    assert opportunity.strategy_type is StrategyType.ARBITRAGE
    assert opportunity.expected_return == pytest.approx(5.4)
    assert opportunity.confidence == pytest.approx(6.0)
    assert opportunity.risk_level is RiskLevel.LOW
    assert opportunity.time_horizon is TimeHorizon.SHORT
    assert opportunity.suggested_action.type is ActionType.BUY
    assert opportunity.suggested_action.parameters["max_price"] == 100.0
    assert opportunity.suggested_action.parameters["marketplace"] == "opensea"
    assert opportunity.market_data.floor_price == 100.0
    assert opportunity.market_data.listings_count == 2


def test_arbitrage_ignores_spread_at_or_below_threshold() -> None:
    sources = [MarketplaceSource("opensea", listing_price=100.0), MarketplaceSource("zora", listing_price=104.0)]
    assert asyncio.run(_scanner(sources, strategies=[ArbitrageStrategy()]).scan("alice")) == []


def test_arbitrage_needs_two_listings() -> None:
    sources = [MarketplaceSource("opensea", listing_price=100.0)]
    assert asyncio.run(_scanner(sources, strategies=[ArbitrageStrategy()]).scan("alice")) == []


@pytest.mark.parametrize("days, risk", [(10, RiskLevel.MEDIUM), (3, RiskLevel.HIGH)])
def test_flip_suggests_selling_fast_gainers(days: float, risk: RiskLevel) -> None:
    portfolio = InMemoryPortfolio()
    portfolio.set_positions("alice", [_position(days)])
    state = TradingState()
    scanner = _scanner(
        [MarketplaceSource("opensea", floor=160.0)],
        strategies=[FlipStrategy()],
        portfolio=portfolio,
        state=state,
    )
    opportunities = asyncio.run(scanner.scan("alice"))

    assert len(opportunities) == 1
    opportunity = opportunities[0]
    assert opportunity.strategy_type is StrategyType.FLIP
    assert opportunity.risk_level is risk
    assert opportunity.expected_return == pytest.approx(60.0)
    assert opportunity.confidence == pytest.approx(30.0)
    assert opportunity.suggested_action.type is ActionType.SELL
    assert opportunity.suggested_action.parameters["min_price"] == pytest.approx(152.0)
    assert len(opportunity.reasoning) == 4
    assert len(state.valuations) == 0


@pytest.mark.parametrize("floor, days", [(140.0, 10), (160.0, 30), (160.0, 45)])
def test_flip_skips_small_margins_and_old_positions(floor: float, days: float) -> None:
    portfolio = InMemoryPortfolio()
    portfolio.set_positions("alice", [_position(days)])
    scanner = _scanner([MarketplaceSource("opensea", floor=floor)], strategies=[FlipStrategy()], portfolio=portfolio)
    assert asyncio.run(scanner.scan("alice")) == []


def test_flip_skips_free_acquisitions() -> None:
    portfolio = InMemoryPortfolio()
    portfolio.set_positions("alice", [_position(2, price=0.0)])
    scanner = _scanner([MarketplaceSource("opensea", floor=5.0)], strategies=[FlipStrategy()], portfolio=portfolio)
    assert asyncio.run(scanner.scan("alice")) == []


def test_momentum_and_mean_reversion_use_market_movers() -> None:
    config = ScannerConfig()
    trends = StaticMarketTrends(config, trending=[])
    trends.seed_movers(
        gainers=[MarketMover("0xg1", "Gainer", 60.0, 2.0), MarketMover("0xg2", "Slow", 10.0, 1.0)],
        losers=[MarketMover("0xl1", "Loser", -25.0, 1.0), MarketMover("0xl2", "Dip", -10.0, 1.0)],
    )
    scanner = _scanner(
        [MarketplaceSource("opensea")],
        strategies=[MomentumStrategy(), MeanReversionStrategy()],
        trends=trends,
    )
    opportunities = asyncio.run(scanner.scan("alice"))
    by_contract = {item.contract_address: item for item in opportunities}

    assert set(by_contract) == {"0xg1", "0xg2", "0xl1"}
    hot = by_contract["0xg1"]
    assert hot.risk_level is RiskLevel.HIGH
    assert hot.expected_return == pytest.approx(0.2)
    assert hot.confidence == pytest.approx(85.0)
    assert hot.suggested_action.parameters["max_price"] == pytest.approx(2.1)
    assert by_contract["0xg2"].risk_level is RiskLevel.MEDIUM
    dip = by_contract["0xl1"]
    assert dip.strategy_type is StrategyType.MEAN_REVERSION
    assert dip.confidence == pytest.approx(25.0)
    assert dip.expected_return == pytest.approx(0.15)
    assert dip.suggested_action.parameters["max_price"] == pytest.approx(0.9)


def test_failing_strategy_contributes_nothing() -> None:
    bus = EventBus()
    sources = [MarketplaceSource("opensea", listing_price=100.0), MarketplaceSource("zora", listing_price=150.0)]
    scanner = _scanner(sources, strategies=[ExplodingStrategy(), ArbitrageStrategy()], bus=bus)
    opportunities = asyncio.run(scanner.scan("alice"))

    assert [item.strategy_type for item in opportunities] == [StrategyType.ARBITRAGE]
    assert opportunities[0].risk_level is RiskLevel.HIGH
    event = bus.history()[-1]
    assert event.type is EventType.OPPORTUNITIES_SCANNED
    assert event.payload["count"] == 1
    assert event.payload["by_strategy"] == {"arbitrage": 1}


def test_scan_replaces_cached_opportunities() -> None:
    sources = [MarketplaceSource("opensea", listing_price=100.0), MarketplaceSource("zora", listing_price=120.0)]
    scanner = _scanner(sources, strategies=[ArbitrageStrategy()])
    first = asyncio.run(scanner.scan("alice"))
    assert scanner.get_opportunities("alice") == first
    sources[1].listing_price = 101.0
    assert asyncio.run(scanner.scan("alice")) == []
    assert scanner.get_opportunities("alice") == []
    assert scanner.get_opportunities("bob") == []


def _dated_position(position_id: str, token_id: str, acquired: datetime) -> PortfolioPosition:
    return PortfolioPosition(
        id=position_id,
        contract_address="0xabc",
        token_id=token_id,
        acquisition_price=100.0,
        acquisition_date=acquired,
    )


@pytest.mark.parametrize("age_days, risk", [(45, None), (30, None), (10, RiskLevel.MEDIUM), (3, RiskLevel.HIGH)])
def test_flip_measures_holding_from_acquisition_date(age_days: float, risk) -> None:
    portfolio = InMemoryPortfolio()
    # a stale stored period must not hide the real age
    stale = _dated_position("pos-1", "7", NOW - timedelta(days=age_days))
    stale.holding_period_days = 1.0
    portfolio.set_positions("alice", [stale])
    scanner = _scanner([MarketplaceSource("opensea", floor=160.0)], strategies=[FlipStrategy()], portfolio=portfolio)
    opportunities = asyncio.run(scanner.scan("alice"))

    if risk is None:
        assert opportunities == []
    else:
        assert [item.risk_level for item in opportunities] == [risk]
        assert opportunities[0].reasoning[0] == f"Held for {age_days} days"


def test_flip_evaluates_positions_concurrently_and_isolates_failures() -> None:
    source = OverlapTrackingSource("opensea", floor=160.0)
    source.missing.add("2")
    portfolio = InMemoryPortfolio()
    portfolio.set_positions(
        "alice",
        [_dated_position(f"pos-{index}", str(index), NOW - timedelta(days=2)) for index in (1, 2, 3)],
    )
    scanner = _scanner([source], strategies=[FlipStrategy()], portfolio=portfolio)
    opportunities = asyncio.run(scanner.scan("alice"))

    assert [item.token_id for item in opportunities] == ["1", "3"]
    assert source.max_in_flight == 3


def test_arbitrage_fetches_collections_concurrently_in_trending_order() -> None:
    opensea = OverlapTrackingSource("opensea", listing_price=100.0)
    zora = MarketplaceSource("zora", listing_price=120.0)
    trends = StaticMarketTrends(
        ScannerConfig(),
        trending=[TrendingCollection("0xc1", token_id="1"), TrendingCollection("0xc2", token_id="2")],
    )
    scanner = _scanner([opensea, zora], strategies=[ArbitrageStrategy()], trends=trends)
    opportunities = asyncio.run(scanner.scan("alice"))

    assert [item.contract_address for item in opportunities] == ["0xc1", "0xc2"]
    assert opensea.max_in_flight == 2
