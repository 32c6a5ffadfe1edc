"""Data models used across ingestion, analysis, strategy and execution layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..utils.constants import SECONDS_PER_DAY, utc_now


class Sentiment(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TimeHorizon(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class StrategyType(str, Enum):
    ARBITRAGE = "arbitrage"
    FLIP = "flip"
    MOMENTUM = "momentum"
    MEAN_REVERSION = "mean_reversion"


class RuleType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    SWAP = "swap"
    REBALANCE = "rebalance"


class ConditionType(str, Enum):
    PRICE = "price"
    FLOOR_PRICE = "floor_price"
    VOLUME = "volume"
    RARITY = "rarity"
    TIME = "time"
    PORTFOLIO = "portfolio"
    MARKET_SENTIMENT = "market_sentiment"


class ConditionOperator(str, Enum):
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    GTE = "gte"
    LTE = "lte"
    BETWEEN = "between"
    CONTAINS = "contains"


class ActionType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    LIST = "list"
    UNLIST = "unlist"
    OFFER = "offer"
    CANCEL_OFFER = "cancel_offer"
    ALERT = "alert"
    REBALANCE = "rebalance"


class ActionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TradeStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {TradeStatus.COMPLETED, TradeStatus.FAILED, TradeStatus.CANCELLED}


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PricePoint:
    """A single historical sale."""

    timestamp: datetime
    price: Optional[float]
    marketplace: str = "opensea"
    transaction_hash: Optional[str] = None
    payment_token: Optional[str] = None


@dataclass(slots=True, frozen=True)
class Listing:
    """An active ask on a marketplace."""

    marketplace: str
    price: float
    listing_id: Optional[str] = None
    seller: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class Offer:
    """An active bid on a marketplace."""

    marketplace: str
    price: float
    offer_id: Optional[str] = None
    bidder: Optional[str] = None


@dataclass(slots=True)
class AssetInfo:
    """Metadata describing a single collectible."""

    contract_address: str
    token_id: str
    name: str = ""
    collection_id: Optional[str] = None
    last_sale_price: Optional[float] = None
    rarity: Optional[float] = None
    traits: Dict[str, Any] = field(default_factory=dict)
    collection_supply: Optional[int] = None
    image_url: Optional[str] = None


@dataclass(slots=True)
class CollectionStats:
    """Raw collection statistics reported by a marketplace."""

    collection_id: str
    name: str = ""
    total_supply: int = 0
    holders_count: int = 0
    floor_price: float = 0.0
    market_cap: float = 0.0
    total_volume: float = 0.0
    volume_24h: float = 0.0
    volume_7d: float = 0.0
    volume_30d: float = 0.0
    change_24h: float = 0.0
    change_7d: float = 0.0
    change_30d: float = 0.0
    average_price: float = 0.0
    sales_24h: int = 0
    sales_7d: int = 0
    sales_30d: int = 0
    listings_count: int = 0
    offers_count: int = 0
    twitter_username: Optional[str] = None
    discord_url: Optional[str] = None


@dataclass(slots=True, frozen=True)
class MarketSnapshot:
    """Immutable bundle of market data for one item, captured at a point in time.

    ``price_history`` is ordered most recent first.
    """

    contract_address: str
    token_id: str
    floor_price: float
    last_sale_price: Optional[float]
    price_history: Tuple[PricePoint, ...] = ()
    listings: Tuple[Listing, ...] = ()
    offers: Tuple[Offer, ...] = ()
    asset: Optional[AssetInfo] = None
    captured_at: datetime = field(default_factory=utc_now)

    @property
    def priced_sales(self) -> List[float]:
        return [point.price for point in self.price_history if point.price is not None]


@dataclass(slots=True)
class Valuation:
    """Derived valuation for a single item."""

    contract_address: str
    token_id: str
    current_floor_price: float
    estimated_value: float
    confidence: float
    volatility: float
    liquidity_score: float
    rarity_score: float
    sentiment: Sentiment
    last_sale_price: Optional[float] = None
    last_sale_date: Optional[datetime] = None
    price_history: List[PricePoint] = field(default_factory=list)
    computed_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class CollectionAnalytics:
    """Derived analytics for a collection."""

    collection_id: str
    name: str
    total_supply: int
    holders_count: int
    floor_price: float
    market_cap: float
    volume_24h: float
    volume_7d: float
    volume_30d: float
    change_24h: float
    change_7d: float
    change_30d: float
    average_price: float
    sales_24h: int
    sales_7d: int
    sales_30d: int
    listings_count: int
    offers_count: int
    wash_trading_score: float
    blue_chip_score: float
    unique_buyers_24h: int = 0
    unique_sellers_24h: int = 0
    wash_trading_is_placeholder: bool = True
    computed_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class MarketMover:
    """A collection ranked among top gainers or losers."""

    contract_address: str
    name: str
    change_percent: float
    floor_price: float


@dataclass(slots=True)
class TrendingCollection:
    contract_address: str
    name: str = ""
    token_id: str = ""


# ---------------------------------------------------------------------------
# Portfolio
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class PortfolioPosition:
    """A collectible held by an owner."""

    id: str
    contract_address: str
    token_id: str
    acquisition_price: float
    holding_period_days: float = 0.0
    name: str = ""
    acquisition_date: Optional[datetime] = None
    marketplace: str = "opensea"

    def holding_days(self, now: datetime) -> float:
        """Days held as of ``now``; the stored period is used only without an acquisition date."""

        if self.acquisition_date is None:
            return self.holding_period_days
        acquired = self.acquisition_date
        if acquired.tzinfo is None:
            acquired = acquired.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return max((now - acquired).total_seconds() / SECONDS_PER_DAY, 0.0)


@dataclass(slots=True)
class PortfolioSummary:
    owner: str
    total_value: float
    total_positions: int = 0
    unique_collections: int = 0


# ---------------------------------------------------------------------------
# Rules, opportunities and trades
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TradingCondition:
    """A typed boolean test evaluated against live data."""

    type: ConditionType
    operator: ConditionOperator
    value: Any
    contract_address: Optional[str] = None
    token_id: Optional[str] = None


@dataclass(slots=True)
class TradingAction:
    """An action dispatched when a rule fires."""

    type: ActionType
    parameters: Dict[str, Any] = field(default_factory=dict)
    marketplace: str = "auto"
    max_slippage: Optional[float] = None
    priority: Optional[ActionPriority] = None


@dataclass(slots=True)
class RuleDraft:
    """User supplied fields of a trading rule, before the engine assigns state."""

    name: str
    type: RuleType
    conditions: List[TradingCondition] = field(default_factory=list)
    actions: List[TradingAction] = field(default_factory=list)
    description: str = ""
    enabled: bool = True
    priority: int = 0
    cooldown_period: float = 60.0
    max_executions_per_day: int = 1


@dataclass(slots=True)
class TradingRule:
    """Owner scoped automation rule with execution statistics."""

    id: str
    name: str
    type: RuleType
    conditions: List[TradingCondition] = field(default_factory=list)
    actions: List[TradingAction] = field(default_factory=list)
    description: str = ""
    enabled: bool = True
    priority: int = 0
    cooldown_period: float = 60.0
    max_executions_per_day: int = 1
    last_executed: Optional[datetime] = None
    execution_count: int = 0
    success_rate: float = 0.0
    total_profit: float = 0.0
    created_at: datetime = field(default_factory=utc_now)
    quota_window_started_at: Optional[datetime] = None
    total_executions: int = 0
    trades_attempted: int = 0
    trades_succeeded: int = 0


# Fields an owner may change through ``RuleEngine.update_rule``.
EDITABLE_RULE_FIELDS = frozenset(
    {
        "name",
        "description",
        "type",
        "conditions",
        "actions",
        "enabled",
        "priority",
        "cooldown_period",
        "max_executions_per_day",
    }
)


@dataclass(slots=True)
class OpportunityMarketData:
    floor_price: float
    last_sale_price: Optional[float] = None
    volume_24h: float = 0.0
    listings_count: int = 0
    offers_count: int = 0


@dataclass(slots=True)
class TradingOpportunity:
    """Scanner produced suggestion."""

    id: str
    strategy_type: StrategyType
    contract_address: str
    expected_return: float
    confidence: float
    risk_level: RiskLevel
    time_horizon: TimeHorizon
    reasoning: List[str]
    suggested_action: TradingAction
    market_data: OpportunityMarketData
    token_id: Optional[str] = None
    discovered_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class OrderRequest:
    """Payload handed to a marketplace executor."""

    owner: str
    trade_id: str
    action_type: ActionType
    contract_address: Optional[str]
    token_id: Optional[str]
    price: float
    marketplace: str
    max_slippage: Optional[float] = None
    priority: Optional[ActionPriority] = None
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExecutionReceipt:
    """Result returned by a marketplace executor."""

    transaction_hash: Optional[str] = None
    fill_price: Optional[float] = None
    profit: Optional[float] = None
    gas_cost: Optional[float] = None


@dataclass(slots=True)
class AutomatedTrade:
    """Record of one dispatched action."""

    id: str
    rule_id: str
    action_type: ActionType
    contract_address: Optional[str]
    token_id: Optional[str]
    price: float
    marketplace: str
    status: TradeStatus = TradeStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    executed_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    profit: Optional[float] = None
    gas_cost: Optional[float] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TradingPerformance:
    total_trades: int
    successful_trades: int
    total_profit: float
    win_rate: float
    average_profit: float
    best_trade: float
    worst_trade: float


__all__ = [
    "ActionPriority",
    "ActionType",
    "AssetInfo",
    "AutomatedTrade",
    "CollectionAnalytics",
    "CollectionStats",
    "ConditionOperator",
    "ConditionType",
    "EDITABLE_RULE_FIELDS",
    "ExecutionReceipt",
    "Listing",
    "MarketMover",
    "MarketSnapshot",
    "Offer",
    "OpportunityMarketData",
    "OrderRequest",
    "PortfolioPosition",
    "PortfolioSummary",
    "PricePoint",
    "RiskLevel",
    "RuleDraft",
    "RuleType",
    "Sentiment",
    "StrategyType",
    "TimeHorizon",
    "TradeStatus",
    "TradingAction",
    "TradingCondition",
    "TradingOpportunity",
    "TradingPerformance",
    "TradingRule",
    "TrendingCollection",
    "Valuation",
]
