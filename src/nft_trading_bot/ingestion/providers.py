"""Collaborator interfaces consumed by the valuation, scanning and execution layers."""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from ..datalake.schemas import (
    AssetInfo,
    CollectionStats,
    ExecutionReceipt,
    Listing,
    MarketMover,
    Offer,
    OrderRequest,
    PortfolioPosition,
    PortfolioSummary,
    PricePoint,
    TrendingCollection,
)


@runtime_checkable
class MarketDataProvider(Protocol):
    """Read access to one marketplace's data."""

    name: str

    async def get_asset(self, contract_address: str, token_id: str) -> Optional[AssetInfo]:
        ...

    async def get_floor_price(self, collection_id: str) -> Optional[float]:
        ...

    async def get_asset_listings(self, contract_address: str, token_id: str) -> List[Listing]:
        ...

    async def get_asset_offers(self, contract_address: str, token_id: str) -> List[Offer]:
        ...

    async def get_asset_trades(
        self, contract_address: str, token_id: str, limit: int = 20
    ) -> List[PricePoint]:
        """Return sales ordered most recent first."""

    async def get_collection_stats(self, collection_id: str) -> Optional[CollectionStats]:
        ...


@runtime_checkable
class PortfolioProvider(Protocol):
    async def get_positions(self, owner: str) -> Sequence[PortfolioPosition]:
        ...

    async def get_portfolio_summary(self, owner: str) -> PortfolioSummary:
        ...


@runtime_checkable
class MarketTrendsProvider(Protocol):
    async def get_top_gainers(self) -> Sequence[MarketMover]:
        ...

    async def get_top_losers(self) -> Sequence[MarketMover]:
        ...

    async def get_trending_collections(self) -> Sequence[TrendingCollection]:
        ...


@runtime_checkable
class MarketplaceExecutor(Protocol):
    """Submits orders to a marketplace. Raising signals a failed dispatch."""

    async def submit_buy(self, order: OrderRequest) -> ExecutionReceipt:
        ...

    async def submit_sell(self, order: OrderRequest) -> ExecutionReceipt:
        ...

    async def submit_listing(self, order: OrderRequest) -> ExecutionReceipt:
        ...


__all__ = [
    "MarketDataProvider",
    "MarketTrendsProvider",
    "MarketplaceExecutor",
    "PortfolioProvider",
]
