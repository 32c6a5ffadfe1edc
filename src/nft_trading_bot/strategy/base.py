"""Opportunity strategy interfaces and context objects."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence

from ..analysis.valuation import ValuationEngine
from ..config.settings import ScannerConfig
from ..datalake.schemas import TradingOpportunity
from ..ingestion.providers import MarketTrendsProvider, PortfolioProvider


@dataclass(slots=True)
class ScanContext:
    """Context supplied to each strategy during one scan."""

    owner: str
    timestamp: datetime
    valuation: ValuationEngine
    portfolio: PortfolioProvider
    trends: MarketTrendsProvider
    config: ScannerConfig


class OpportunityStrategy(Protocol):
    """Protocol implemented by all opportunity strategies."""

    name: str

    async def generate(self, context: ScanContext) -> Sequence[TradingOpportunity]:
        """Produce opportunities for the supplied context."""


__all__ = ["OpportunityStrategy", "ScanContext"]
