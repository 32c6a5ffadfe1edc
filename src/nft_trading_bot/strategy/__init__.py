"""Strategy package exports."""

from .arbitrage import ArbitrageStrategy
from .base import OpportunityStrategy, ScanContext
from .conditions import ConditionEvaluator
from .flip import FlipStrategy
from .mean_reversion import MeanReversionStrategy
from .momentum import MomentumStrategy
from .rules import RuleEngine
from .scanner import OpportunityScanner, default_strategies

__all__ = [
    "OpportunityStrategy",
    "ScanContext",
    "OpportunityScanner",
    "RuleEngine",
    "ConditionEvaluator",
    "ArbitrageStrategy",
    "FlipStrategy",
    "MomentumStrategy",
    "MeanReversionStrategy",
    "default_strategies",
]
