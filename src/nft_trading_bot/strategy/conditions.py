"""Evaluation of trading conditions against live market and portfolio data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from ..analysis.valuation import ValuationEngine
from ..datalake.schemas import ConditionOperator, ConditionType, TradingCondition
from ..ingestion.providers import PortfolioProvider
from ..monitoring.logger import get_logger
from ..utils.constants import utc_now
from ..utils.errors import ConfigurationError


class ConditionOutcome(str, Enum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    UNIMPLEMENTED = "unimplemented"
    MALFORMED = "malformed"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class ConditionEvaluation:
    """Result of evaluating one condition.

    Only ``SATISFIED`` counts as true; the other outcomes say why a condition did not hold.
    """

    outcome: ConditionOutcome
    observed: Any = None
    detail: str = ""

    @property
    def satisfied(self) -> bool:
        return self.outcome is ConditionOutcome.SATISFIED


_UNIMPLEMENTED_TYPES = {ConditionType.RARITY, ConditionType.VOLUME, ConditionType.MARKET_SENTIMENT}


def _as_number(value: Any, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigurationError(f"{label} must be numeric, got {value!r}")
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{label} must be numeric, got {value!r}") from exc


def compare_values(observed: Any, operator: ConditionOperator, expected: Any) -> bool:
    """Apply ``operator`` to the observed value; raises ConfigurationError on bad operands."""

    if operator is ConditionOperator.CONTAINS:
        if not isinstance(expected, (list, tuple, set, frozenset)):
            raise ConfigurationError("contains expects a list of candidate values")
        return observed in expected
    if operator is ConditionOperator.BETWEEN:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            raise ConfigurationError("between expects a [low, high] pair")
        low = _as_number(expected[0], "between lower bound")
        high = _as_number(expected[1], "between upper bound")
        current = _as_number(observed, "observed value")
        return low <= current <= high
    current = _as_number(observed, "observed value")
    target = _as_number(expected, "condition value")
    if operator is ConditionOperator.GT:
        return current > target
    if operator is ConditionOperator.LT:
        return current < target
    if operator is ConditionOperator.GTE:
        return current >= target
    if operator is ConditionOperator.LTE:
        return current <= target
    if operator is ConditionOperator.EQ:
        return current == target
    raise ConfigurationError(f"Unsupported operator {operator!r}")


class ConditionEvaluator:
    """Dispatches conditions by type to the data source that answers them."""

    def __init__(
        self,
        valuation: ValuationEngine,
        portfolio: PortfolioProvider,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._valuation = valuation
        self._portfolio = portfolio
        self._clock = clock
        self._logger = get_logger(__name__)

    async def _observe(self, owner: str, condition: TradingCondition) -> Any:
        if condition.type is ConditionType.PRICE:
            if not condition.contract_address or not condition.token_id:
                raise ConfigurationError("price condition requires contract_address and token_id")
            valuation = await self._valuation.valuate(condition.contract_address, condition.token_id)
            return valuation.estimated_value
        if condition.type is ConditionType.FLOOR_PRICE:
            if not condition.contract_address:
                raise ConfigurationError("floor_price condition requires contract_address")
            analytics = await self._valuation.collection_analytics(condition.contract_address)
            return analytics.floor_price
        if condition.type is ConditionType.PORTFOLIO:
            summary = await self._portfolio.get_portfolio_summary(owner)
            return summary.total_value
        if condition.type is ConditionType.TIME:
            return self._clock().hour
        raise ConfigurationError(f"Unknown condition type {condition.type!r}")

    async def assess(self, owner: str, condition: TradingCondition) -> ConditionEvaluation:
        if condition.type in _UNIMPLEMENTED_TYPES:
            return ConditionEvaluation(
                ConditionOutcome.UNIMPLEMENTED,
                detail=f"{condition.type.value} conditions are not evaluated",
            )
        try:
            observed = await self._observe(owner, condition)
        except ConfigurationError as exc:
            return ConditionEvaluation(ConditionOutcome.MALFORMED, detail=str(exc))
        except Exception as exc:  # noqa: BLE001 - data failures make the condition false
            self._logger.warning("Condition %s could not be evaluated: %s", condition.type.value, exc)
            return ConditionEvaluation(ConditionOutcome.ERROR, detail=str(exc))
        try:
            matched = compare_values(observed, condition.operator, condition.value)
        except ConfigurationError as exc:
            return ConditionEvaluation(ConditionOutcome.MALFORMED, observed=observed, detail=str(exc))
        outcome = ConditionOutcome.SATISFIED if matched else ConditionOutcome.UNSATISFIED
        return ConditionEvaluation(outcome, observed=observed)

    async def evaluate(self, owner: str, condition: TradingCondition) -> bool:
        return (await self.assess(owner, condition)).satisfied

    async def first_failure(
        self, owner: str, conditions: Iterable[TradingCondition]
    ) -> Optional[ConditionEvaluation]:
        """Evaluate in order and return the first evaluation that did not hold."""

        for condition in conditions:
            evaluation = await self.assess(owner, condition)
            if not evaluation.satisfied:
                return evaluation
        return None

    async def evaluate_all(self, owner: str, conditions: Iterable[TradingCondition]) -> bool:
        """AND-combine conditions, stopping at the first one that does not hold."""

        return await self.first_failure(owner, conditions) is None


__all__ = [
    "ConditionEvaluation",
    "ConditionEvaluator",
    "ConditionOutcome",
    "compare_values",
]
