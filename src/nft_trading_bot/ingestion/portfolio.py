"""In-memory portfolio provider seeded from position files or the host."""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from ..datalake.schemas import PortfolioPosition, PortfolioSummary
from ..monitoring.logger import get_logger

PositionValuer = Callable[[PortfolioPosition], Awaitable[Optional[float]]]


class InMemoryPortfolio:
    """``PortfolioProvider`` keeping positions per owner in process memory.

    When a ``valuer`` is supplied the summary values each position at its current
    estimate, falling back to the acquisition price when valuation fails.
    """

    def __init__(self, valuer: Optional[PositionValuer] = None) -> None:
        self._positions: Dict[str, List[PortfolioPosition]] = {}
        self._lock = threading.RLock()
        self._valuer = valuer
        self._logger = get_logger(__name__)

    def set_valuer(self, valuer: Optional[PositionValuer]) -> None:
        self._valuer = valuer

    def set_positions(self, owner: str, positions: Iterable[PortfolioPosition]) -> None:
        with self._lock:
            self._positions[owner] = list(positions)

    def add_position(self, owner: str, position: PortfolioPosition) -> None:
        with self._lock:
            self._positions.setdefault(owner, []).append(position)

    def remove_position(self, owner: str, position_id: str) -> bool:
        with self._lock:
            positions = self._positions.get(owner, [])
            remaining = [item for item in positions if item.id != position_id]
            self._positions[owner] = remaining
            return len(remaining) != len(positions)

    def clear(self, owner: Optional[str] = None) -> None:
        with self._lock:
            if owner is None:
                self._positions.clear()
            else:
                self._positions.pop(owner, None)

    async def get_positions(self, owner: str) -> Sequence[PortfolioPosition]:
        with self._lock:
            return list(self._positions.get(owner, []))

    async def get_portfolio_summary(self, owner: str) -> PortfolioSummary:
        positions = await self.get_positions(owner)
        values = await asyncio.gather(*(self._value_of(position) for position in positions))
        return PortfolioSummary(
            owner=owner,
            total_value=float(sum(values)),
            total_positions=len(positions),
            unique_collections=len({position.contract_address for position in positions}),
        )

    async def _value_of(self, position: PortfolioPosition) -> float:
        if self._valuer is None:
            return position.acquisition_price
        try:
            value = await self._valuer(position)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "Valuation failed for %s/%s, using acquisition price: %s",
                position.contract_address,
                position.token_id,
                exc,
            )
            return position.acquisition_price
        return position.acquisition_price if value is None else value


__all__ = ["InMemoryPortfolio", "PositionValuer"]
