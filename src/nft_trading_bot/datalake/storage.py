"""In-memory state stores backing caches and per-owner maps."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, Iterator, List, Optional, Protocol, Tuple, TypeVar

from .schemas import (
    AutomatedTrade,
    CollectionAnalytics,
    TradingOpportunity,
    TradingRule,
    Valuation,
)

V = TypeVar("V")


class KeyValueStore(Protocol[V]):
    """Minimal store contract; a deployment may back it with a durable store."""

    def get(self, key: str) -> Optional[V]:
        ...

    def set(self, key: str, value: V) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def clear(self) -> None:
        ...

    def keys(self) -> List[str]:
        ...

    def __len__(self) -> int:
        ...


class InMemoryStore(Generic[V]):
    """Thread-safe dictionary backed store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._items: Dict[str, V] = {}

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._items[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._items.keys())

    def items(self) -> Iterator[Tuple[str, V]]:
        with self._lock:
            snapshot = list(self._items.items())
        return iter(snapshot)

    def update(self, key: str, mutate: Callable[[Optional[V]], V]) -> V:
        """Atomically replace ``key`` with ``mutate(current)``."""

        with self._lock:
            value = mutate(self._items.get(key))
            self._items[key] = value
            return value

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass(slots=True)
class TradingState:
    """Process wide state owned by one long-lived service context.

    Each instance is independent so tests and multiple services never share data.
    """

    valuations: InMemoryStore[Valuation] = field(default_factory=InMemoryStore)
    collections: InMemoryStore[CollectionAnalytics] = field(default_factory=InMemoryStore)
    rules: InMemoryStore[List[TradingRule]] = field(default_factory=InMemoryStore)
    trades: InMemoryStore[List[AutomatedTrade]] = field(default_factory=InMemoryStore)
    opportunities: InMemoryStore[List[TradingOpportunity]] = field(default_factory=InMemoryStore)

    def rules_for(self, owner: str) -> List[TradingRule]:
        return list(self.rules.get(owner) or [])

    def trades_for(self, owner: str) -> List[AutomatedTrade]:
        return list(self.trades.get(owner) or [])

    def opportunities_for(self, owner: str) -> List[TradingOpportunity]:
        return list(self.opportunities.get(owner) or [])

    def append_trade(self, owner: str, trade: AutomatedTrade) -> None:
        self.trades.update(owner, lambda current: [*(current or []), trade])

    def clear_owner(self, owner: str) -> None:
        self.rules.delete(owner)
        self.trades.delete(owner)
        self.opportunities.delete(owner)

    def clear_caches(self) -> None:
        self.valuations.clear()
        self.collections.clear()

    def clear_all(self) -> None:
        self.rules.clear()
        self.trades.clear()
        self.opportunities.clear()
        self.clear_caches()


__all__ = ["InMemoryStore", "KeyValueStore", "TradingState"]
