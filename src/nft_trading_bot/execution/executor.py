"""Dispatch of rule actions to marketplace executors with trade bookkeeping."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from ..datalake.schemas import (
    ActionType,
    AutomatedTrade,
    ExecutionReceipt,
    OrderRequest,
    TradeStatus,
    TradingAction,
)
from ..datalake.storage import TradingState
from ..ingestion.providers import MarketplaceExecutor
from ..monitoring.event_bus import EventBus, EventSeverity, EventType
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS, MetricsRegistry
from ..utils.constants import new_id, utc_now
from ..utils.errors import RuleExecutionError

_ORDER_ACTIONS = {ActionType.BUY, ActionType.SELL, ActionType.LIST}
_PRICE_KEYS = ("price", "max_price", "min_price")


def _action_price(parameters: Mapping[str, Any]) -> float:
    for key in _PRICE_KEYS:
        value = parameters.get(key)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return 0.0


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class ActionExecutor:
    """Creates a trade record for each action and drives it to a terminal status."""

    def __init__(
        self,
        marketplace: MarketplaceExecutor,
        *,
        state: TradingState,
        event_bus: EventBus,
        metrics: MetricsRegistry = METRICS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._marketplace = marketplace
        self._state = state
        self._bus = event_bus
        self._metrics = metrics
        self._clock = clock
        self._logger = get_logger(__name__)

    async def execute(self, owner: str, rule_id: str, action: TradingAction) -> AutomatedTrade:
        parameters = dict(action.parameters)
        marketplace = action.marketplace or str(parameters.get("marketplace") or "auto")
        trade = AutomatedTrade(
            id=new_id("trade"),
            rule_id=rule_id,
            action_type=action.type,
            contract_address=_optional_str(parameters.get("contract_address")),
            token_id=_optional_str(parameters.get("token_id")),
            price=_action_price(parameters),
            marketplace=marketplace,
            created_at=self._clock(),
            metadata=parameters,
        )
        self._state.append_trade(owner, trade)
        trade.status = TradeStatus.EXECUTING

        if action.type in _ORDER_ACTIONS:
            try:
                receipt = await self._submit(owner, trade, action)
            except RuleExecutionError as exc:
                self._finish(trade, TradeStatus.FAILED, error=str(exc))
                self._logger.warning("Trade %s for rule %s failed: %s", trade.id, rule_id, exc)
            else:
                trade.transaction_hash = receipt.transaction_hash
                trade.profit = receipt.profit
                trade.gas_cost = receipt.gas_cost
                if receipt.fill_price is not None:
                    trade.metadata["fill_price"] = receipt.fill_price
                self._finish(trade, TradeStatus.COMPLETED)
        elif action.type is ActionType.REBALANCE:
            self._bus.publish(
                EventType.REBALANCE_REQUESTED,
                {"owner": owner, "rule_id": rule_id, "trade_id": trade.id, "parameters": parameters},
            )
            self._finish(trade, TradeStatus.COMPLETED)
        elif action.type is ActionType.ALERT:
            self._bus.publish(
                EventType.ALERT_TRIGGERED,
                {
                    "owner": owner,
                    "rule_id": rule_id,
                    "trade_id": trade.id,
                    "message": parameters.get("message") or f"Rule {rule_id} triggered an alert",
                    "parameters": parameters,
                },
                severity=EventSeverity.WARNING,
            )
            self._finish(trade, TradeStatus.COMPLETED)
        else:
            self._finish(trade, TradeStatus.CANCELLED, error=f"unsupported action: {action.type.value}")

        self._metrics.increment(f"trades.{action.type.value}.{trade.status.value}")
        self._bus.publish(
            EventType.TRADE_EXECUTED,
            {"owner": owner, **self._trade_payload(trade)},
            severity=EventSeverity.WARNING if trade.status is TradeStatus.FAILED else EventSeverity.INFO,
        )
        return trade

    async def _submit(self, owner: str, trade: AutomatedTrade, action: TradingAction) -> ExecutionReceipt:
        order = OrderRequest(
            owner=owner,
            trade_id=trade.id,
            action_type=action.type,
            contract_address=trade.contract_address,
            token_id=trade.token_id,
            price=trade.price,
            marketplace=trade.marketplace,
            max_slippage=action.max_slippage,
            priority=action.priority,
            parameters=dict(action.parameters),
        )
        try:
            if action.type is ActionType.BUY:
                return await self._marketplace.submit_buy(order)
            if action.type is ActionType.SELL:
                return await self._marketplace.submit_sell(order)
            return await self._marketplace.submit_listing(order)
        except Exception as exc:  # noqa: BLE001 - recorded on the trade
            raise RuleExecutionError(f"{action.type.value} dispatch failed: {exc}") from exc

    def _finish(self, trade: AutomatedTrade, status: TradeStatus, *, error: Optional[str] = None) -> None:
        trade.status = status
        trade.error = error
        trade.executed_at = self._clock()

    @staticmethod
    def _trade_payload(trade: AutomatedTrade) -> Dict[str, Any]:
        return {
            "trade_id": trade.id,
            "rule_id": trade.rule_id,
            "action_type": trade.action_type.value,
            "status": trade.status.value,
            "contract_address": trade.contract_address,
            "token_id": trade.token_id,
            "price": trade.price,
            "marketplace": trade.marketplace,
            "transaction_hash": trade.transaction_hash,
            "profit": trade.profit,
            "error": trade.error,
        }


__all__ = ["ActionExecutor"]
