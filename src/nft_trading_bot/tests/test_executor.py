from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from nft_trading_bot.datalake.schemas import ActionType, TradeStatus, TradingAction
from nft_trading_bot.datalake.storage import TradingState
from nft_trading_bot.execution.executor import ActionExecutor
from nft_trading_bot.execution.paper import PaperMarketplaceExecutor
from nft_trading_bot.monitoring.event_bus import EventBus, EventSeverity, EventType
from nft_trading_bot.monitoring.metrics import MetricsRegistry

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class RejectingMarketplace:
    async def submit_buy(self, order):
        raise RuntimeError("order rejected")

    async def submit_sell(self, order):
        raise RuntimeError("order rejected")

    async def submit_listing(self, order):
        raise RuntimeError("order rejected")


def _executor(marketplace=None):
    state = TradingState()
    bus = EventBus()
    metrics = MetricsRegistry()
    executor = ActionExecutor(
        marketplace or PaperMarketplaceExecutor(),
        state=state,
        event_bus=bus,
        metrics=metrics,
        clock=lambda: NOW,
    )
    return executor, state, bus, metrics


def test_buy_is_filled_by_paper_marketplace() -> None:
    marketplace = PaperMarketplaceExecutor()
    executor, state, bus, metrics = _executor(marketplace)
    action = TradingAction(
        type=ActionType.BUY,
        parameters={"contract_address": "0xabc", "token_id": 7, "max_price": 1.5},
        marketplace="opensea",
    )
    trade = asyncio.run(executor.execute("alice", "rule-1", action))

    assert trade.status is TradeStatus.COMPLETED
    assert trade.price == 1.5
    assert trade.token_id == "7"
    assert trade.transaction_hash.startswith("dry-run-")
    assert trade.metadata["fill_price"] == 1.5
    assert trade.executed_at == NOW
    assert state.trades_for("alice") == [trade]
    assert marketplace.orders[0].marketplace == "opensea"
    assert metrics.get("trades.buy.completed") == 1
    event = bus.history()[-1]
    assert event.type is EventType.TRADE_EXECUTED
    assert event.payload["status"] == "completed"


def test_dispatch_failure_is_recorded_on_trade() -> None:
    executor, state, bus, _ = _executor(RejectingMarketplace())
    action = TradingAction(type=ActionType.SELL, parameters={"min_price": "2.5"})
    trade = asyncio.run(executor.execute("alice", "rule-1", action))

    assert trade.status is TradeStatus.FAILED
    assert trade.price == 2.5
    assert "sell dispatch failed" in trade.error
    assert trade.status.is_terminal
    assert bus.history()[-1].severity is EventSeverity.WARNING
    assert state.trades_for("alice")[0].status is TradeStatus.FAILED


def test_unsupported_actions_are_cancelled() -> None:
    executor, state, _, metrics = _executor()
    for action_type in (ActionType.UNLIST, ActionType.OFFER, ActionType.CANCEL_OFFER):
        trade = asyncio.run(executor.execute("alice", "rule-1", TradingAction(type=action_type)))
        assert trade.status is TradeStatus.CANCELLED
        assert trade.error == f"unsupported action: {action_type.value}"
        assert trade.price == 0.0
    assert len(state.trades_for("alice")) == 3
    assert metrics.get("trades.unlist.cancelled") == 1


def test_alert_and_rebalance_publish_events() -> None:
    executor, _, bus, _ = _executor()
    alert = asyncio.run(
        executor.execute("alice", "rule-1", TradingAction(type=ActionType.ALERT, parameters={"message": "floor up"}))
    )
    rebalance = asyncio.run(executor.execute("alice", "rule-2", TradingAction(type=ActionType.REBALANCE)))

    assert alert.status is TradeStatus.COMPLETED
    assert rebalance.status is TradeStatus.COMPLETED
    types = [event.type for event in bus.history()]
    assert EventType.ALERT_TRIGGERED in types
    assert EventType.REBALANCE_REQUESTED in types
    triggered = next(event for event in bus.history() if event.type is EventType.ALERT_TRIGGERED)
    assert triggered.payload["message"] == "floor up"
    assert triggered.severity is EventSeverity.WARNING
