from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from nft_trading_bot.datalake.parsing import parse_position, parse_rule_draft, parse_rule_updates
from nft_trading_bot.datalake.schemas import (
    ActionPriority,
    ActionType,
    ConditionOperator,
    ConditionType,
    RuleType,
)
from nft_trading_bot.datalake.storage import InMemoryStore, TradingState
from nft_trading_bot.main import load_positions, load_rules
from nft_trading_bot.utils.errors import ConfigurationError

RULE_PAYLOAD = {
    "name": "Buy the dip",
    "type": "BUY",
    "priority": "2",
    "cooldown_period": 30,
    "max_executions_per_day": 3,
    "conditions": [
        {"type": "floor_price", "operator": "lt", "value": 1.2, "contract_address": "0xabc"},
    ],
    "actions": [
        {
            "type": "buy",
            "parameters": {"contract_address": "0xabc", "max_price": 1.2},
            "marketplace": "opensea",
            "priority": "high",
            "max_slippage": "0.02",
        }
    ],
}


def test_parse_rule_draft_normalises_enums_and_numbers() -> None:
    draft = parse_rule_draft(RULE_PAYLOAD)

    assert draft.type is RuleType.BUY
    assert draft.priority == 2
    assert draft.cooldown_period == 30.0
    assert draft.conditions[0].type is ConditionType.FLOOR_PRICE
    assert draft.conditions[0].operator is ConditionOperator.LT
    action = draft.actions[0]
    assert action.type is ActionType.BUY
    assert action.priority is ActionPriority.HIGH
    assert action.max_slippage == pytest.approx(0.02)
    assert action.marketplace == "opensea"


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "buy"},
        {"name": "x", "type": "hodl"},
        {"name": "x", "cooldown_period": -5},
        {"name": "x", "conditions": [{"type": "price"}]},
        {"name": "x", "actions": [{"type": "teleport"}]},
        {"name": "x", "actions": {"type": "buy"}},
    ],
)
def test_parse_rule_draft_rejects_malformed_payloads(payload) -> None:
    with pytest.raises(ConfigurationError):
        parse_rule_draft(payload)


def test_parse_rule_updates_converts_nested_values() -> None:
    updates = parse_rule_updates({"enabled": False, "actions": [{"type": "alert"}], "type": "sell"})
    assert updates["enabled"] is False
    assert updates["actions"][0].type is ActionType.ALERT
    assert updates["type"] is RuleType.SELL


@pytest.mark.parametrize("raw", ["false", "yes", 0, 1, None])
def test_enabled_flag_must_be_a_boolean(raw) -> None:
    with pytest.raises(ConfigurationError):
        parse_rule_draft({"name": "x", "enabled": raw})
    with pytest.raises(ConfigurationError):
        parse_rule_updates({"enabled": raw})
    assert parse_rule_draft({"name": "x", "enabled": False}).enabled is False


def test_parse_position_reads_naive_dates_as_utc() -> None:
    position = parse_position(
        {"contract_address": "0xabc", "token_id": "1", "acquisition_price": 1.0, "acquisition_date": "2024-04-01T12:00:00"}
    )
    assert position.acquisition_date == datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)
    assert position.holding_period_days == 0.0
    assert position.holding_days(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)) == pytest.approx(30.0)


def test_parse_position_requires_core_fields() -> None:
    position = parse_position(
        {
            "contract_address": "0xabc",
            "token_id": 7,
            "acquisition_price": "1.5",
            "holding_period_days": 3,
            "acquisition_date": "2024-04-28T12:00:00+00:00",
        }
    )
    assert position.id == "0xabc:7"
    assert position.token_id == "7"
    assert position.acquisition_price == 1.5
    assert position.acquisition_date.year == 2024
    with pytest.raises(ConfigurationError):
        parse_position({"contract_address": "0xabc"})


def test_rule_and_position_files_load_from_toml_and_json(tmp_path: Path) -> None:
    rules_path = tmp_path / "rules.toml"
    rules_path.write_text(
        """
[[rules]]
name = "Weekday alert"
type = "buy"

[[rules.conditions]]
type = "time"
operator = "between"
value = [9, 17]

[[rules.actions]]
type = "alert"
parameters = { message = "market hours" }
"""
    )
    positions_path = tmp_path / "positions.json"
    positions_path.write_text(
        json.dumps([{"contract_address": "0xabc", "token_id": "1", "acquisition_price": 2.0}])
    )

    drafts = load_rules(rules_path)
    positions = load_positions(positions_path)

    assert [draft.name for draft in drafts] == ["Weekday alert"]
    assert drafts[0].conditions[0].value == [9, 17]
    assert drafts[0].actions[0].parameters == {"message": "market hours"}
    assert positions[0].acquisition_price == 2.0


def test_in_memory_store_update_is_atomic_per_key() -> None:
    store: InMemoryStore[list] = InMemoryStore()
    store.update("alice", lambda current: [*(current or []), 1])
    store.update("alice", lambda current: [*(current or []), 2])
    assert store.get("alice") == [1, 2]
    assert store.keys() == ["alice"]
    assert store.delete("alice") is True
    assert store.delete("alice") is False
    assert len(store) == 0


def test_trading_state_clears_owner_and_all_data() -> None:
    state = TradingState()
    state.rules.set("alice", [])
    state.trades.set("alice", [])
    state.opportunities.set("bob", [])
    state.valuations.set("0xabc-1", object())

    state.clear_owner("alice")
    assert state.rules.get("alice") is None
    assert state.opportunities.get("bob") == []

    state.clear_all()
    assert len(state.opportunities) == 0
    assert len(state.valuations) == 0
