"""Build rule, action and position models from plain mappings (TOML, JSON, HTTP)."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Type, TypeVar

from ..utils.errors import ConfigurationError
from .schemas import (
    ActionPriority,
    ActionType,
    ConditionOperator,
    ConditionType,
    PortfolioPosition,
    RuleDraft,
    RuleType,
    TradingAction,
    TradingCondition,
)

E = TypeVar("E", bound=Enum)


def _enum(enum_type: Type[E], raw: Any, field_name: str) -> E:
    if isinstance(raw, enum_type):
        return raw
    try:
        return enum_type(str(raw).lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_type)
        raise ConfigurationError(f"Invalid {field_name} {raw!r}; expected one of: {allowed}") from exc


def parse_condition(payload: Mapping[str, Any]) -> TradingCondition:
    if "type" not in payload or "operator" not in payload:
        raise ConfigurationError("Condition requires 'type' and 'operator'")
    return TradingCondition(
        type=_enum(ConditionType, payload["type"], "condition type"),
        operator=_enum(ConditionOperator, payload["operator"], "condition operator"),
        value=payload.get("value"),
        contract_address=payload.get("contract_address"),
        token_id=_optional_str(payload.get("token_id")),
    )


def parse_action(payload: Mapping[str, Any]) -> TradingAction:
    if "type" not in payload:
        raise ConfigurationError("Action requires 'type'")
    parameters = payload.get("parameters") or {}
    if not isinstance(parameters, Mapping):
        raise ConfigurationError("Action 'parameters' must be a mapping")
    priority = payload.get("priority")
    max_slippage = payload.get("max_slippage")
    return TradingAction(
        type=_enum(ActionType, payload["type"], "action type"),
        parameters=dict(parameters),
        marketplace=str(payload.get("marketplace") or "auto"),
        max_slippage=float(max_slippage) if max_slippage is not None else None,
        priority=_enum(ActionPriority, priority, "action priority") if priority else None,
    )


def parse_rule_draft(payload: Mapping[str, Any]) -> RuleDraft:
    if not payload.get("name"):
        raise ConfigurationError("Rule requires a 'name'")
    try:
        cooldown = float(payload.get("cooldown_period", 60.0))
        max_per_day = int(payload.get("max_executions_per_day", 1))
        priority = int(payload.get("priority", 0))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid numeric rule field: {exc}") from exc
    if cooldown < 0 or max_per_day < 0:
        raise ConfigurationError("cooldown_period and max_executions_per_day must be non-negative")
    return RuleDraft(
        name=str(payload["name"]),
        type=_enum(RuleType, payload.get("type", RuleType.BUY.value), "rule type"),
        conditions=[parse_condition(item) for item in _as_list(payload.get("conditions"))],
        actions=[parse_action(item) for item in _as_list(payload.get("actions"))],
        description=str(payload.get("description", "")),
        enabled=_bool(payload.get("enabled", True), "enabled"),
        priority=priority,
        cooldown_period=cooldown,
        max_executions_per_day=max_per_day,
    )


def parse_rule_updates(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Coerce a partial update mapping into model values."""

    updates: Dict[str, Any] = dict(payload)
    if "conditions" in updates:
        updates["conditions"] = [parse_condition(item) for item in _as_list(updates["conditions"])]
    if "actions" in updates:
        updates["actions"] = [parse_action(item) for item in _as_list(updates["actions"])]
    if "type" in updates:
        updates["type"] = _enum(RuleType, updates["type"], "rule type")
    try:
        for key, cast in (("cooldown_period", float), ("max_executions_per_day", int), ("priority", int)):
            if key in updates:
                updates[key] = cast(updates[key])
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid numeric rule field: {exc}") from exc
    if updates.get("cooldown_period", 0) < 0 or updates.get("max_executions_per_day", 0) < 0:
        raise ConfigurationError("cooldown_period and max_executions_per_day must be non-negative")
    if "enabled" in updates:
        updates["enabled"] = _bool(updates["enabled"], "enabled")
    return updates


def parse_position(payload: Mapping[str, Any]) -> PortfolioPosition:
    try:
        acquisition_date = payload.get("acquisition_date")
        if isinstance(acquisition_date, str):
            acquisition_date = datetime.fromisoformat(acquisition_date)
        if isinstance(acquisition_date, datetime) and acquisition_date.tzinfo is None:
            acquisition_date = acquisition_date.replace(tzinfo=timezone.utc)
        return PortfolioPosition(
            id=str(payload.get("id") or f"{payload['contract_address']}:{payload['token_id']}"),
            contract_address=str(payload["contract_address"]),
            token_id=str(payload["token_id"]),
            acquisition_price=float(payload["acquisition_price"]),
            holding_period_days=float(payload.get("holding_period_days", 0.0)),
            name=str(payload.get("name", "")),
            acquisition_date=acquisition_date,
            marketplace=str(payload.get("marketplace", "opensea")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid portfolio position: {exc}") from exc


def _as_list(value: Any) -> List[Mapping[str, Any]]:
    if value is None:
        return []
    if isinstance(value, Mapping) or not isinstance(value, Iterable):
        raise ConfigurationError("Expected a list of mappings")
    items = list(value)
    for item in items:
        if not isinstance(item, Mapping):
            raise ConfigurationError("Expected a list of mappings")
    return items


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{field_name}' must be true or false, got {value!r}")
    return value


def _optional_str(value: Any) -> Any:
    return None if value is None else str(value)


__all__ = [
    "parse_action",
    "parse_condition",
    "parse_position",
    "parse_rule_draft",
    "parse_rule_updates",
]
