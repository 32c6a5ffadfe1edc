"""Owner-scoped trading rules: CRUD, eligibility and execution bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from ..config.settings import AutomationConfig, get_app_config
from ..datalake.schemas import (
    EDITABLE_RULE_FIELDS,
    AutomatedTrade,
    RuleDraft,
    TradeStatus,
    TradingRule,
)
from ..datalake.storage import TradingState
from ..execution.executor import ActionExecutor
from ..monitoring.event_bus import EventBus, EventType
from ..monitoring.logger import get_logger
from ..utils.constants import new_id, utc_now
from .conditions import ConditionEvaluation, ConditionEvaluator


class RuleState(str, Enum):
    IDLE = "idle"
    ELIGIBLE = "eligible"
    EXECUTING = "executing"


@dataclass(slots=True, frozen=True)
class Eligibility:
    eligible: bool
    reason: str = ""
    evaluation: Optional[ConditionEvaluation] = None


class RuleEngine:
    """Owns per-owner rules and turns eligible rules into executed actions.

    Each rule moves Idle -> Eligible -> Executing -> Idle. A rule is Eligible
    once cooldown and quota allow it and while its conditions are checked.
    ``execution_count`` counts executions inside the current quota window;
    ``total_executions`` is the lifetime count.
    """

    def __init__(
        self,
        evaluator: ConditionEvaluator,
        executor: ActionExecutor,
        *,
        state: TradingState,
        event_bus: EventBus,
        config: Optional[AutomationConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._evaluator = evaluator
        self._executor = executor
        self._state = state
        self._bus = event_bus
        self._config = config or get_app_config().automation
        self._clock = clock
        self._rule_states: Dict[Tuple[str, str], RuleState] = {}
        self._executing: Set[Tuple[str, str]] = set()
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_rule(self, owner: str, draft: RuleDraft) -> TradingRule:
        rule = TradingRule(
            id=new_id("rule"),
            name=draft.name,
            type=draft.type,
            conditions=list(draft.conditions),
            actions=list(draft.actions),
            description=draft.description,
            enabled=draft.enabled,
            priority=draft.priority,
            cooldown_period=draft.cooldown_period,
            max_executions_per_day=draft.max_executions_per_day,
            created_at=self._clock(),
        )
        self._state.rules.update(owner, lambda current: [*(current or []), rule])
        self._bus.publish(
            EventType.RULE_CREATED,
            {"owner": owner, "rule_id": rule.id, "name": rule.name, "type": rule.type.value},
        )
        self._logger.info("Created rule %s (%s) for %s", rule.id, rule.name, owner)
        return rule

    def update_rule(self, owner: str, rule_id: str, updates: Mapping[str, Any]) -> bool:
        """Shallow-merge editable fields into a rule; returns False when it does not exist."""

        unknown = sorted(set(updates) - EDITABLE_RULE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(unknown)}")
        if updates.get("cooldown_period", 0) < 0 or updates.get("max_executions_per_day", 0) < 0:
            raise ValueError("cooldown_period and max_executions_per_day must be non-negative")
        rule = self.get_rule(owner, rule_id)
        if rule is None:
            return False
        for key, value in updates.items():
            if key in ("conditions", "actions"):
                value = list(value)
            setattr(rule, key, value)
        self._bus.publish(
            EventType.RULE_UPDATED,
            {"owner": owner, "rule_id": rule_id, "fields": sorted(updates)},
        )
        return True

    def delete_rule(self, owner: str, rule_id: str) -> bool:
        removed: List[TradingRule] = []

        def _remove(current: Optional[List[TradingRule]]) -> List[TradingRule]:
            remaining = []
            for rule in current or []:
                (removed if rule.id == rule_id else remaining).append(rule)
            return remaining

        self._state.rules.update(owner, _remove)
        if not removed:
            return False
        self._rule_states.pop((owner, rule_id), None)
        self._bus.publish(EventType.RULE_DELETED, {"owner": owner, "rule_id": rule_id})
        return True

    def get_rules(self, owner: str) -> List[TradingRule]:
        return self._state.rules_for(owner)

    def get_rule(self, owner: str, rule_id: str) -> Optional[TradingRule]:
        return next((rule for rule in self._state.rules_for(owner) if rule.id == rule_id), None)

    def ordered_rules(self, owner: str) -> List[TradingRule]:
        """Enabled rules in the order a tick visits them."""

        rules = [rule for rule in self._state.rules_for(owner) if rule.enabled]
        if self._config.order_rules_by_priority:
            rules.sort(key=lambda rule: -rule.priority)
        return rules

    def rule_state(self, owner: str, rule_id: str) -> RuleState:
        return self._rule_states.get((owner, rule_id), RuleState.IDLE)

    def forget_owner(self, owner: str) -> None:
        for key in [key for key in self._rule_states if key[0] == owner]:
            self._rule_states.pop(key, None)

    # ------------------------------------------------------------------
    # Eligibility and execution
    # ------------------------------------------------------------------

    def _refresh_quota_window(self, rule: TradingRule, now: datetime) -> None:
        window = timedelta(hours=self._config.quota_window_hours)
        if rule.quota_window_started_at is None:
            if rule.execution_count > 0:
                rule.quota_window_started_at = rule.last_executed or now
            return
        if now - rule.quota_window_started_at >= window:
            rule.execution_count = 0
            rule.quota_window_started_at = None

    def _gate(self, rule: TradingRule, now: datetime) -> Optional[str]:
        """Synchronous checks; returns the reason the rule cannot run, if any."""

        if not rule.enabled:
            return "disabled"
        if rule.last_executed is not None:
            elapsed = now - rule.last_executed
            if elapsed < timedelta(minutes=rule.cooldown_period):
                return "cooldown"
        self._refresh_quota_window(rule, now)
        if rule.execution_count >= rule.max_executions_per_day:
            return "daily quota reached"
        return None

    async def _check_conditions(self, owner: str, rule: TradingRule) -> Eligibility:
        failure = await self._evaluator.first_failure(owner, rule.conditions)
        if failure is not None:
            return Eligibility(False, f"condition {failure.outcome.value}", failure)
        return Eligibility(True)

    async def check_eligibility(self, owner: str, rule: TradingRule) -> Eligibility:
        if (owner, rule.id) in self._executing:
            return Eligibility(False, "executing")
        reason = self._gate(rule, self._clock())
        if reason is not None:
            return Eligibility(False, reason)
        return await self._check_conditions(owner, rule)

    async def execute_rule(self, owner: str, rule_id: str) -> Optional[AutomatedTrade]:
        """Run every action of an eligible rule; returns the first trade, if any.

        The rule is claimed before its conditions are awaited, so overlapping
        calls for the same rule cannot both pass cooldown and quota.
        """

        rule = self.get_rule(owner, rule_id)
        if rule is None:
            self._logger.debug("Rule %s not found for %s", rule_id, owner)
            return None
        key = (owner, rule_id)
        reason = "executing" if key in self._executing else self._gate(rule, self._clock())
        if reason is not None:
            self._logger.debug("Rule %s skipped: %s", rule_id, reason)
            return None
        self._executing.add(key)
        self._rule_states[key] = RuleState.ELIGIBLE
        trades: List[AutomatedTrade] = []
        try:
            eligibility = await self._check_conditions(owner, rule)
            if not eligibility.eligible:
                self._logger.debug("Rule %s skipped: %s", rule_id, eligibility.reason)
                return None
            self._rule_states[key] = RuleState.EXECUTING
            try:
                for action in rule.actions:
                    try:
                        trades.append(await self._executor.execute(owner, rule_id, action))
                    except Exception as exc:  # noqa: BLE001 - one action never aborts the rest
                        self._logger.error("Action %s of rule %s failed: %s", action.type.value, rule_id, exc)
            finally:
                self._record_execution(rule, trades)
        finally:
            self._executing.discard(key)
            self._rule_states[key] = RuleState.IDLE
        self._bus.publish(
            EventType.RULE_EXECUTED,
            {
                "owner": owner,
                "rule_id": rule_id,
                "trade_ids": [trade.id for trade in trades],
                "statuses": [trade.status.value for trade in trades],
                "execution_count": rule.execution_count,
            },
        )
        return trades[0] if trades else None

    async def run_rules(self, owner: str) -> List[AutomatedTrade]:
        """Attempt every enabled rule once, in tick order."""

        executed: List[AutomatedTrade] = []
        for rule in self.ordered_rules(owner):
            trade = await self.execute_rule(owner, rule.id)
            if trade is not None:
                executed.append(trade)
        return executed

    def _record_execution(self, rule: TradingRule, trades: List[AutomatedTrade]) -> None:
        now = self._clock()
        if rule.quota_window_started_at is None:
            rule.quota_window_started_at = now
        rule.last_executed = now
        rule.execution_count += 1
        rule.total_executions += 1
        completed = [trade for trade in trades if trade.status is TradeStatus.COMPLETED]
        rule.trades_attempted += len(trades)
        rule.trades_succeeded += len(completed)
        if rule.trades_attempted:
            rule.success_rate = rule.trades_succeeded / rule.trades_attempted * 100
        rule.total_profit += sum(trade.profit or 0.0 for trade in completed)


def draft_from_rule(rule: TradingRule) -> RuleDraft:
    """User supplied fields of a stored rule."""

    return RuleDraft(
        name=rule.name,
        type=rule.type,
        conditions=list(rule.conditions),
        actions=list(rule.actions),
        description=rule.description,
        enabled=rule.enabled,
        priority=rule.priority,
        cooldown_period=rule.cooldown_period,
        max_executions_per_day=rule.max_executions_per_day,
    )


__all__ = ["Eligibility", "RuleEngine", "RuleState", "draft_from_rule"]
