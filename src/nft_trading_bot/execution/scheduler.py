"""Per-owner periodic automation loop."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config.settings import AutomationConfig, get_app_config
from ..datalake.schemas import AutomatedTrade, TradingOpportunity
from ..monitoring.event_bus import EventBus, EventType
from ..monitoring.logger import correlation_scope, get_logger
from ..monitoring.metrics import METRICS, MetricsRegistry
from ..strategy.rules import RuleEngine
from ..strategy.scanner import OpportunityScanner
from ..utils.constants import new_id


@dataclass(slots=True)
class TickReport:
    """Outcome of one automation cycle for an owner."""

    owner: str
    cycle: int
    opportunities: List[TradingOpportunity] = field(default_factory=list)
    trades: List[AutomatedTrade] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class AutomationScheduler:
    """Keeps at most one cancellable asyncio task per owner.

    Each tick scans for opportunities, then attempts every enabled rule. The
    first tick fires one interval after start unless ``run_on_start`` is set.
    """

    def __init__(
        self,
        scanner: OpportunityScanner,
        rules: RuleEngine,
        *,
        event_bus: EventBus,
        config: Optional[AutomationConfig] = None,
        metrics: MetricsRegistry = METRICS,
    ) -> None:
        self._scanner = scanner
        self._rules = rules
        self._bus = event_bus
        self._config = config or get_app_config().automation
        self._metrics = metrics
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._cycles: Dict[str, int] = {}
        self._logger = get_logger(__name__)

    def start(self, owner: str, interval_minutes: Optional[float] = None) -> None:
        """Start, or restart, the loop for ``owner``. Must run inside an event loop."""

        interval = self._config.default_interval_minutes if interval_minutes is None else interval_minutes
        if interval <= 0:
            raise ValueError("interval_minutes must be positive")
        loop = asyncio.get_running_loop()
        previous = self._tasks.pop(owner, None)
        if previous is not None and not previous.done():
            previous.cancel()
        task = loop.create_task(self._run_loop(owner, interval * 60.0), name=f"automation-{owner}")
        self._tasks[owner] = task
        task.add_done_callback(lambda finished, owner=owner: self._on_done(owner, finished))
        self._metrics.gauge("automation.running_owners", float(len(self.running_owners())))
        self._bus.publish(
            EventType.AUTOMATION_STARTED,
            {"owner": owner, "interval_minutes": interval, "restarted": previous is not None},
        )
        self._logger.info("Automation started for %s every %.2f minutes", owner, interval)

    def stop(self, owner: str) -> bool:
        task = self._tasks.pop(owner, None)
        if task is None:
            return False
        task.cancel()
        self._metrics.gauge("automation.running_owners", float(len(self.running_owners())))
        self._bus.publish(EventType.AUTOMATION_STOPPED, {"owner": owner})
        self._logger.info("Automation stopped for %s", owner)
        return True

    def stop_all(self) -> List[str]:
        owners = list(self._tasks)
        for owner in owners:
            self.stop(owner)
        return owners

    async def aclose(self) -> None:
        """Cancel every loop and wait for the tasks to unwind."""

        tasks = list(self._tasks.values())
        self.stop_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def is_running(self, owner: str) -> bool:
        task = self._tasks.get(owner)
        return task is not None and not task.done()

    def running_owners(self) -> List[str]:
        return [owner for owner, task in self._tasks.items() if not task.done()]

    async def tick(self, owner: str) -> TickReport:
        cycle = self._cycles.get(owner, 0) + 1
        self._cycles[owner] = cycle
        report = TickReport(owner=owner, cycle=cycle)
        started = time.perf_counter()
        with correlation_scope(new_id("tick"), owner=owner):
            try:
                report.opportunities = await self._scanner.scan(owner)
            except Exception as exc:  # noqa: BLE001 - a failed scan never stops rule evaluation
                self._logger.exception("Opportunity scan failed for %s", owner)
                report.errors.append(f"scan: {exc}")
            try:
                report.trades = await self._rules.run_rules(owner)
            except Exception as exc:  # noqa: BLE001
                self._logger.exception("Rule evaluation failed for %s", owner)
                report.errors.append(f"rules: {exc}")
            report.duration_seconds = time.perf_counter() - started
            self._bus.publish(
                EventType.AUTOMATION_CYCLE,
                {
                    "owner": owner,
                    "cycle": cycle,
                    "opportunities": len(report.opportunities),
                    "trades": len(report.trades),
                    "errors": list(report.errors),
                    "duration_seconds": report.duration_seconds,
                },
            )
        return report

    async def _run_loop(self, owner: str, interval_seconds: float) -> None:
        if self._config.run_on_start:
            await self._safe_tick(owner)
        while True:
            await asyncio.sleep(interval_seconds)
            await self._safe_tick(owner)

    async def _safe_tick(self, owner: str) -> None:
        try:
            await self.tick(owner)
        except Exception:  # noqa: BLE001 - the loop survives any tick failure
            self._logger.exception("Automation tick failed for %s", owner)

    def _on_done(self, owner: str, task: "asyncio.Task[None]") -> None:
        if self._tasks.get(owner) is task:
            self._tasks.pop(owner, None)


__all__ = ["AutomationScheduler", "TickReport"]
