"""Entrypoint for the NFT trading automation bot."""

from __future__ import annotations

import argparse
import asyncio
import json
import tomllib
from pathlib import Path
from typing import Any, List, Mapping, Optional

from .config.settings import AppMode, get_app_config
from .datalake.parsing import parse_position, parse_rule_draft
from .datalake.schemas import PortfolioPosition, RuleDraft
from .ingestion.portfolio import InMemoryPortfolio
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .service import TradingAutomationService
from .utils.errors import ConfigurationError

logger = get_logger(__name__)


def load_document(path: Path, key: str) -> List[Mapping[str, Any]]:
    """Read ``key`` from a TOML or JSON file; a bare JSON list is accepted too."""

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".toml":
        data: Any = tomllib.loads(text)
    else:
        data = json.loads(text)
    if isinstance(data, Mapping):
        data = data.get(key, [])
    if not isinstance(data, list):
        raise ConfigurationError(f"{path}: expected a list of {key}")
    return data


def load_rules(path: Path) -> List[RuleDraft]:
    return [parse_rule_draft(item) for item in load_document(path, "rules")]


def load_positions(path: Path) -> List[PortfolioPosition]:
    return [parse_position(item) for item in load_document(path, "positions")]


def build_service(
    owner: str,
    rules_path: Optional[Path] = None,
    positions_path: Optional[Path] = None,
    dry_run: bool = True,
) -> TradingAutomationService:
    config = get_app_config()
    if dry_run and config.mode.active is not AppMode.DRY_RUN:
        config = config.model_copy(update={"mode": config.mode.model_copy(update={"active": AppMode.DRY_RUN})})
    service = TradingAutomationService.from_config(config)
    bootstrap_observability(service.event_bus, config=config, metrics=service.metrics)
    if positions_path is not None and isinstance(service.portfolio, InMemoryPortfolio):
        positions = load_positions(positions_path)
        service.portfolio.set_positions(owner, positions)
        logger.info("Loaded %d positions for %s", len(positions), owner)
    if rules_path is not None:
        drafts = load_rules(rules_path)
        for draft in drafts:
            service.create_rule(owner, draft)
        logger.info("Loaded %d rules for %s", len(drafts), owner)
    return service


async def run_cycle(service: TradingAutomationService, owner: str) -> None:
    with service.metrics.timer("bot.automation_cycle"):
        report = await service.run_cycle(owner)
    performance = service.get_trading_performance(owner)
    logger.info(
        "Cycle %d: %d opportunities, %d trades, %d errors",
        report.cycle,
        len(report.opportunities),
        len(report.trades),
        len(report.errors),
    )
    logger.info(
        "Performance: trades=%d profit=%.4f win_rate=%.1f%%",
        performance.total_trades,
        performance.total_profit,
        performance.win_rate,
    )


async def run_loop(
    service: TradingAutomationService,
    owner: str,
    interval_seconds: float,
    max_cycles: Optional[int] = None,
) -> None:
    cycle = 0
    while True:
        cycle += 1
        try:
            await run_cycle(service, owner)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Loop iteration %d failed: %s", cycle, exc, extra={"cycle": cycle})
        if max_cycles is not None and cycle >= max_cycles:
            break
        await asyncio.sleep(max(interval_seconds, 0.0))


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the NFT trading automation bot")
    parser.add_argument("--owner", required=True, help="Wallet address the rules belong to")
    parser.add_argument("--rules", type=Path, help="TOML or JSON file with trading rules")
    parser.add_argument("--positions", type=Path, help="TOML or JSON file with portfolio positions")
    parser.add_argument("--live", action="store_true", default=False, help="Do not force dry-run mode")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Run automation cycles continuously with the supplied interval.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds to wait between iterations when --loop is enabled (default: automation interval)",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Optional limit to the number of loop iterations to execute.",
    )
    args = parser.parse_args()
    service = build_service(args.owner, args.rules, args.positions, dry_run=not args.live)
    try:
        if args.loop:
            interval = args.interval
            if interval is None:
                interval = service.config.automation.default_interval_minutes * 60.0
            asyncio.run(run_loop(service, args.owner, interval, args.max_cycles))
        else:
            asyncio.run(run_cycle(service, args.owner))
    finally:
        service.event_bus.flush_alerts(timeout=5.0)


if __name__ == "__main__":
    main()
