"""Serve the control API and dashboard: ``python -m nft_trading_bot.dashboard``."""

from __future__ import annotations

import argparse
from typing import Optional

import uvicorn
from fastapi import FastAPI

from ..config.settings import AppConfig, get_app_config
from ..monitoring import bootstrap_observability
from ..service import TradingAutomationService
from .app import create_dashboard_app
from .state import DashboardState


def build_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Wire a dry-run service, its observability and the API around it."""

    config = config or get_app_config()
    service = TradingAutomationService.from_config(config)
    bootstrap_observability(service.event_bus, config=config, metrics=service.metrics)
    return create_dashboard_app(DashboardState(service=service, config=config))


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the NFT trading bot control API")
    parser.add_argument("--host", help="Bind address (default: dashboard.host)")
    parser.add_argument("--port", type=int, help="Port (default: dashboard.port)")
    args = parser.parse_args()

    config = get_app_config()
    uvicorn.run(
        build_app(config),
        host=args.host or config.dashboard.host,
        port=args.port or config.dashboard.port,
        log_level=config.monitoring.log_level.lower(),
    )


if __name__ == "__main__":
    main()
