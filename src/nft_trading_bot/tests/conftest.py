from __future__ import annotations

from pathlib import Path

import pytest

from nft_trading_bot.config import settings
from nft_trading_bot.monitoring.metrics import METRICS


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep every test away from a developer's app.toml, .env and BOT_MODE."""

    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APP_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.delenv("BOT_MODE", raising=False)
    settings.get_app_config.cache_clear()
    METRICS.reset()
    yield
    settings.get_app_config.cache_clear()
    METRICS.reset()
