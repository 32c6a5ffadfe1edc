"""Configuration management for the NFT trading automation bot."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
MODE_ENV_VAR = "BOT_MODE"


class AppMode(str, Enum):
    """Supported runtime modes."""

    DRY_RUN = "dry_run"
    LIVE = "live"


class DashboardAuthMode(str, Enum):
    """Authentication styles supported by the dashboard."""

    READ_ONLY = "read_only"
    AUTHENTICATED = "authenticated"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested_mode = os.getenv(MODE_ENV_VAR)
    if not requested_mode:
        mode_section = base_section.get("mode")
        if isinstance(mode_section, dict):
            requested_mode = cast(str, mode_section.get("active", AppMode.DRY_RUN.value))
        elif isinstance(mode_section, str):
            requested_mode = mode_section
    requested_mode = (requested_mode or AppMode.DRY_RUN.value).lower()

    if requested_mode in data and requested_mode != "default":
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested_mode]))
    if base_section:
        return base_section
    return data


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    merged = dict(_select_profile(payload))
    mode_section = merged.get("mode")
    if isinstance(mode_section, dict):
        mode_section = dict(mode_section)
        mode_section.setdefault("config_file", str(path))
        merged["mode"] = mode_section
    else:
        merged["mode"] = {"config_file": str(path)}
    return merged, path


class TomlProfileSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading the active profile of the TOML config file."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        payload, _ = _load_toml_config()
        return payload


class ModeConfig(BaseModel):
    """Runtime mode and operational toggles."""

    active: AppMode = Field(default=AppMode.DRY_RUN)
    config_file: Optional[Path] = None


class DataSourceConfig(BaseModel):
    """Marketplace data sources."""

    opensea_base_url: AnyHttpUrl = Field(default="https://api.opensea.io")
    opensea_testnet_base_url: AnyHttpUrl = Field(default="https://testnets-api.opensea.io")
    opensea_api_key: Optional[str] = None
    zora_api_url: AnyHttpUrl = Field(default="https://api.zora.co/graphql")
    zora_api_key: Optional[str] = None
    enable_zora: bool = True
    use_testnet: bool = False
    chain: str = Field(default="base")
    http_timeout: float = Field(default=10.0, ge=1.0, le=45.0)
    cache_ttl_seconds: int = Field(default=120, ge=0)
    sale_history_limit: int = Field(default=20, ge=1, le=200)

    @field_validator("http_timeout", mode="before")
    @classmethod
    def _parse_http_timeout(cls, value: Any) -> Any:
        if isinstance(value, str):
            return float(value)
        return value


class ValuationConfig(BaseModel):
    """Heuristic weights used by the valuation engine."""

    recent_sale_days: int = Field(default=30, ge=1)
    rarity_premium_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    rarity_premium_slope: float = Field(default=0.5, ge=0.0)
    base_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence_step: float = Field(default=0.1, ge=0.0, le=1.0)
    established_supply: int = Field(default=100, ge=0)
    sentiment_window: int = Field(default=7, ge=1)
    sentiment_threshold: float = Field(default=0.1, ge=0.0)
    default_rarity_score: float = Field(default=50.0, ge=0.0, le=100.0)
    wash_trading_placeholder_score: float = Field(default=10.0, ge=0.0, le=100.0)


class ScannerConfig(BaseModel):
    """Thresholds for the opportunity scanner strategies."""

    max_arbitrage_collections: int = Field(default=10, ge=0)
    arbitrage_min_spread: float = Field(default=0.05, ge=0.0)
    arbitrage_fee_factor: float = Field(default=0.9, ge=0.0, le=1.0)
    arbitrage_medium_spread: float = Field(default=0.1, ge=0.0)
    arbitrage_high_spread: float = Field(default=0.2, ge=0.0)
    arbitrage_max_confidence: float = Field(default=95.0, ge=0.0, le=100.0)
    flip_min_margin: float = Field(default=0.5, ge=0.0)
    flip_max_holding_days: float = Field(default=30.0, ge=0.0)
    flip_high_risk_holding_days: float = Field(default=7.0, ge=0.0)
    flip_max_confidence: float = Field(default=90.0, ge=0.0, le=100.0)
    flip_sell_discount: float = Field(default=0.95, ge=0.0, le=1.0)
    momentum_top_n: int = Field(default=3, ge=0)
    momentum_expected_return_pct: float = Field(default=0.1, ge=0.0)
    momentum_high_risk_change_pct: float = Field(default=50.0, ge=0.0)
    momentum_max_confidence: float = Field(default=85.0, ge=0.0, le=100.0)
    momentum_max_price_multiplier: float = Field(default=1.05, ge=0.0)
    mean_reversion_top_n: int = Field(default=3, ge=0)
    mean_reversion_min_decline_pct: float = Field(default=20.0, ge=0.0)
    mean_reversion_expected_return_pct: float = Field(default=0.15, ge=0.0)
    mean_reversion_max_confidence: float = Field(default=80.0, ge=0.0, le=100.0)
    mean_reversion_discount: float = Field(default=0.9, ge=0.0, le=1.0)
    watchlist: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_spread_bands(self) -> "ScannerConfig":
        if self.arbitrage_high_spread < self.arbitrage_medium_spread:
            raise ValueError("arbitrage_high_spread must be >= arbitrage_medium_spread")
        return self


class AutomationConfig(BaseModel):
    """Scheduler and rule engine behaviour."""

    default_interval_minutes: float = Field(default=15.0, gt=0.0)
    run_on_start: bool = False
    order_rules_by_priority: bool = True
    quota_window_hours: float = Field(default=24.0, gt=0.0)


class MonitoringConfig(BaseModel):
    """Logging and alerting configuration."""

    log_level: str = Field(default="INFO")
    slack_webhook_url: Optional[AnyHttpUrl] = None
    webhook_urls: List[AnyHttpUrl] = Field(default_factory=list)
    alert_throttle_seconds: int = Field(default=60, ge=0)
    event_history_size: int = Field(default=500, ge=10)
    risk_disclaimer: str = Field(
        default=(
            "Trading digital collectibles involves significant risk. Valuations are "
            "heuristic and no profits are guaranteed."
        )
    )


class DashboardConfig(BaseModel):
    """Dashboard runtime configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    auth_mode: DashboardAuthMode = Field(default=DashboardAuthMode.READ_ONLY)
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    read_only_token: Optional[str] = None
    # required for rule, scan and automation changes; only honoured in authenticated mode
    control_token: Optional[str] = None


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    mode: ModeConfig = Field(default_factory=ModeConfig)
    data_sources: DataSourceConfig = Field(default_factory=DataSourceConfig)
    valuation: ValuationConfig = Field(default_factory=ValuationConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables win over the static config file.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlProfileSettingsSource(settings_cls),
            file_secret_settings,
        )


def env_path() -> Path:
    """Return the default path for the `.env` file."""

    return Path.cwd() / ".env"


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "AppMode",
    "AutomationConfig",
    "DashboardAuthMode",
    "DashboardConfig",
    "DataSourceConfig",
    "ModeConfig",
    "MonitoringConfig",
    "ScannerConfig",
    "ValuationConfig",
    "env_path",
    "get_app_config",
]
