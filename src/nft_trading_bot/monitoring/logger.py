"""JSON logging for the bot, tagged with the current automation tick and owner."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from ..config.settings import MonitoringConfig, get_app_config

_CORRELATION_ID: ContextVar[str] = ContextVar("correlation_id", default="-")
_OWNER: ContextVar[Optional[str]] = ContextVar("owner", default=None)
_HANDLER_NAME = "nft_trading_bot.structured"

_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "correlation_id",
    "owner",
    "message",
    "asctime",
}


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - simple accessor
        record.correlation_id = _CORRELATION_ID.get()
        if getattr(record, "owner", None) is None:
            record.owner = _OWNER.get()
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; unknown record attributes land under ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        owner = getattr(record, "owner", None)
        if owner:
            payload["owner"] = owner
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED and not key.startswith("_") and value is not None
        }
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(config: Optional[MonitoringConfig] = None, *, force: bool = False) -> None:
    """Install the JSON handler on the root logger once per process."""

    root = logging.getLogger()
    installed = any(handler.get_name() == _HANDLER_NAME for handler in root.handlers)
    if installed and not force:
        return
    cfg = config or get_app_config().monitoring
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(_ContextFilter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.log_level.upper(), logging.INFO))
    # urllib3 logs every retry at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.captureWarnings(True)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def current_correlation_id() -> str:
    return _CORRELATION_ID.get()


def current_owner() -> Optional[str]:
    return _OWNER.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str], *, owner: Optional[str] = None) -> Iterator[None]:
    """Tag every record logged inside the block with ``correlation_id`` and ``owner``."""

    token = _CORRELATION_ID.set(correlation_id or "-")
    owner_token = _OWNER.set(owner) if owner is not None else None
    try:
        yield
    finally:
        if owner_token is not None:
            _OWNER.reset(owner_token)
        _CORRELATION_ID.reset(token)


__all__ = [
    "StructuredFormatter",
    "configure_logging",
    "correlation_scope",
    "current_correlation_id",
    "current_owner",
    "get_logger",
]
