"""Exception taxonomy shared across the bot."""

from __future__ import annotations

from typing import Optional


class TradingBotError(Exception):
    """Base class for all bot specific errors."""


class NotFoundError(TradingBotError):
    """Raised when no market data resolves for an item or collection."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class TransientProviderError(TradingBotError):
    """A collaborator call failed; callers degrade to a documented default."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        message = f"{operation} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.cause = cause


class RuleExecutionError(TradingBotError):
    """An action could not be dispatched to the marketplace executor."""


class ConfigurationError(TradingBotError):
    """A rule, condition or action is malformed."""


__all__ = [
    "ConfigurationError",
    "NotFoundError",
    "RuleExecutionError",
    "TradingBotError",
    "TransientProviderError",
]
