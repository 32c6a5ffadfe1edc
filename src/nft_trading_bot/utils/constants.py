"""Shared constants and small helpers."""

import uuid
from datetime import datetime, timezone


# Utility function to get timezone-aware UTC datetime
def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Return a unique identifier such as ``rule-3f9c...``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


SECONDS_PER_DAY = 86_400

# Marketplace hints accepted on trading actions.
MARKETPLACES = ("opensea", "zora", "auto")
DEFAULT_MARKETPLACE = "auto"

__all__ = ["utc_now", "new_id", "SECONDS_PER_DAY", "MARKETPLACES", "DEFAULT_MARKETPLACE"]
