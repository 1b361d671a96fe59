"""
Data models for storage layer.

Defines the usage ledger entities and their persisted shape.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Provider(Enum):
    """External price data sources tracked by the ledger."""
    ALPHAVANTAGE = "alphavantage"
    COINGECKO = "coingecko"


@dataclass(frozen=True)
class ApiCallRecord:
    """Immutable record of one price lookup, served live or from cache.

    Append-only entries that form the usage ledger. Once written,
    these records must never be modified.
    """
    timestamp: datetime
    provider: Provider
    endpoint: str
    success: bool
    from_cache: bool
    cost: int
    key: Optional[str] = None

    def __post_init__(self):
        """Validate cost is a non-negative quota unit count."""
        if self.cost < 0:
            raise ValueError("cost cannot be negative")
        if self.from_cache and self.cost != 0:
            raise ValueError("cache hits must have zero cost")
