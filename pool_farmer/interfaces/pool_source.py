"""Pool source protocol — yield-aggregator abstraction."""
from typing import Protocol

from ..models import PoolSnapshot


class PoolSource(Protocol):
    """Abstract interface for fetching the pool universe of the target chain."""

    async def fetch_pools(self) -> list[PoolSnapshot]: ...
