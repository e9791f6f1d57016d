"""Persistence sink interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..models import OrderBookSnapshot


class OrderBookSink(ABC):
    """Durable, symbol-partitioned store for order book snapshots."""

    async def initialize(self):
        """Open connections and create storage structures."""

    async def close(self):
        """Release connections."""

    @abstractmethod
    async def append_many(self, symbol: str, records: List[OrderBookSnapshot]) -> int:
        """
        Append a page of snapshots to the store of ``symbol``.

        Records are appended as-is, without deduplication.

        Returns:
            Number of records written.

        Raises:
            PersistenceError: If the page could not be stored.
        """

    @abstractmethod
    async def latest_timestamp(self, symbol: str) -> Optional[datetime]:
        """
        Latest stored ``time_exchange`` for ``symbol``, or None if empty.

        Raises:
            PersistenceError: If the store could not be queried.
        """
