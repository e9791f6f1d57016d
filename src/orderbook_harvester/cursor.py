"""Resume point lookup for symbol workers."""

import logging
from datetime import datetime

from .exceptions import CursorResolutionError, PersistenceError
from .utils.time_utils import ensure_utc
from .writers.base import OrderBookSink


logger = logging.getLogger(__name__)


class CursorResolver:
    """Derives where each symbol should resume from the stored data."""

    def __init__(self, sink: OrderBookSink, default_start: datetime):
        self.sink = sink
        self.default_start = ensure_utc(default_start)

    async def resolve(self, symbol: str) -> datetime:
        """
        Return the latest stored exchange timestamp for ``symbol``, or the
        configured default start when nothing has been stored yet.

        Raises:
            CursorResolutionError: If the sink could not be queried. Falling
                back to the default start here could skip or duplicate data.
        """
        try:
            latest = await self.sink.latest_timestamp(symbol)
        except PersistenceError as e:
            raise CursorResolutionError(f"Cannot resolve resume point for {symbol}: {e}") from e

        if latest is None:
            logger.info(f"No stored data for {symbol}, starting at {self.default_start.isoformat()}")
            return self.default_start

        latest = ensure_utc(latest)
        logger.info(f"Resuming {symbol} from {latest.isoformat()}")
        return latest
