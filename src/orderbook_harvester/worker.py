"""Per-symbol fetch, persist and advance loop."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from .clients.coinapi_rest import PageFetcher
from .config.settings import HarvestConfig
from .credential_pool import CredentialPool, mask_credential
from .cursor import CursorResolver
from .exceptions import CursorResolutionError, FetchError, PersistenceError
from .failure_log import FailureLog
from .models import FailureRecord, OrderBookSnapshot
from .writers.base import OrderBookSink


logger = logging.getLogger(__name__)


class WorkerPhase(Enum):
    """Lifecycle phases of a symbol worker."""
    IDLE = "idle"
    FETCHING_CREDENTIAL = "fetching_credential"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    ADVANCING = "advancing"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class WorkerState:
    """Runtime state owned by a single worker."""
    symbol: str
    cursor: Optional[datetime] = None
    credential: Optional[str] = None
    phase: WorkerPhase = WorkerPhase.IDLE


class SymbolWorker:
    """
    Harvests one symbol until it is caught up with the end time.

    The worker borrows a credential from the shared pool and keeps it while
    pages keep coming. A failed fetch sends the credential into cooldown and
    the worker goes back to the pool for another one, retrying from the same
    cursor. The credential is handed back immediately once the symbol is done.
    """

    def __init__(
        self,
        symbol: str,
        pool: CredentialPool,
        resolver: CursorResolver,
        fetcher: PageFetcher,
        sink: OrderBookSink,
        failure_log: FailureLog,
        config: HarvestConfig,
        shutdown_event: Optional[asyncio.Event] = None
    ):
        self.pool = pool
        self.resolver = resolver
        self.fetcher = fetcher
        self.sink = sink
        self.failure_log = failure_log
        self.config = config
        self.shutdown_event = shutdown_event or asyncio.Event()

        self.state = WorkerState(symbol=symbol)
        self.step = timedelta(seconds=config.step_seconds)

        self.stats = {
            "symbol": symbol,
            "pages_fetched": 0,
            "records_fetched": 0,
            "records_persisted": 0,
            "fetch_failures": 0,
            "persist_failures": 0,
            "error": None,
        }

    @property
    def symbol(self) -> str:
        return self.state.symbol

    async def run(self) -> Dict[str, Any]:
        """Run the worker to completion and return its statistics."""
        logger.info(f"Worker started for {self.symbol}")

        try:
            try:
                self.state.cursor = await self.resolver.resolve(self.symbol)
            except CursorResolutionError as e:
                logger.error(f"Giving up on {self.symbol}: {e}")
                self.stats["error"] = str(e)
                return self.stats

            if self._caught_up():
                logger.info(f"{self.symbol} already harvested up to {self.config.end_time.isoformat()}")
                return self.stats

            while not self._shutdown_requested():
                credential = await self._acquire_credential()
                if credential is None:
                    logger.warning(f"No credentials available, giving up on symbol {self.symbol}")
                    break

                if await self._harvest_with(credential):
                    break

        finally:
            await self._release_credential()
            self._set_phase(WorkerPhase.DONE)
            self.stats["cursor"] = self.state.cursor.isoformat() if self.state.cursor else None
            self.stats["state"] = self.state.phase.value
            logger.info(f"Worker finished for {self.symbol}: {self.stats}")

        return self.stats

    async def _acquire_credential(self) -> Optional[str]:
        self._set_phase(WorkerPhase.FETCHING_CREDENTIAL)
        credential = await self.pool.acquire(timeout=self.config.acquire_timeout_seconds)
        if credential is not None:
            self.state.credential = credential
            logger.debug(f"{self.symbol} acquired credential {mask_credential(credential)}")
        return credential

    async def _harvest_with(self, credential: str) -> bool:
        """
        Fetch pages with one credential.

        Returns:
            True when the worker should stop (caught up or shutting down),
            False when the credential failed and another one is needed.
        """
        while True:
            self._set_phase(WorkerPhase.FETCHING)
            since = self.state.cursor

            try:
                page = await self.fetcher.fetch(
                    self.symbol, since, credential, self.config.page_limit
                )
            except FetchError as e:
                await self._handle_fetch_failure(credential, e)
                return False

            if not page:
                logger.info(f"Empty page for {self.symbol} at {since.isoformat()}, caught up")
                return True

            self.stats["pages_fetched"] += 1
            self.stats["records_fetched"] += len(page)
            logger.info(f"Received {len(page)} records for {self.symbol} since {since.isoformat()}")

            await self._persist(page)

            self._set_phase(WorkerPhase.ADVANCING)
            self.state.cursor = self._next_cursor(page)

            if self._caught_up():
                logger.info(f"{self.symbol} reached end time {self.config.end_time.isoformat()}")
                return True

            if self._shutdown_requested():
                logger.info(f"Shutdown requested, stopping {self.symbol} at {self.state.cursor.isoformat()}")
                return True

            if await self._pause(self.config.request_delay_seconds):
                logger.info(f"Shutdown requested, stopping {self.symbol} at {self.state.cursor.isoformat()}")
                return True

    async def _persist(self, page: List[OrderBookSnapshot]) -> None:
        self._set_phase(WorkerPhase.PERSISTING)
        try:
            written = await self.sink.append_many(self.symbol, page)
        except PersistenceError as e:
            # The page is dropped but the cursor still moves past it
            self.stats["persist_failures"] += 1
            logger.error(
                f"Dropped {len(page)} records for {self.symbol} "
                f"({page[0].time_exchange.isoformat()} - {page[-1].time_exchange.isoformat()}): {e}"
            )
            return

        self.stats["records_persisted"] += written
        logger.info(f"Saved {written} records for {self.symbol}")

    async def _handle_fetch_failure(self, credential: str, error: FetchError) -> None:
        self.stats["fetch_failures"] += 1
        logger.error(
            f"Fetch failed for {self.symbol} at {self.state.cursor.isoformat()} "
            f"with credential {mask_credential(credential)}: {error}"
        )
        await self.failure_log.record(FailureRecord(credential=credential, error=str(error)))

        self._set_phase(WorkerPhase.DRAINING)
        await self._release_credential(delay=self.config.cooldown_seconds)

    def _next_cursor(self, page: List[OrderBookSnapshot]) -> datetime:
        last_exchange_time = page[-1].time_exchange
        base = self.state.cursor

        if last_exchange_time < base:
            logger.warning(
                f"{self.symbol} page ended at {last_exchange_time.isoformat()}, "
                f"before requested start {base.isoformat()}"
            )
        else:
            base = last_exchange_time

        return base + self.step

    async def _release_credential(self, delay: float = 0.0) -> None:
        credential = self.state.credential
        if credential is None:
            return
        self.state.credential = None
        await self.pool.release(credential, delay)

    async def _pause(self, seconds: float) -> bool:
        """Sleep between requests. Returns True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def _caught_up(self) -> bool:
        return self.state.cursor >= self.config.end_time

    def _shutdown_requested(self) -> bool:
        return self.shutdown_event.is_set()

    def _set_phase(self, phase: WorkerPhase) -> None:
        if self.state.phase != phase:
            logger.debug(f"{self.symbol}: {self.state.phase.value} -> {phase.value}")
        self.state.phase = phase
