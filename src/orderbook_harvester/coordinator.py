"""Coordinator running one symbol worker per configured symbol."""

import asyncio
import logging
from typing import Any, Dict, List

from .clients.coinapi_rest import PageFetcher
from .config.settings import HarvestConfig
from .credential_pool import CredentialPool
from .cursor import CursorResolver
from .failure_log import FailureLog
from .worker import SymbolWorker
from .writers.base import OrderBookSink


logger = logging.getLogger(__name__)


class HarvestCoordinator:
    """Runs all symbol workers concurrently and waits for every one of them."""

    def __init__(
        self,
        config: HarvestConfig,
        pool: CredentialPool,
        fetcher: PageFetcher,
        sink: OrderBookSink,
        failure_log: FailureLog
    ):
        self.config = config
        self.pool = pool
        self.fetcher = fetcher
        self.sink = sink
        self.failure_log = failure_log
        self.resolver = CursorResolver(sink, config.start_time)

        self._shutdown_event = asyncio.Event()
        self._workers: List[SymbolWorker] = []
        self._tasks: List[asyncio.Task] = []

        logger.info(f"Coordinator initialized for {len(config.symbols)} symbols")

    async def run(self) -> Dict[str, Dict[str, Any]]:
        """
        Harvest every symbol and wait until all workers are done.

        Returns:
            Final statistics per symbol.
        """
        logger.info(
            f"Starting harvest of {', '.join(self.config.symbols)} "
            f"until {self.config.end_time.isoformat()}"
        )

        self._workers = [
            SymbolWorker(
                symbol=symbol,
                pool=self.pool,
                resolver=self.resolver,
                fetcher=self.fetcher,
                sink=self.sink,
                failure_log=self.failure_log,
                config=self.config,
                shutdown_event=self._shutdown_event
            )
            for symbol in self.config.symbols
        ]
        self._tasks = [
            asyncio.create_task(worker.run(), name=f"worker-{worker.symbol}")
            for worker in self._workers
        ]

        # A crash in one worker must not cancel the others
        results = await asyncio.gather(*self._tasks, return_exceptions=True)

        summary = {}
        for worker, result in zip(self._workers, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Worker for {worker.symbol} crashed: {result!r}",
                    exc_info=(type(result), result, result.__traceback__)
                )
                summary[worker.symbol] = {**worker.stats, "error": repr(result)}
            else:
                summary[worker.symbol] = result

        await self.pool.close()

        logger.info("All workers finished")
        return summary

    async def stop(self):
        """
        Request a cooperative shutdown.

        Workers finish their in-flight fetch or persist step, release their
        credential and stop. Workers waiting for a credential are woken by
        closing the pool.
        """
        logger.info("Stopping harvest")
        self._shutdown_event.set()
        await self.pool.close()

    @property
    def stopping(self) -> bool:
        return self._shutdown_event.is_set()
