"""Order Book Harvester Service - resumable historical order book collection."""

import asyncio
import logging
import os
import signal
import sys
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .clients.coinapi_rest import CoinAPIRestClient
from .config.settings import load_config
from .coordinator import HarvestCoordinator
from .credential_pool import CredentialPool
from .credentials import load_credentials, probe_credentials, require_credentials
from .exceptions import HarvesterError
from .failure_log import FailureLog
from .utils.logging import setup_logging
from .writers import create_sink


logger = logging.getLogger(__name__)


class HarvesterService:
    """Main service wiring configuration, credentials, storage and workers."""

    def __init__(self, config_file: str = "config/local.yaml"):
        self.config = load_config(config_file)
        self.coordinator: Optional[HarvestCoordinator] = None
        self._stop_task: Optional[asyncio.Future] = None

        setup_logging(self.config.logging)
        logger.info("Order Book Harvester Service initialized")

    async def start(self) -> Dict[str, Dict[str, Any]]:
        """
        Run the harvest until every symbol is done.

        Raises:
            HarvesterError: If the harvest cannot start.
        """
        harvest = self.config.harvest
        credentials = load_credentials(harvest.credentials_file)

        async with CoinAPIRestClient(self.config.coinapi, self.config.retry) as client:
            if harvest.validate_credentials:
                credentials = await probe_credentials(client, credentials, harvest.end_time)
            require_credentials(credentials)

            sink = create_sink(self.config.storage)
            await sink.initialize()

            try:
                self.coordinator = HarvestCoordinator(
                    config=harvest,
                    pool=CredentialPool(credentials),
                    fetcher=client,
                    sink=sink,
                    failure_log=FailureLog(harvest.failure_log_path)
                )
                self._setup_signal_handlers()

                summary = await self.coordinator.run()
                if self._stop_task:
                    await self._stop_task
            finally:
                self._remove_signal_handlers()
                await sink.close()

        logger.info(f"Harvest complete: {summary}")
        return summary

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, initiating shutdown")
            if self.coordinator and not self.coordinator.stopping:
                self._stop_task = asyncio.ensure_future(self.coordinator.stop())

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Not available on Windows event loops
                logger.debug(f"Signal handler for {signum} not supported")

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except NotImplementedError:
                pass


async def main() -> int:
    """Main entry point. Returns the process exit code."""
    logging.basicConfig(level=logging.INFO)
    load_dotenv()

    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")

    try:
        service = HarvesterService(config_file)
        await service.start()
    except HarvesterError as e:
        logger.error(f"Harvester failed to start: {e}")
        return 1

    return 0


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
