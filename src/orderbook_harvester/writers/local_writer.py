"""Local JSON-lines sink, one file per symbol."""

import asyncio
import json
import logging
import os
from datetime import datetime
from typing import List, Optional

from ..config.settings import StorageConfig
from ..exceptions import PersistenceError
from ..models import OrderBookSnapshot
from ..utils.time_utils import parse_timestamp
from .base import OrderBookSink


logger = logging.getLogger(__name__)


class LocalJsonlSink(OrderBookSink):
    """Appends snapshots to ``<local_directory>/<symbol>.jsonl``."""

    def __init__(self, config: StorageConfig):
        self.directory = config.local_directory
        logger.info(f"LocalJsonlSink initialized in {self.directory}")

    async def initialize(self):
        try:
            os.makedirs(self.directory, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create {self.directory}: {e}") from e

    def path_for(self, symbol: str) -> str:
        safe_name = symbol.replace(os.sep, "_")
        return os.path.join(self.directory, f"{safe_name}.jsonl")

    async def append_many(self, symbol: str, records: List[OrderBookSnapshot]) -> int:
        if not records:
            return 0

        lines = "".join(json.dumps(record.to_document()) + "\n" for record in records)
        path = self.path_for(symbol)

        try:
            await asyncio.get_running_loop().run_in_executor(None, self._append, path, lines)
        except OSError as e:
            raise PersistenceError(f"Failed to append {len(records)} records to {path}: {e}") from e

        logger.debug(f"Appended {len(records)} records to {path}")
        return len(records)

    async def latest_timestamp(self, symbol: str) -> Optional[datetime]:
        path = self.path_for(symbol)

        try:
            return await asyncio.get_running_loop().run_in_executor(None, self._scan_latest, path)
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError(f"Failed to read latest timestamp from {path}: {e}") from e

    @classmethod
    def _append(cls, path: str, lines: str) -> None:
        cls._repair_tail(path)
        with open(path, 'a', encoding='utf-8') as f:
            f.write(lines)
            f.flush()
            os.fsync(f.fileno())

    @staticmethod
    def _repair_tail(path: str) -> None:
        """Make sure the file ends on a line boundary before appending."""
        if not os.path.exists(path):
            return

        with open(path, 'rb+') as f:
            f.seek(0, os.SEEK_END)
            if f.tell() == 0:
                return
            f.seek(-1, os.SEEK_END)
            if f.read(1) == b'\n':
                return

            f.seek(0)
            data = f.read()
            keep = data.rfind(b'\n') + 1
            tail = data[keep:]

            try:
                json.loads(tail)
            except ValueError:
                # Interrupted write, drop the partial line
                f.truncate(keep)
                logger.warning(f"Dropped {len(tail)} bytes of partial record at end of {path}")
            else:
                f.seek(0, os.SEEK_END)
                f.write(b'\n')

    @staticmethod
    def _scan_latest(path: str) -> Optional[datetime]:
        if not os.path.exists(path):
            return None

        latest = None
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    document = json.loads(line)
                except ValueError:
                    # Only an unterminated last line counts as a torn write
                    if line.endswith('\n'):
                        raise
                    logger.warning(f"Ignoring partial record at end of {path}")
                    break
                timestamp = parse_timestamp(document['time_exchange'])
                if latest is None or timestamp > latest:
                    latest = timestamp
        return latest
