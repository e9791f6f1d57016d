"""Append-only log of failed fetch attempts."""

import asyncio
import logging
import os

from .models import FailureRecord


logger = logging.getLogger(__name__)


class FailureLog:
    """Writes one line per FailureRecord for operator review."""

    def __init__(self, path: str):
        self.path = path

    async def record(self, failure: FailureRecord) -> bool:
        """
        Append a failure line.

        Write errors are reported through the logger and never raised.

        Returns:
            True if the line was written.
        """
        try:
            await asyncio.get_running_loop().run_in_executor(None, self._append, failure.to_line())
        except OSError as e:
            logger.error(f"Failed to write to failure log {self.path}: {e}")
            return False
        return True

    def _append(self, line: str) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(line)
