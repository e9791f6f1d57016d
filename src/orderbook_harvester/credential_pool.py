"""Shared pool of API credentials handed out to symbol workers."""

import asyncio
import logging
from collections import deque
from typing import Dict, Iterable, Optional

from .exceptions import CredentialPoolError


logger = logging.getLogger(__name__)


def mask_credential(credential: str) -> str:
    """Shorten a credential for diagnostic logs."""
    if len(credential) <= 8:
        return "****"
    return f"{credential[:4]}...{credential[-4:]}"


class CredentialPool:
    """
    Bounded set of credentials with an acquire/release protocol.

    A credential is in exactly one of three places: available, checked out
    by a worker, or cooling down after a failure. Every state change happens
    while holding the pool's condition lock. Cooling credentials are returned
    by pool-owned timer tasks, so a worker never waits on its own release.
    """

    def __init__(self, credentials: Iterable[str]):
        credentials = list(credentials)
        unique = list(dict.fromkeys(credentials))
        if len(unique) != len(credentials):
            logger.warning(f"Dropped {len(credentials) - len(unique)} duplicate credentials")

        self._available = deque(unique)
        self._in_use = set()
        self._cooling: Dict[str, asyncio.Task] = {}
        self._condition = asyncio.Condition()
        self._closed = False

        logger.info(f"CredentialPool initialized with {len(unique)} credentials")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def size(self) -> int:
        return len(self._available) + len(self._in_use) + len(self._cooling)

    async def acquire(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Wait for a credential.

        Args:
            timeout: Maximum seconds to wait, ``None`` waits until a
                credential is released or the pool is closed.

        Returns:
            A credential, or ``None`` if the pool is closed or the wait
            timed out.
        """
        async with self._condition:
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(self._can_hand_out),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                # A notify aimed at this waiter may have landed as it timed out
                if self._available:
                    self._condition.notify()
                logger.warning(f"No credential became available within {timeout}s")
                return None

            if self._closed:
                return None

            credential = self._available.popleft()
            self._in_use.add(credential)
            return credential

    async def release(self, credential: str, delay: float = 0.0) -> None:
        """
        Return a checked-out credential.

        With ``delay == 0`` the credential is available again immediately.
        Otherwise a return is scheduled after ``delay`` seconds and this call
        returns without waiting for it.

        Raises:
            CredentialPoolError: If the credential is not checked out.
        """
        async with self._condition:
            if credential not in self._in_use:
                raise CredentialPoolError(
                    f"Credential {mask_credential(credential)} is not checked out"
                )
            self._in_use.discard(credential)

            if self._closed:
                return

            if delay > 0:
                self._cooling[credential] = asyncio.create_task(
                    self._return_after(credential, delay)
                )
                logger.info(
                    f"Credential {mask_credential(credential)} cooling down for {delay:.0f}s"
                )
            else:
                self._available.append(credential)
                self._condition.notify()

    async def close(self) -> None:
        """Close the pool, waking every waiter and dropping scheduled returns."""
        async with self._condition:
            if self._closed:
                return
            self._closed = True

            for task in self._cooling.values():
                task.cancel()
            pending = list(self._cooling.values())
            self._cooling.clear()
            self._available.clear()

            self._condition.notify_all()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("CredentialPool closed")

    def stats(self) -> Dict[str, int]:
        return {
            "available": len(self._available),
            "in_use": len(self._in_use),
            "cooling": len(self._cooling),
        }

    def _can_hand_out(self) -> bool:
        return self._closed or bool(self._available)

    async def _return_after(self, credential: str, delay: float) -> None:
        await asyncio.sleep(delay)

        async with self._condition:
            if self._cooling.pop(credential, None) is None or self._closed:
                return
            self._available.append(credential)
            self._condition.notify()

        logger.info(f"Credential {mask_credential(credential)} back in pool after cooldown")
