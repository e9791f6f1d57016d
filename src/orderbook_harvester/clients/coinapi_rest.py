"""CoinAPI REST client for historical order book pages."""

import asyncio
import functools
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from ..config.settings import CoinAPIConfig, RetryConfig
from ..exceptions import (
    AuthenticationError,
    FetchError,
    NetworkError,
    RateLimitError,
    UpstreamError,
)
from ..models import OrderBookSnapshot
from ..utils.retry import retry_with_config
from ..utils.time_utils import format_timestamp

logger = logging.getLogger(__name__)

# Keep prices and sizes exact: JSON numbers become Decimal, never float.
_decode_json = functools.partial(json.loads, parse_float=Decimal)

_TRANSIENT_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)


class PageFetcher(ABC):
    """Source of time-windowed order book pages."""

    @abstractmethod
    async def fetch(
        self,
        symbol: str,
        since: datetime,
        credential: str,
        limit: int
    ) -> List[OrderBookSnapshot]:
        """
        Fetch at most ``limit`` snapshots for ``symbol`` starting at ``since``.

        Raises:
            FetchError: If the page could not be retrieved.
        """


def parse_orderbook_page(payload: Any) -> List[OrderBookSnapshot]:
    """Convert a decoded history response into snapshots, preserving order."""
    if isinstance(payload, dict) and 'error' in payload:
        raise UpstreamError(f"Upstream error: {payload['error']}")
    if not isinstance(payload, list):
        raise UpstreamError(f"Unexpected payload type {type(payload).__name__}")

    try:
        return [OrderBookSnapshot.from_dict(item) for item in payload]
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise UpstreamError(f"Malformed order book record: {e}") from e


class CoinAPIRestClient(PageFetcher):
    """CoinAPI REST client for historical order book data."""

    def __init__(self, config: CoinAPIConfig, retry_config: RetryConfig):
        self.config = config
        self.retry_config = retry_config
        self.session: Optional[aiohttp.ClientSession] = None

        self.endpoints = {
            'orderbook_history': '/v1/orderbooks/{symbol_id}/history',
        }

    async def __aenter__(self):
        """Async context manager entry."""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
            connector=aiohttp.TCPConnector(limit=100, limit_per_host=30)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session:
            await self.session.close()
            self.session = None

    async def _make_request(
        self,
        endpoint: str,
        params: Dict[str, Any],
        credential: str
    ) -> Any:
        """Make an authenticated request, retrying transient network errors."""
        if not self.session:
            raise RuntimeError("Client not initialized. Use async context manager.")

        url = f"{self.config.rest_base_url.rstrip('/')}{endpoint}"
        headers = {
            'X-CoinAPI-Key': credential,
            'Accept': 'application/json',
        }

        async def _request():
            async with self.session.get(url, params=params, headers=headers) as response:
                body = await response.text()
                _raise_for_status(response.status, body)
                try:
                    return _decode_json(body)
                except ValueError as e:
                    raise UpstreamError(f"Invalid JSON from upstream: {e}") from e

        try:
            return await retry_with_config(
                _request,
                self.retry_config,
                exceptions=_TRANSIENT_ERRORS
            )
        except _TRANSIENT_ERRORS as e:
            raise NetworkError(f"Request to {url} failed: {e!r}") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request to {url} failed: {e!r}") from e

    async def fetch(
        self,
        symbol: str,
        since: datetime,
        credential: str,
        limit: int
    ) -> List[OrderBookSnapshot]:
        """Get historical order book snapshots for a symbol."""
        params = {
            'time_start': format_timestamp(since),
            'limit': limit,
        }
        endpoint = self.endpoints['orderbook_history'].format(symbol_id=symbol)

        logger.debug(f"Fetching order books for {symbol}: {params}")

        payload = await self._make_request(endpoint, params, credential)
        page = parse_orderbook_page(payload)

        logger.info(f"Retrieved {len(page)} order books for {symbol}")
        return page

    async def probe(self, credential: str, end_time: datetime) -> bool:
        """
        Check a credential with a small fixed query.

        Returns:
            True if the query succeeded, False otherwise.
        """
        since = end_time - timedelta(hours=self.config.probe_lookback_hours)
        try:
            await self.fetch(
                self.config.probe_symbol,
                since,
                credential,
                self.config.probe_limit
            )
        except FetchError as e:
            logger.warning(f"Credential probe failed: {e}")
            return False
        return True


def _raise_for_status(status: int, body: str) -> None:
    if 200 <= status < 300:
        return

    message = _error_message(body) or f"HTTP {status}"
    if status == 429:
        raise RateLimitError(f"Rate limit exceeded: {message}", status=status)
    if status in (401, 403):
        raise AuthenticationError(f"Credential rejected: {message}", status=status)
    raise UpstreamError(f"Upstream returned {status}: {message}", status=status)


def _error_message(body: str) -> Optional[str]:
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:200] or None
    if isinstance(data, dict):
        return str(data.get('error') or data)
    return None
