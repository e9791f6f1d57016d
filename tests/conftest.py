"""Pytest configuration and shared fixtures."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pytest

from orderbook_harvester.clients.coinapi_rest import PageFetcher
from orderbook_harvester.config.settings import HarvestConfig
from orderbook_harvester.credential_pool import CredentialPool
from orderbook_harvester.exceptions import PersistenceError
from orderbook_harvester.failure_log import FailureLog
from orderbook_harvester.models import OrderBookSnapshot, PriceLevel
from orderbook_harvester.writers.base import OrderBookSink


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_page(
    symbol: str,
    since: datetime,
    count: int = 50,
    span: timedelta = timedelta(seconds=40)
) -> List[OrderBookSnapshot]:
    """Build ``count`` snapshots evenly spread over ``[since, since + span]``."""
    page = []
    for i in range(count):
        offset = span * i / (count - 1) if count > 1 else span
        time_exchange = since + offset
        page.append(OrderBookSnapshot(
            symbol_id=symbol,
            time_exchange=time_exchange,
            time_coinapi=time_exchange + timedelta(milliseconds=5),
            asks=[PriceLevel(price="42000.10", size="0.015")],
            bids=[PriceLevel(price="41999.90", size="1.20000000")],
        ))
    return page


@dataclass
class FetchCall:
    symbol: str
    since: datetime
    credential: str
    limit: int


class ScriptedFetcher(PageFetcher):
    """
    Page fetcher driven by a responder callable.

    The responder receives ``(symbol, since, credential, attempt)`` where
    ``attempt`` counts calls for that symbol from 1, and returns a page or
    an exception instance to raise.
    """

    def __init__(self, responder: Callable, latency: float = 0.0):
        self.responder = responder
        self.latency = latency
        self.calls: List[FetchCall] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._attempts: Dict[str, int] = {}

    async def fetch(self, symbol, since, credential, limit):
        self.calls.append(FetchCall(symbol, since, credential, limit))
        self._attempts[symbol] = self._attempts.get(symbol, 0) + 1

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.latency)
            result = self.responder(symbol, since, credential, self._attempts[symbol])
        finally:
            self.in_flight -= 1

        if isinstance(result, BaseException):
            raise result
        return result

    def calls_for(self, symbol: str) -> List[FetchCall]:
        return [call for call in self.calls if call.symbol == symbol]


class MemorySink(OrderBookSink):
    """In-memory sink that can be told to fail specific appends."""

    def __init__(
        self,
        existing: Optional[Dict[str, datetime]] = None,
        fail_appends: Optional[Dict[str, set]] = None,
        fail_latest: Optional[set] = None
    ):
        self.records: Dict[str, List[OrderBookSnapshot]] = {}
        self.append_calls: Dict[str, int] = {}
        self.existing = existing or {}
        self.fail_appends = fail_appends or {}
        self.fail_latest = fail_latest or set()

    async def append_many(self, symbol, records):
        self.append_calls[symbol] = self.append_calls.get(symbol, 0) + 1
        if self.append_calls[symbol] in self.fail_appends.get(symbol, set()):
            raise PersistenceError(f"simulated write failure for {symbol}")
        self.records.setdefault(symbol, []).extend(records)
        return len(records)

    async def latest_timestamp(self, symbol):
        if symbol in self.fail_latest:
            raise PersistenceError(f"simulated query failure for {symbol}")
        stored = self.records.get(symbol)
        if stored:
            return max(record.time_exchange for record in stored)
        return self.existing.get(symbol)


class CountingPool(CredentialPool):
    """Credential pool recording every release call."""

    def __init__(self, credentials):
        super().__init__(credentials)
        self.releases = []

    async def release(self, credential, delay=0.0):
        self.releases.append((credential, delay))
        await super().release(credential, delay)


@pytest.fixture
def harvest_config():
    """Factory for fast harvest configurations."""
    def _create(**overrides) -> HarvestConfig:
        values = dict(
            symbols=["X_USD"],
            start_time=T0,
            end_time=T0 + timedelta(seconds=200),
            page_limit=50,
            request_delay_seconds=0.0,
            cooldown_seconds=0.01,
            step_seconds=1.0,
            validate_credentials=False,
            credentials_file="apiKeys.json",
            failure_log_path="api_errors.log",
            acquire_timeout_seconds=None,
        )
        values.update(overrides)
        return HarvestConfig(**values)
    return _create


@pytest.fixture
def failure_log(tmp_path) -> FailureLog:
    return FailureLog(str(tmp_path / "api_errors.log"))


@pytest.fixture
def forty_second_pages():
    """Responder returning 50-record pages ending 40s after the requested start."""
    def _respond(symbol, since, credential, attempt):
        return make_page(symbol, since)
    return _respond
