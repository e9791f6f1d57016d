"""Persistence sinks for harvested order books."""

from ..config.settings import StorageConfig
from .base import OrderBookSink
from .local_writer import LocalJsonlSink
from .postgres_writer import PostgresOrderBookSink


def create_sink(config: StorageConfig) -> OrderBookSink:
    """Build the sink selected by ``storage.type``."""
    if config.type == "local":
        return LocalJsonlSink(config)
    return PostgresOrderBookSink(config)


__all__ = ["OrderBookSink", "LocalJsonlSink", "PostgresOrderBookSink", "create_sink"]
