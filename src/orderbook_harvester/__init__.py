"""
Order Book Harvester - resumable historical order book collection.

This package continuously harvests historical order book snapshots for a set
of trading symbols from the CoinAPI REST API, rotating a pool of API keys
across per-symbol workers and resuming from the last stored snapshot.
"""

__version__ = "1.0.0"
__author__ = "Order Book Harvester Team"
