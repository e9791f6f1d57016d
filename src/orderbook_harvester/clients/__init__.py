"""Market data API clients."""
