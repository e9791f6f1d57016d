"""Order book records and audit entries handled by the harvester."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

from .utils.time_utils import format_timestamp, parse_timestamp


def _decimal_string(value: Any) -> str:
    """Render a price or size without going through float."""
    if isinstance(value, float):
        raise TypeError(f"Refusing float value {value!r}, decode payloads with Decimal")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    # Fixed-point notation, "0.00000001" rather than "1E-8"
    return format(value, 'f')


@dataclass(frozen=True)
class PriceLevel:
    """One order book level. Price and size are exact decimal strings."""
    price: str
    size: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceLevel":
        return cls(price=_decimal_string(data['price']), size=_decimal_string(data['size']))

    def to_dict(self) -> Dict[str, str]:
        return {'price': self.price, 'size': self.size}


@dataclass
class OrderBookSnapshot:
    """A historical order book snapshot for one symbol."""
    symbol_id: str
    time_exchange: datetime
    time_coinapi: datetime
    asks: List[PriceLevel] = field(default_factory=list)
    bids: List[PriceLevel] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderBookSnapshot":
        """Build a snapshot from a CoinAPI payload or a stored document."""
        return cls(
            symbol_id=data['symbol_id'],
            time_exchange=parse_timestamp(data['time_exchange']),
            time_coinapi=parse_timestamp(data['time_coinapi']),
            asks=[PriceLevel.from_dict(level) for level in data.get('asks') or []],
            bids=[PriceLevel.from_dict(level) for level in data.get('bids') or []],
        )

    def to_document(self) -> Dict[str, Any]:
        """Serializable representation used by every sink."""
        return {
            'symbol_id': self.symbol_id,
            'time_exchange': format_timestamp(self.time_exchange),
            'time_coinapi': format_timestamp(self.time_coinapi),
            'asks': [level.to_dict() for level in self.asks],
            'bids': [level.to_dict() for level in self.bids],
        }


@dataclass(frozen=True)
class FailureRecord:
    """Audit entry for a failed fetch attempt."""
    credential: str
    error: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_line(self) -> str:
        return f"{self.timestamp.isoformat()} API_KEY: {self.credential}, Error: {self.error}\n"
