"""
Core data types for streaming market data.

These are the atomic units flowing through the system. Everything that may
cross the compute worker boundary converts to and from plain dicts.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

# =============================================================================
# RAW DATA EVENTS
# =============================================================================


@dataclass(slots=True, frozen=True)
class Candle:
    """
    OHLCV candle.

    `time` is epoch seconds and strictly increasing within one series.
    """

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Candle":
        return cls(
            time=data["time"],
            open=data["open"],
            high=data["high"],
            low=data["low"],
            close=data["close"],
            volume=data.get("volume", 0.0),
        )


@dataclass(slots=True, frozen=True)
class TradeTick:
    """
    Single aggregated trade.

    - is_buyer_maker=True  -> Seller aggressed (hit bid) -> SELL
    - is_buyer_maker=False -> Buyer aggressed (lifted ask) -> BUY
    """

    timestamp_ms: int
    price: float
    quantity: float
    is_buyer_maker: bool

    @property
    def is_buy(self) -> bool:
        return not self.is_buyer_maker


@dataclass(frozen=True)
class OrderBookSnapshot:
    """
    Order book state at one instant.

    bids/asks map price -> size; an absent level means zero size. Mapping
    order is preserved and is the iteration order used by the heatmap's
    positional level truncation.
    """

    timestamp: int  # epoch milliseconds
    bids: Dict[float, float] = field(default_factory=dict)
    asks: Dict[float, float] = field(default_factory=dict)
    symbol: str = ""

    def __post_init__(self):
        # Private copies so callers mutating their dicts cannot alter history
        object.__setattr__(self, "bids", dict(self.bids))
        object.__setattr__(self, "asks", dict(self.asks))

    @property
    def best_bid(self) -> Optional[float]:
        live = [p for p, s in self.bids.items() if s > 0]
        return max(live) if live else None

    @property
    def best_ask(self) -> Optional[float]:
        live = [p for p, s in self.asks.items() if s > 0]
        return min(live) if live else None

    @property
    def mid_price(self) -> Optional[float]:
        bid, ask = self.best_bid, self.best_ask
        if bid is None or ask is None:
            return None
        return (bid + ask) / 2


# =============================================================================
# INDICATOR OUTPUT POINTS
# =============================================================================


@dataclass(slots=True, frozen=True)
class IndicatorPoint:
    """Single-valued indicator output aligned to a candle time."""

    time: int
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "value": self.value}


@dataclass(slots=True, frozen=True)
class MACDPoint:
    time: int
    macd: float
    signal: float
    histogram: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "macd": self.macd,
            "signal": self.signal,
            "histogram": self.histogram,
        }


@dataclass(slots=True, frozen=True)
class BollingerPoint:
    time: int
    upper: float
    middle: float
    lower: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "upper": self.upper,
            "middle": self.middle,
            "lower": self.lower,
        }
