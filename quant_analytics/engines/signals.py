"""Shared enums used across the analytics engines."""

from enum import Enum
from typing import Union


class MeanReversionSignal(Enum):
    """Trade bias derived from the z-score of the latest return."""
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    NEUTRAL = "NEUTRAL"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"

    def __str__(self) -> str:
        return self.value


class FeedStatus(Enum):
    """Liveness classification of a market data stream."""
    DISCONNECTED = "DISCONNECTED"
    LIVE = "LIVE"
    STALE = "STALE"
    REPLAY = "REPLAY"

    def __str__(self) -> str:
        return self.value


class OFIEventType(Enum):
    """Direction of a statistically significant order-flow event."""
    BUY = "buy"
    SELL = "sell"

    def __str__(self) -> str:
        return self.value


class TradeSide(Enum):
    """Inferred aggressor side of a trade."""
    BUY = "buy"
    SELL = "sell"

    def __str__(self) -> str:
        return self.value


class ClassificationMethod(Enum):
    TICK = "tick"
    QUOTE = "quote"
    EXCHANGE = "exchange"

    def __str__(self) -> str:
        return self.value


class DivergenceType(Enum):
    """Price and cumulative volume delta moving in opposite directions."""
    BULLISH = "bullish"  # price down, CVD up
    BEARISH = "bearish"  # price up, CVD down

    def __str__(self) -> str:
        return self.value


class Toxicity(Enum):
    """Order flow toxicity band derived from VPIN."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"

    def __str__(self) -> str:
        return self.value


class Trend(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"

    def __str__(self) -> str:
        return self.value


SignalLike = Union[MeanReversionSignal, str]


def signal_value(signal: SignalLike) -> str:
    """Normalize signal-like values to their string representation."""
    return signal.value if isinstance(signal, MeanReversionSignal) else str(signal)
