"""
Stream Aggregation - candle thinning and order book history.

DataThinner merges bursts of candle updates into one candle per throttle
interval. OrderBookHistory keeps a bounded, capture-throttled window of
snapshots for the heatmap and OFI consumers.

Throttling is checked against the clock when data arrives; neither class
runs a background timer.
"""

import logging
import time
from typing import Callable, Iterable, List, Mapping, Optional, Tuple, Union

from ..engines.indicator_config import DEFAULT_CONFIG
from .data_types import Candle, OrderBookSnapshot
from .ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

_DEFAULTS = DEFAULT_CONFIG.aggregation


def _wall_clock_ms() -> float:
    return time.time() * 1000


def merge_candles(candles: List[Candle]) -> Candle:
    """
    Collapse consecutive candles into one.

    open from the first, close and time from the last, extreme high/low,
    summed volume.
    """
    if not candles:
        raise ValueError("Cannot merge an empty candle list")
    first = candles[0]
    last = candles[-1]
    return Candle(
        time=last.time,
        open=first.open,
        high=max(c.high for c in candles),
        low=min(c.low for c in candles),
        close=last.close,
        volume=sum(c.volume for c in candles),
    )


class DataThinner:
    """
    Throttled candle aggregator.

    Example:
        thinner = DataThinner(throttle_ms=100)
        merged = thinner.process(candle)  # Candle or None
        tail = thinner.flush()            # force out whatever is buffered
    """

    def __init__(self, throttle_ms: float = _DEFAULTS.throttle_ms, clock: Optional[Clock] = None):
        self.throttle_ms = throttle_ms
        self._clock = clock or _wall_clock_ms
        self._buffer: List[Candle] = []
        self._last_emit = 0.0

    def process(self, candle: Candle) -> Optional[Candle]:
        """Buffer `candle`; emit the merged buffer once the interval has elapsed."""
        self._buffer.append(candle)
        if self._clock() - self._last_emit >= self.throttle_ms:
            return self.flush()
        return None

    def flush(self) -> Optional[Candle]:
        """Emit and clear the buffer; None when nothing is buffered."""
        if not self._buffer:
            return None
        merged = merge_candles(self._buffer)
        self._buffer = []
        self._last_emit = self._clock()
        return merged

    @property
    def pending(self) -> int:
        return len(self._buffer)


# =============================================================================
# ORDER BOOK HISTORY
# =============================================================================

LevelsLike = Union[Mapping[float, float], Iterable[Tuple[float, float]]]


def snapshot_from_levels(
    symbol: str,
    bids: LevelsLike,
    asks: LevelsLike,
    timestamp: Optional[int] = None,
) -> OrderBookSnapshot:
    """
    Build a snapshot from price->size mappings or (price, size) pairs.

    A missing timestamp is filled from the wall clock.
    """
    bid_map = dict(bids.items()) if isinstance(bids, Mapping) else dict(bids)
    ask_map = dict(asks.items()) if isinstance(asks, Mapping) else dict(asks)
    if not timestamp:
        timestamp = int(_wall_clock_ms())
    return OrderBookSnapshot(timestamp=timestamp, bids=bid_map, asks=ask_map, symbol=symbol)


class OrderBookHistory:
    """
    Bounded FIFO of order book snapshots with capture throttling.

    A snapshot offered less than `capture_interval_ms` after the previous
    capture is dropped.
    """

    def __init__(
        self,
        max_snapshots: int = _DEFAULTS.max_snapshots,
        capture_interval_ms: float = _DEFAULTS.capture_interval_ms,
        clock: Optional[Clock] = None,
    ):
        self._snapshots: RingBuffer[OrderBookSnapshot] = RingBuffer(max_snapshots)
        self.capture_interval_ms = capture_interval_ms
        self._clock = clock or _wall_clock_ms
        self._last_capture = 0.0

    def add_snapshot(self, snapshot: OrderBookSnapshot) -> bool:
        """Store the snapshot unless throttled. Returns True when stored."""
        now = self._clock()
        if now - self._last_capture < self.capture_interval_ms:
            return False
        self._snapshots.append(snapshot)
        self._last_capture = now
        return True

    def snapshots(self) -> List[OrderBookSnapshot]:
        return self._snapshots.to_list()

    def snapshots_in_range(self, start_time: float, end_time: float) -> List[OrderBookSnapshot]:
        """Snapshots with start_time <= timestamp <= end_time."""
        return [s for s in self._snapshots if start_time <= s.timestamp <= end_time]

    def latest(self) -> Optional[OrderBookSnapshot]:
        return self._snapshots.newest()

    def clear(self) -> None:
        self._snapshots.clear()
        self._last_capture = 0.0

    @property
    def max_snapshots(self) -> int:
        return self._snapshots.maxlen

    def set_max_snapshots(self, max_snapshots: int) -> None:
        """Resize, dropping the oldest snapshots that no longer fit."""
        self._snapshots.resize(max_snapshots)
        logger.debug(f"Order book history capacity set to {max_snapshots}")

    def set_capture_interval(self, interval_ms: float) -> None:
        self.capture_interval_ms = interval_ms

    def __len__(self) -> int:
        return len(self._snapshots)
