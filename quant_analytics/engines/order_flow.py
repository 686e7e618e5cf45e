"""
Order Flow Engine
Directional pressure from order book snapshots and from the trade tape.

- OFICalculator: bid pressure counts only liquidity added on the bid; ask
  pressure counts only liquidity pulled from the ask. The normalised OFI
  lives in [-1, 1].
- TradeClassifier: tick rule / Lee-Ready aggressor inference, windowed
  volume delta, cumulative volume delta and price divergence.
- VPINCalculator: flow toxicity over fixed-volume buckets.

One instance of each per symbol, driven by a single update pipeline.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from ..continuous.data_types import OrderBookSnapshot, TradeTick
from ..continuous.ring_buffer import RingBuffer
from .calculations import is_finite, population_std, simple_average
from .errors import InvalidConfig, InvalidInput
from .indicator_config import DEFAULT_CONFIG, OFIThresholds, TradeFlowThresholds, VPINThresholds
from .signals import ClassificationMethod, DivergenceType, OFIEventType, Toxicity, TradeSide, Trend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OFIResult:
    """Imbalance between two consecutive snapshots."""

    timestamp: int
    ofi: float  # -1 (sell pressure) .. +1 (buy pressure)
    bid_pressure: float
    ask_pressure: float

    @property
    def imbalance_ratio(self) -> float:
        return self.ofi

    def to_dict(self) -> Dict[str, float]:
        return {
            "timestamp": self.timestamp,
            "ofi": self.ofi,
            "bidPressure": self.bid_pressure,
            "askPressure": self.ask_pressure,
        }


@dataclass(frozen=True)
class OFIEvent:
    """OFI reading more than the threshold number of deviations from its mean."""

    type: OFIEventType
    magnitude: float  # |z|
    z_score: float
    timestamp: int


@dataclass(frozen=True)
class TradeFlowResult:
    """Aggressor-side volume split for a batch of trades."""

    buy_volume: float
    sell_volume: float
    net_volume: float
    imbalance_ratio: float


def _level_size(levels: Mapping[float, float], price: float) -> Optional[float]:
    """Size at a price, 0 if absent, None if the entry is unusable."""
    size = levels.get(price, 0.0)
    if not is_finite(size) or size < 0:
        return None
    return size


def _side_pressure(
    previous: Mapping[float, float],
    current: Mapping[float, float],
    increases: bool,
) -> float:
    pressure = 0.0
    # dict.fromkeys keeps a stable order over the union of levels
    for price in dict.fromkeys([*previous.keys(), *current.keys()]):
        if not is_finite(price):
            continue
        prev_size = _level_size(previous, price)
        curr_size = _level_size(current, price)
        if prev_size is None or curr_size is None:
            continue
        delta = curr_size - prev_size if increases else prev_size - curr_size
        if delta > 0:
            pressure += delta
    return pressure


class OFICalculator:
    """
    Stateful OFI calculator for one symbol.

    Example:
        calc = OFICalculator()
        calc.calculate(snapshot_1)  # None, baseline stored
        result = calc.calculate(snapshot_2)
        result.ofi
    """

    def __init__(self, config: Optional[OFIThresholds] = None):
        self.config = config or DEFAULT_CONFIG.ofi
        self._previous: Optional[OrderBookSnapshot] = None
        self._history: RingBuffer[OFIResult] = RingBuffer(self.config.history_size)

    def calculate(self, snapshot: OrderBookSnapshot) -> Optional[OFIResult]:
        """Compare against the previous snapshot; None on the first call."""
        previous = self._previous
        self._previous = snapshot
        if previous is None:
            logger.debug(f"OFI baseline stored for {snapshot.symbol or 'unknown'}")
            return None

        bid_pressure = _side_pressure(previous.bids, snapshot.bids, increases=True)
        ask_pressure = _side_pressure(previous.asks, snapshot.asks, increases=False)

        total = abs(bid_pressure) + abs(ask_pressure)
        ofi = (bid_pressure - ask_pressure) / total if total > 0 else 0.0

        result = OFIResult(
            timestamp=snapshot.timestamp,
            ofi=ofi,
            bid_pressure=bid_pressure,
            ask_pressure=ask_pressure,
        )
        self._history.append(result)
        return result

    def moving_average(self, window: Optional[int] = None) -> float:
        """Mean OFI over the last `window` results (0 if none)."""
        window = window or self.config.average_window
        return simple_average(r.ofi for r in self._history.last(window))

    def std_dev(self, window: Optional[int] = None) -> float:
        """Population deviation of OFI over the last `window` results."""
        window = window or self.config.average_window
        recent = [r.ofi for r in self._history.last(window)]
        if len(recent) < 2:
            return 0.0
        return population_std(recent)

    def detect_significant_event(self) -> Optional[OFIEvent]:
        """
        Flag the latest OFI when its z-score against the recent window
        exceeds the configured threshold.
        """
        if len(self._history) < self.config.min_history_for_events:
            return None

        mean = self.moving_average()
        std = self.std_dev()
        if std == 0:
            return None

        latest = self._history.newest()
        z_score = (latest.ofi - mean) / std
        threshold = self.config.event_z_score
        if z_score > threshold:
            event_type = OFIEventType.BUY
        elif z_score < -threshold:
            event_type = OFIEventType.SELL
        else:
            return None

        logger.info(f"Significant OFI {event_type} event: z={z_score:.2f}")
        return OFIEvent(
            type=event_type,
            magnitude=abs(z_score),
            z_score=z_score,
            timestamp=latest.timestamp,
        )

    def history(self, count: int = 100) -> List[OFIResult]:
        """Most recent results, oldest first."""
        return self._history.last(count)

    @property
    def latest(self) -> Optional[OFIResult]:
        return self._history.newest()

    def reset(self) -> None:
        self._previous = None
        self._history.clear()


def calculate_trade_flow(trades: Iterable[TradeTick]) -> TradeFlowResult:
    """
    Aggressor-side imbalance over a batch of trades.

    Trades with non-finite or negative quantity are skipped with a warning.
    """
    buy_volume = 0.0
    sell_volume = 0.0
    for trade in trades:
        quantity = trade.quantity
        if not is_finite(quantity) or quantity < 0:
            logger.warning(f"Skipping trade with invalid quantity: {quantity!r}")
            continue
        if trade.is_buy:
            buy_volume += quantity
        else:
            sell_volume += quantity

    total = buy_volume + sell_volume
    net = buy_volume - sell_volume
    return TradeFlowResult(
        buy_volume=buy_volume,
        sell_volume=sell_volume,
        net_volume=net,
        imbalance_ratio=net / total if total > 0 else 0.0,
    )


# =============================================================================
# TRADE CLASSIFICATION
# =============================================================================

Clock = Callable[[], float]


@dataclass(frozen=True)
class ClassifiedTrade:
    """Trade with its inferred aggressor side."""

    trade: TradeTick
    side: TradeSide
    method: ClassificationMethod

    @property
    def timestamp_ms(self) -> int:
        return self.trade.timestamp_ms

    @property
    def price(self) -> float:
        return self.trade.price

    @property
    def quantity(self) -> float:
        return self.trade.quantity

    @property
    def signed_quantity(self) -> float:
        return self.quantity if self.side is TradeSide.BUY else -self.quantity


@dataclass(frozen=True)
class VolumeDelta:
    """Buy minus sell volume over a trailing window."""

    buy_volume: float
    sell_volume: float
    delta: float
    delta_percent: float  # -100 .. +100
    timestamp: float


@dataclass(frozen=True)
class CVDPoint:
    timestamp: int  # interval start, epoch ms
    cvd: float


@dataclass(frozen=True)
class Divergence:
    type: Optional[DivergenceType]
    strength: float

    @property
    def detected(self) -> bool:
        return self.type is not None


NO_DIVERGENCE = Divergence(type=None, strength=0.0)


def _exchange_side(trade: TradeTick) -> TradeSide:
    return TradeSide.BUY if trade.is_buy else TradeSide.SELL


def _validate_trade(trade: TradeTick) -> None:
    if not is_finite(trade.price) or trade.price <= 0:
        raise InvalidInput(f"Trade price must be positive and finite, got {trade.price!r}", field_name="price")
    if not is_finite(trade.quantity) or trade.quantity < 0:
        raise InvalidInput(
            f"Trade quantity must be non-negative and finite, got {trade.quantity!r}", field_name="quantity"
        )


class TradeClassifier:
    """
    Infers the aggressor side of trades and tracks volume delta.

    Tick rule: an uptick is a buy, a downtick a sell, and a zero tick repeats
    the previous side. Lee-Ready: a print above the book mid is a buy, below
    it a sell; a print exactly at mid is compared with the previous mid.
    Whenever neither rule can decide, the exchange's is_buyer_maker flag is
    used. All methods share one price memory and one bounded history.

    Example:
        classifier = TradeClassifier()
        for trade in trades:
            classifier.classify_by_tick_rule(trade)
        classifier.volume_delta().delta
    """

    def __init__(self, config: Optional[TradeFlowThresholds] = None, clock: Optional[Clock] = None):
        self.config = config or DEFAULT_CONFIG.trade_flow
        self._clock = clock or (lambda: time.time() * 1000)
        self._previous_price: Optional[float] = None
        self._previous_mid: Optional[float] = None
        self._history: RingBuffer[ClassifiedTrade] = RingBuffer(self.config.history_size)

    # ---- classification ----

    def classify_by_tick_rule(self, trade: TradeTick) -> ClassifiedTrade:
        _validate_trade(trade)
        previous = self._previous_price
        if previous is None:
            side = _exchange_side(trade)
        elif trade.price > previous:
            side = TradeSide.BUY
        elif trade.price < previous:
            side = TradeSide.SELL
        else:
            last = self._history.newest()
            side = last.side if last is not None else _exchange_side(trade)

        self._previous_price = trade.price
        return self._record(trade, side, ClassificationMethod.TICK)

    def classify_by_lee_ready(self, trade: TradeTick, mid_price: float) -> ClassifiedTrade:
        _validate_trade(trade)
        if not is_finite(mid_price) or mid_price <= 0:
            raise InvalidInput(f"Mid price must be positive and finite, got {mid_price!r}", field_name="mid_price")

        previous_mid = self._previous_mid
        if trade.price > mid_price:
            side = TradeSide.BUY
        elif trade.price < mid_price:
            side = TradeSide.SELL
        elif previous_mid is not None and trade.price != previous_mid:
            side = TradeSide.BUY if trade.price > previous_mid else TradeSide.SELL
        else:
            side = _exchange_side(trade)

        self._previous_mid = mid_price
        self._previous_price = trade.price
        return self._record(trade, side, ClassificationMethod.QUOTE)

    def classify_by_exchange(self, trade: TradeTick) -> ClassifiedTrade:
        """Take the side straight from is_buyer_maker."""
        _validate_trade(trade)
        self._previous_price = trade.price
        return self._record(trade, _exchange_side(trade), ClassificationMethod.EXCHANGE)

    def _record(self, trade: TradeTick, side: TradeSide, method: ClassificationMethod) -> ClassifiedTrade:
        classified = ClassifiedTrade(trade=trade, side=side, method=method)
        self._history.append(classified)
        return classified

    # ---- volume delta ----

    def volume_delta(self, window_ms: Optional[float] = None) -> VolumeDelta:
        """Buy / sell split of classified trades no older than `window_ms`."""
        window_ms = self.config.volume_delta_window_ms if window_ms is None else window_ms
        now = self._clock()
        cutoff = now - window_ms

        buy_volume = 0.0
        sell_volume = 0.0
        for classified in self._history:
            if classified.timestamp_ms < cutoff:
                continue
            if classified.side is TradeSide.BUY:
                buy_volume += classified.quantity
            else:
                sell_volume += classified.quantity

        total = buy_volume + sell_volume
        delta = buy_volume - sell_volume
        return VolumeDelta(
            buy_volume=buy_volume,
            sell_volume=sell_volume,
            delta=delta,
            delta_percent=delta / total * 100 if total > 0 else 0.0,
            timestamp=now,
        )

    def buy_sell_ratio(self, window_ms: Optional[float] = None) -> float:
        """Buy volume over sell volume; 0 when there is no sell volume."""
        delta = self.volume_delta(window_ms)
        return delta.buy_volume / delta.sell_volume if delta.sell_volume > 0 else 0.0

    def cumulative_volume_delta(self, interval_ms: Optional[float] = None) -> List[CVDPoint]:
        """
        Running signed volume sampled at the end of each interval.

        Intervals are aligned to multiples of `interval_ms`; each point
        carries its interval start and the CVD after its last trade.
        Intervals without trades produce no point.
        """
        interval_ms = self.config.cvd_interval_ms if interval_ms is None else interval_ms
        if not is_finite(interval_ms) or interval_ms <= 0:
            raise InvalidConfig("interval_ms", interval_ms)

        points: List[CVDPoint] = []
        cvd = 0.0
        bucket: Optional[int] = None
        for classified in self._history:
            trade_bucket = int(classified.timestamp_ms // interval_ms * interval_ms)
            if bucket is None:
                bucket = trade_bucket
            elif trade_bucket > bucket:
                points.append(CVDPoint(timestamp=bucket, cvd=cvd))
                bucket = trade_bucket
            cvd += classified.signed_quantity

        if bucket is not None:
            points.append(CVDPoint(timestamp=bucket, cvd=cvd))
        return points

    def detect_divergence(self, prices: Sequence[float]) -> Divergence:
        """
        Compare the price trend with the CVD trend over the recent intervals.

        Args:
            prices: One price per CVD interval (e.g. closes), oldest first

        Returns:
            BULLISH when price falls while CVD rises, BEARISH for the reverse,
            with strength |cvd_change - price_change| in relative terms.
        """
        cvd_points = self.cumulative_volume_delta()
        if len(cvd_points) < 2 or len(prices) < 2:
            return NO_DIVERGENCE

        lookback = min(self.config.divergence_lookback, len(cvd_points), len(prices))
        recent_cvd = cvd_points[-lookback:]
        recent_prices = list(prices)[-lookback:]
        first_price, last_price = recent_prices[0], recent_prices[-1]
        if not (is_finite(first_price) and is_finite(last_price)) or first_price <= 0:
            return NO_DIVERGENCE

        base_cvd = recent_cvd[0].cvd
        cvd_change = (recent_cvd[-1].cvd - base_cvd) / abs(base_cvd or 1.0)
        price_change = (last_price - first_price) / first_price
        threshold = self.config.divergence_threshold

        if price_change < -threshold and cvd_change > threshold:
            divergence_type = DivergenceType.BULLISH
        elif price_change > threshold and cvd_change < -threshold:
            divergence_type = DivergenceType.BEARISH
        else:
            return NO_DIVERGENCE

        strength = abs(cvd_change - price_change)
        logger.info(f"{divergence_type} CVD divergence: strength={strength:.3f}")
        return Divergence(type=divergence_type, strength=strength)

    def history(self, count: int = 100) -> List[ClassifiedTrade]:
        return self._history.last(count)

    def reset(self) -> None:
        self._previous_price = None
        self._previous_mid = None
        self._history.clear()


# =============================================================================
# VPIN
# =============================================================================


@dataclass(frozen=True)
class VPINBucket:
    bucket_number: int
    buy_volume: float
    sell_volume: float
    total_volume: float
    timestamp: float  # last trade in the bucket, or creation time while empty

    @property
    def imbalance(self) -> float:
        return abs(self.buy_volume - self.sell_volume)


@dataclass(frozen=True)
class VPINResult:
    vpin: float  # 0 .. 1
    toxicity: Toxicity
    buckets_filled: int
    current_bucket: VPINBucket
    timestamp: float


@dataclass(frozen=True)
class VPINPoint:
    timestamp: float
    vpin: float


def _vpin(buckets: Sequence[VPINBucket]) -> float:
    total = sum(b.total_volume for b in buckets)
    return sum(b.imbalance for b in buckets) / total if total > 0 else 0.0


class VPINCalculator:
    """
    Volume-synchronised probability of informed trading.

    Classified trades fill buckets of `bucket_size` volume. A trade that
    overflows the open bucket is not split; the whole trade closes it. Once
    `num_buckets` buckets have closed, VPIN is sum(|buy - sell|) over the
    most recent ones divided by their total volume.

    Example:
        vpin = VPINCalculator(bucket_size=50, num_buckets=20)
        result = vpin.add_trade(classifier.classify_by_tick_rule(trade))
        if result and result.toxicity is Toxicity.EXTREME:
            ...
    """

    def __init__(
        self,
        bucket_size: Optional[float] = None,
        num_buckets: Optional[int] = None,
        config: Optional[VPINThresholds] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or DEFAULT_CONFIG.vpin
        self.bucket_size = self.config.bucket_size if bucket_size is None else bucket_size
        self.num_buckets = self.config.num_buckets if num_buckets is None else num_buckets

        if not is_finite(self.bucket_size) or self.bucket_size <= 0:
            raise InvalidConfig("bucket_size", self.bucket_size)
        history_size = self.config.history_size
        if isinstance(self.num_buckets, bool) or not isinstance(self.num_buckets, int) or not (
            0 < self.num_buckets <= history_size
        ):
            raise InvalidConfig("num_buckets", self.num_buckets, f"must be an int in 1..{history_size}")

        self._clock = clock or (lambda: time.time() * 1000)
        self._buckets: RingBuffer[VPINBucket] = RingBuffer(history_size)
        self._bucket_number = 0
        self._current = self._new_bucket()

    def _new_bucket(self) -> VPINBucket:
        return VPINBucket(
            bucket_number=self._bucket_number,
            buy_volume=0.0,
            sell_volume=0.0,
            total_volume=0.0,
            timestamp=self._clock(),
        )

    def add_trade(self, trade: ClassifiedTrade) -> Optional[VPINResult]:
        """
        Add one classified trade.

        Returns a result only when this trade closes a bucket and enough
        buckets have closed; None otherwise.
        """
        quantity = trade.quantity
        if not is_finite(quantity) or quantity < 0:
            logger.warning(f"Skipping trade with invalid quantity: {quantity!r}")
            return None

        current = self._current
        is_buy = trade.side is TradeSide.BUY
        current = replace(
            current,
            buy_volume=current.buy_volume + (quantity if is_buy else 0.0),
            sell_volume=current.sell_volume + (0.0 if is_buy else quantity),
            total_volume=current.total_volume + quantity,
            timestamp=trade.timestamp_ms,
        )
        if current.total_volume < self.bucket_size:
            self._current = current
            return None

        self._buckets.append(current)
        self._bucket_number += 1
        self._current = self._new_bucket()
        logger.debug(f"VPIN bucket {current.bucket_number} closed: imbalance={current.imbalance:.4f}")
        return self.calculate()

    def calculate(self) -> Optional[VPINResult]:
        """VPIN over the most recent closed buckets; None until enough have closed."""
        if len(self._buckets) < self.num_buckets:
            return None
        vpin = _vpin(self._buckets.last(self.num_buckets))
        return VPINResult(
            vpin=vpin,
            toxicity=self.classify_toxicity(vpin),
            buckets_filled=len(self._buckets),
            current_bucket=self._current,
            timestamp=self._clock(),
        )

    def classify_toxicity(self, vpin: float) -> Toxicity:
        if vpin < self.config.medium_toxicity:
            return Toxicity.LOW
        if vpin < self.config.high_toxicity:
            return Toxicity.MEDIUM
        if vpin < self.config.extreme_toxicity:
            return Toxicity.HIGH
        return Toxicity.EXTREME

    def history(self, count: int = 100) -> List[VPINPoint]:
        """Rolling VPIN at each closed bucket, stamped with that bucket's time."""
        if count <= 0 or len(self._buckets) < self.num_buckets:
            return []
        buckets = self._buckets.to_list()
        window = self.num_buckets
        points = [
            VPINPoint(timestamp=buckets[end - 1].timestamp, vpin=_vpin(buckets[end - window:end]))
            for end in range(window, len(buckets) + 1)
        ]
        return points[-count:]

    def detect_spike(self, threshold: Optional[float] = None) -> bool:
        threshold = self.config.spike_threshold if threshold is None else threshold
        result = self.calculate()
        if result is None or result.vpin <= threshold:
            return False
        logger.warning(f"VPIN spike: {result.vpin:.3f} > {threshold}")
        return True

    def trend(self, lookback: Optional[int] = None) -> Trend:
        """
        Direction of toxicity: mean of the last `lookback` VPIN points against
        the mean of the `lookback` points one bucket earlier.
        """
        lookback = self.config.trend_lookback if lookback is None else lookback
        points = self.history(lookback + 1)
        if len(points) < 2:
            return Trend.STABLE

        recent = simple_average(p.vpin for p in points[-lookback:])
        older = simple_average(p.vpin for p in points[:lookback])
        change = recent - older
        if change > self.config.trend_threshold:
            return Trend.INCREASING
        if change < -self.config.trend_threshold:
            return Trend.DECREASING
        return Trend.STABLE

    @property
    def current_bucket(self) -> VPINBucket:
        return self._current

    @property
    def bucket_progress(self) -> float:
        """Fill level of the open bucket, in percent."""
        return self._current.total_volume / self.bucket_size * 100

    @property
    def buckets_filled(self) -> int:
        return len(self._buckets)

    def reset(self) -> None:
        self._buckets.clear()
        self._bucket_number = 0
        self._current = self._new_bucket()
