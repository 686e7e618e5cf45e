"""
Feed Provenance Engine
Per-symbol tracking of message latency, tick gaps and feed health.

Every inbound tick is stamped with a ProvenanceRecord: a monotonically
increasing sequence number, the exchange-to-receipt latency, a suspected
gap flag and the feed status at receipt. Status is re-derived from elapsed
time on every query, so a silent feed goes STALE without a new tick.

Engines never raise while processing ticks; malformed timestamps are
recorded with zero latency and logged.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from ..continuous.ring_buffer import RingBuffer
from .calculations import is_finite
from .indicator_config import DEFAULT_CONFIG
from .signals import FeedStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


def wall_clock_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


@dataclass(frozen=True)
class ProvenanceRecord:
    """Per-tick metadata attached by the engine."""

    exchange_timestamp: float
    received_timestamp: float
    sequence_number: int
    latency_ms: float
    is_suspected_gap: bool
    feed_status: FeedStatus

    def to_dict(self) -> Dict[str, object]:
        return {
            "exchangeTimestamp": self.exchange_timestamp,
            "receivedTimestamp": self.received_timestamp,
            "sequenceNumber": self.sequence_number,
            "latencyMs": self.latency_ms,
            "isSuspectedGap": self.is_suspected_gap,
            "feedStatus": self.feed_status.value,
        }


@dataclass(frozen=True)
class Provenanced(Generic[T]):
    """A payload together with the provenance stamped on receipt."""

    data: T
    provenance: ProvenanceRecord


@dataclass(frozen=True)
class LatencyDistribution:
    p50: float
    p95: float
    p99: float
    samples: List[float]  # ascending
    last_updated: float


@dataclass(frozen=True)
class ProvenanceState:
    """Point-in-time copy of an engine's internals."""

    symbol: str
    last_sequence_number: int
    last_received_timestamp: float
    sample_count: int
    max_samples: int
    gap_threshold_ms: float
    stale_threshold_ms: float
    feed_status: FeedStatus


def nearest_rank_percentile(sorted_values: List[float], p: float) -> float:
    """Nearest-rank percentile: element ceil(n * p) - 1, clamped at 0."""
    if not sorted_values:
        return 0.0
    index = math.ceil(len(sorted_values) * p) - 1
    return sorted_values[max(0, index)]


class ProvenanceEngine:
    """
    Latency / gap / liveness tracker for one symbol.

    Writes come from a single ingestion pipeline; the internal lock only
    keeps reset() atomic with respect to concurrent queries.

    Example:
        engine = ProvenanceEngine("BTCUSDT")
        tick = engine.augment(candle, exchange_timestamp=ts_ms)
        tick.provenance.latency_ms
        engine.get_quality_score()
    """

    def __init__(
        self,
        symbol: str,
        max_samples: Optional[int] = None,
        gap_threshold_ms: Optional[float] = None,
        stale_threshold_ms: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        defaults = DEFAULT_CONFIG.provenance
        self.symbol = symbol
        self.gap_threshold_ms = gap_threshold_ms if gap_threshold_ms is not None else defaults.gap_threshold_ms
        self.stale_threshold_ms = (
            stale_threshold_ms if stale_threshold_ms is not None else defaults.stale_threshold_ms
        )
        self.high_latency_ms = defaults.high_latency_ms
        self._clock = clock or wall_clock_ms
        self._lock = threading.RLock()

        self._samples: RingBuffer[float] = RingBuffer(max_samples or defaults.max_samples)
        self._sequence = 0
        self._last_received = 0.0
        self._status = FeedStatus.DISCONNECTED

    def _is_stale(self, now: float) -> bool:
        return self._last_received > 0 and now - self._last_received > self.stale_threshold_ms

    def augment(self, data: T, exchange_timestamp: float) -> Provenanced[T]:
        """Stamp `data` with provenance and update the feed statistics."""
        with self._lock:
            received = self._clock()
            if is_finite(exchange_timestamp):
                latency = received - exchange_timestamp
            else:
                logger.warning(
                    f"{self.symbol}: non-finite exchange timestamp {exchange_timestamp!r}, latency recorded as 0"
                )
                latency = 0.0

            self._sequence += 1
            since_last = received - self._last_received
            is_gap = self._last_received > 0 and since_last > self.gap_threshold_ms

            if self._is_stale(received):
                status = FeedStatus.STALE
            else:
                status = FeedStatus.LIVE
                if latency >= self.high_latency_ms:
                    logger.warning(f"{self.symbol}: high feed latency {latency:.0f}ms")

            if is_gap:
                logger.debug(f"{self.symbol}: suspected gap of {since_last:.0f}ms before seq {self._sequence}")

            self._samples.append(latency)
            self._last_received = received
            self._status = status

            record = ProvenanceRecord(
                exchange_timestamp=exchange_timestamp,
                received_timestamp=received,
                sequence_number=self._sequence,
                latency_ms=latency,
                is_suspected_gap=is_gap,
                feed_status=status,
            )
        return Provenanced(data=data, provenance=record)

    def get_latency_distribution(self) -> LatencyDistribution:
        with self._lock:
            ordered = sorted(self._samples)
        return LatencyDistribution(
            p50=nearest_rank_percentile(ordered, 0.50),
            p95=nearest_rank_percentile(ordered, 0.95),
            p99=nearest_rank_percentile(ordered, 0.99),
            samples=ordered,
            last_updated=self._clock(),
        )

    def get_feed_status(self) -> FeedStatus:
        """Current status; any feed silent past the stale threshold becomes STALE."""
        with self._lock:
            if self._status is not FeedStatus.STALE and self._is_stale(self._clock()):
                logger.info(f"{self.symbol}: feed went stale")
                self._status = FeedStatus.STALE
            return self._status

    def mark_disconnected(self) -> None:
        with self._lock:
            self._status = FeedStatus.DISCONNECTED

    def mark_replay(self) -> None:
        with self._lock:
            self._status = FeedStatus.REPLAY

    def reset(self) -> None:
        """Zero sequence, timestamps and samples; status back to DISCONNECTED."""
        with self._lock:
            self._sequence = 0
            self._last_received = 0.0
            self._samples.clear()
            self._status = FeedStatus.DISCONNECTED

    def get_state(self) -> ProvenanceState:
        with self._lock:
            return ProvenanceState(
                symbol=self.symbol,
                last_sequence_number=self._sequence,
                last_received_timestamp=self._last_received,
                sample_count=len(self._samples),
                max_samples=self._samples.maxlen,
                gap_threshold_ms=self.gap_threshold_ms,
                stale_threshold_ms=self.stale_threshold_ms,
                feed_status=self._status,
            )

    def detect_sequence_gap(self, expected_sequence: int) -> bool:
        """True when the engine's last sequence number differs from `expected_sequence`."""
        with self._lock:
            return self._sequence != expected_sequence

    def get_average_latency(self) -> float:
        with self._lock:
            if not self._samples:
                return 0.0
            return sum(self._samples) / len(self._samples)

    def get_latency_range(self) -> Tuple[float, float]:
        """(min, max) latency, (0, 0) before any sample."""
        with self._lock:
            if not self._samples:
                return 0.0, 0.0
            return min(self._samples), max(self._samples)

    def is_healthy(self) -> bool:
        return self.get_feed_status() in (FeedStatus.LIVE, FeedStatus.REPLAY)

    def get_quality_score(self) -> int:
        """0-100 feed quality."""
        status = self.get_feed_status()
        if status is FeedStatus.DISCONNECTED:
            return 0
        if status is FeedStatus.STALE:
            return 25
        if status is FeedStatus.REPLAY:
            return 75

        avg_latency = self.get_average_latency()
        if avg_latency < 50:
            return 100
        if avg_latency < 100:
            return 90
        if avg_latency < 200:
            return 80
        if avg_latency < 500:
            return 70
        if avg_latency < 1000:
            return 60
        return 50


@dataclass(frozen=True)
class FeedHealth:
    status: FeedStatus
    quality: int


class ProvenanceRegistry:
    """
    Symbol -> ProvenanceEngine map owned by the caller.

    Engines are created lazily with the registry's settings.
    """

    def __init__(
        self,
        max_samples: Optional[int] = None,
        gap_threshold_ms: Optional[float] = None,
        stale_threshold_ms: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self._engine_kwargs = {
            "max_samples": max_samples,
            "gap_threshold_ms": gap_threshold_ms,
            "stale_threshold_ms": stale_threshold_ms,
            "clock": clock,
        }
        self._engines: Dict[str, ProvenanceEngine] = {}

    def get_engine(self, symbol: str) -> ProvenanceEngine:
        engine = self._engines.get(symbol)
        if engine is None:
            engine = ProvenanceEngine(symbol, **self._engine_kwargs)
            self._engines[symbol] = engine
            logger.debug(f"Created provenance engine for {symbol}")
        return engine

    def remove_engine(self, symbol: str) -> None:
        self._engines.pop(symbol, None)

    def reset_all(self) -> None:
        for engine in self._engines.values():
            engine.reset()

    def tracked_symbols(self) -> List[str]:
        return list(self._engines)

    def health_summary(self) -> Dict[str, FeedHealth]:
        return {
            symbol: FeedHealth(status=engine.get_feed_status(), quality=engine.get_quality_score())
            for symbol, engine in self._engines.items()
        }

    def clear(self) -> None:
        """Drop every engine."""
        self._engines.clear()

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._engines

    def __len__(self) -> int:
        return len(self._engines)
