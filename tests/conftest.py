import os
import sys
from typing import Callable, List

import pytest


TESTS_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(TESTS_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from quant_analytics.continuous.data_types import Candle  # noqa: E402


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start_ms: float = 1_700_000_000_000.0):
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class ManualHandle:
    def __init__(self, delay_seconds: float, callback: Callable[[], None]):
        self.delay_seconds = delay_seconds
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler that only runs callbacks when told to."""

    def __init__(self):
        self.handles: List[ManualHandle] = []

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(delay_seconds, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> List[ManualHandle]:
        return [h for h in self.handles if not h.cancelled]

    def run_all(self) -> None:
        for handle in self.pending:
            handle.cancelled = True
            handle.callback()


def make_candles(closes: List[float], spread: float = 1.0, volume: float = 1000.0, start: int = 1_700_000_000, step: int = 60) -> List[Candle]:
    """Candles around the given closes with a fixed high/low spread."""
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        open_ = prev
        candles.append(
            Candle(
                time=start + i * step,
                open=open_,
                high=max(open_, close) + spread,
                low=min(open_, close) - spread,
                close=close,
                volume=volume,
            )
        )
        prev = close
    return candles


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def rising_candles() -> List[Candle]:
    """Strictly increasing closes."""
    return make_candles([100.0 + i for i in range(40)])


@pytest.fixture
def falling_candles() -> List[Candle]:
    """Strictly decreasing closes."""
    return make_candles([200.0 - i for i in range(40)])


@pytest.fixture
def wavy_candles() -> List[Candle]:
    """Oscillating closes with a mild upward drift."""
    closes = [100.0 + 0.1 * i + (3.0 if i % 3 == 0 else -2.0 if i % 3 == 1 else 0.5) for i in range(60)]
    return make_candles(closes)


@pytest.fixture
def flat_candles() -> List[Candle]:
    return make_candles([50.0] * 30, spread=0.0)
