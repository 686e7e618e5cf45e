"""
Shared math utilities for indicator and statistics calculations.
"""

import math
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import InsufficientData, InvalidInput


def is_finite(value: float) -> bool:
    """True for real, finite numbers (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def require_finite(values: Sequence[float], field_name: str = "value") -> None:
    """Raise InvalidInput on the first non-finite entry."""
    for i, value in enumerate(values):
        if not is_finite(value):
            raise InvalidInput(
                f"Non-finite {field_name} at index {i}: {value!r}",
                field_name=field_name,
                index=i,
            )


def require_period(period: int, name: str = "period") -> None:
    """Periods must be positive integers."""
    if isinstance(period, bool) or not isinstance(period, int) or period <= 0:
        raise InvalidInput(f"{name} must be a positive integer, got {period!r}", field_name=name)


def require_length(indicator: str, available: int, required: int) -> None:
    if available < required:
        raise InsufficientData(indicator, required, available)


def simple_average(values: Iterable[float], default: float = 0.0) -> float:
    """Return the arithmetic mean of values or a default if empty."""
    values_list = list(values)
    if not values_list:
        return default
    return sum(values_list) / len(values_list)


def population_std(values: Sequence[float], mean: Optional[float] = None) -> float:
    """Population standard deviation (divide by n)."""
    if not values:
        return 0.0
    if mean is None:
        mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def calculate_sma(prices: List[float], period: int) -> List[float]:
    """Calculate Simple Moving Average."""
    if len(prices) < period or period <= 0:
        return []
    window_sum = sum(prices[:period])
    sma = [window_sum / period]
    for i in range(period, len(prices)):
        window_sum += prices[i] - prices[i - period]
        sma.append(window_sum / period)
    return sma


def calculate_ema(prices: List[float], period: int) -> List[float]:
    """Calculate Exponential Moving Average seeded with the SMA of the first window."""
    if len(prices) < period or period <= 0:
        return []

    multiplier = 2 / (period + 1)
    ema = [sum(prices[:period]) / period]

    for price in prices[period:]:
        ema.append(price * multiplier + ema[-1] * (1 - multiplier))

    return ema


def calculate_running_ema(prices: List[float], period: int) -> List[float]:
    """
    EMA seeded with the first raw value, one output per input.

    Used inside MACD. Unlike calculate_ema there is no simple-average
    seed and no warm-up window.
    """
    if not prices or period <= 0:
        return []
    multiplier = 2 / (period + 1)
    ema = [prices[0]]
    for price in prices[1:]:
        ema.append(price * multiplier + ema[-1] * (1 - multiplier))
    return ema


def calculate_rolling_mean_std(prices: List[float], period: int) -> Tuple[List[float], List[float]]:
    """
    Calculate rolling mean and population standard deviation.

    A window whose values are all equal reports exactly 0 deviation so
    bands collapse onto the mean without floating-point residue.
    """
    if len(prices) < period or period <= 0:
        return [], []

    means: List[float] = []
    stds: List[float] = []
    for i in range(period - 1, len(prices)):
        window = prices[i - period + 1:i + 1]
        mean = sum(window) / period
        means.append(mean)
        if max(window) == min(window):
            stds.append(0.0)
        else:
            stds.append(population_std(window, mean))
    return means, stds


def pearson_correlation(a: Sequence[float], b: Sequence[float], min_points: int = 10) -> float:
    """
    Pearson correlation over the common trailing length.

    Returns 0 when fewer than min_points are available or either side has
    zero variance.
    """
    n = min(len(a), len(b))
    if n < min_points:
        return 0.0
    xs = list(a[-n:])
    ys = list(b[-n:])
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n

    cov = 0.0
    var_x = 0.0
    var_y = 0.0
    for x, y in zip(xs, ys):
        dx = x - mean_x
        dy = y - mean_y
        cov += dx * dy
        var_x += dx * dx
        var_y += dy * dy

    if var_x == 0 or var_y == 0:
        return 0.0
    corr = cov / math.sqrt(var_x * var_y)
    # Rounding can push |corr| a hair past 1
    return max(-1.0, min(1.0, corr))


def finite_or_zero(value: float) -> float:
    return value if is_finite(value) else 0.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
