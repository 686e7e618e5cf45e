"""
Technical Indicators Module
Pure calculations over candle series: trend, momentum, volatility and volume.

Every function validates its input before computing anything:
- non-positive periods and non-finite OHLCV fields raise InvalidInput
- series shorter than the documented minimum raise InsufficientData

Outputs are aligned to candle times; the warm-up window never emits a point.
"""

import logging
import math
from datetime import datetime, tzinfo
from typing import List, Optional, Sequence, Union

import pytz

from ..continuous.data_types import BollingerPoint, Candle, IndicatorPoint, MACDPoint
from .calculations import (
    calculate_ema,
    calculate_rolling_mean_std,
    calculate_running_ema,
    calculate_sma,
    is_finite,
    pearson_correlation,
    require_finite,
    require_length,
    require_period,
)
from .errors import InvalidInput
from .indicator_config import DEFAULT_CONFIG, safe_divide

logger = logging.getLogger(__name__)

_PERIODS = DEFAULT_CONFIG.periods

CandleSeries = Sequence[Candle]


def validate_candles(candles: CandleSeries) -> None:
    """Raise InvalidInput if any OHLCV field is non-finite."""
    for i, candle in enumerate(candles):
        for field_name in ("open", "high", "low", "close", "volume"):
            value = getattr(candle, field_name)
            if not is_finite(value):
                raise InvalidInput(
                    f"Non-finite {field_name} at index {i}: {value!r}",
                    field_name=field_name,
                    index=i,
                )


def _closes(candles: CandleSeries) -> List[float]:
    return [c.close for c in candles]


def _true_ranges(candles: CandleSeries) -> List[float]:
    """True range for every candle after the first."""
    ranges = []
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return ranges


# =============================================================================
# TREND INDICATORS
# =============================================================================


class TrendIndicators:
    """Trend-following indicators."""

    @staticmethod
    def calculate_sma(candles: CandleSeries, period: int = _PERIODS.sma) -> List[IndicatorPoint]:
        """Sliding-window mean of closes. Output length is n - period + 1."""
        require_period(period)
        validate_candles(candles)
        require_length("SMA", len(candles), period)

        values = calculate_sma(_closes(candles), period)
        return [
            IndicatorPoint(candles[period - 1 + i].time, value)
            for i, value in enumerate(values)
        ]

    @staticmethod
    def calculate_ema(candles: CandleSeries, period: int = _PERIODS.ema) -> List[IndicatorPoint]:
        """
        Exponential moving average of closes.

        Seeded with the simple mean of the first `period` closes, then
        ema_t = close_t * k + ema_{t-1} * (1 - k) with k = 2 / (period + 1).
        """
        require_period(period)
        validate_candles(candles)
        require_length("EMA", len(candles), period)

        values = calculate_ema(_closes(candles), period)
        return [
            IndicatorPoint(candles[period - 1 + i].time, value)
            for i, value in enumerate(values)
        ]

    @staticmethod
    def calculate_macd(
        candles: CandleSeries,
        fast: int = _PERIODS.macd_fast,
        slow: int = _PERIODS.macd_slow,
        signal: int = _PERIODS.macd_signal,
    ) -> List[MACDPoint]:
        """
        MACD line, signal line and histogram.

        The internal EMAs are seeded with the first close rather than an
        SMA. The MACD line is valid from index slow - 1; the signal line is
        the same running EMA over that valid segment and each emitted point
        pairs macd and signal from the same candle. Pairing the first MACD
        value with the first signal value, which lags the signal by
        signal - 1 candles, is not reproduced.
        """
        require_period(fast, "fast")
        require_period(slow, "slow")
        require_period(signal, "signal")
        validate_candles(candles)
        require_length("MACD", len(candles), slow + signal)

        closes = _closes(candles)
        fast_ema = calculate_running_ema(closes, fast)
        slow_ema = calculate_running_ema(closes, slow)
        macd_line = [fast_ema[i] - slow_ema[i] for i in range(slow - 1, len(closes))]
        signal_line = calculate_running_ema(macd_line, signal)

        points = []
        for j in range(signal - 1, len(macd_line)):
            macd_value = macd_line[j]
            signal_value = signal_line[j]
            points.append(
                MACDPoint(
                    time=candles[slow - 1 + j].time,
                    macd=macd_value,
                    signal=signal_value,
                    histogram=macd_value - signal_value,
                )
            )
        return points

    @staticmethod
    def calculate_adx(candles: CandleSeries, period: int = _PERIODS.adx) -> List[IndicatorPoint]:
        """
        Average Directional Index (Wilder).

        Needs at least 2 * period candles; the first value lands on
        candles[2 * period], so a series of exactly 2 * period yields [].
        """
        require_period(period)
        validate_candles(candles)
        require_length("ADX", len(candles), period * 2)

        tr_values = _true_ranges(candles)
        dm_plus_values = []
        dm_minus_values = []
        for i in range(1, len(candles)):
            up_move = candles[i].high - candles[i - 1].high
            down_move = candles[i - 1].low - candles[i].low
            dm_plus_values.append(up_move if up_move > down_move and up_move > 0 else 0.0)
            dm_minus_values.append(down_move if down_move > up_move and down_move > 0 else 0.0)

        # Wilder smoothing seeded with the raw sum
        smooth_tr = sum(tr_values[:period])
        smooth_plus = sum(dm_plus_values[:period])
        smooth_minus = sum(dm_minus_values[:period])

        dx_values = []
        for i in range(period, len(tr_values)):
            smooth_tr = smooth_tr - smooth_tr / period + tr_values[i]
            smooth_plus = smooth_plus - smooth_plus / period + dm_plus_values[i]
            smooth_minus = smooth_minus - smooth_minus / period + dm_minus_values[i]

            di_plus = safe_divide(smooth_plus, smooth_tr) * 100
            di_minus = safe_divide(smooth_minus, smooth_tr) * 100
            dx_values.append(safe_divide(abs(di_plus - di_minus), di_plus + di_minus) * 100)

        if len(dx_values) < period:
            return []

        adx = sum(dx_values[:period]) / period
        points = [IndicatorPoint(candles[2 * period].time, adx)]
        for i in range(period, len(dx_values)):
            adx = (adx * (period - 1) + dx_values[i]) / period
            points.append(IndicatorPoint(candles[period + 1 + i].time, adx))
        return points


# =============================================================================
# MOMENTUM INDICATORS
# =============================================================================


class MomentumIndicators:
    """Momentum oscillators."""

    @staticmethod
    def calculate_rsi(candles: CandleSeries, period: int = _PERIODS.rsi) -> List[IndicatorPoint]:
        """
        Relative Strength Index with Wilder smoothing.

        Output length is n - period; the first point is at candles[period].
        An average loss of exactly zero yields 100.
        """
        require_period(period)
        validate_candles(candles)
        require_length("RSI", len(candles), period + 1)

        closes = _closes(candles)
        deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]
        gains = [d if d > 0 else 0.0 for d in deltas]
        losses = [-d if d < 0 else 0.0 for d in deltas]

        avg_gain = sum(gains[:period]) / period
        avg_loss = sum(losses[:period]) / period

        def _rsi(gain: float, loss: float) -> float:
            if loss == 0:
                return 100.0
            return 100 - 100 / (1 + gain / loss)

        points = [IndicatorPoint(candles[period].time, _rsi(avg_gain, avg_loss))]
        for i in range(period, len(deltas)):
            avg_gain = (avg_gain * (period - 1) + gains[i]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i]) / period
            points.append(IndicatorPoint(candles[i + 1].time, _rsi(avg_gain, avg_loss)))
        return points

    @staticmethod
    def calculate_hurst(candles: CandleSeries, min_points: int = _PERIODS.hurst_min_points) -> float:
        """
        Hurst exponent estimate from a single rescaled-range window.

        H = ln(R/S) / ln(n) over log returns. Returns 0.5 (random walk)
        when fewer than min_points candles or the returns have no dispersion.
        """
        validate_candles(candles)
        if len(candles) < min_points:
            return 0.5

        closes = _closes(candles)
        if any(c <= 0 for c in closes):
            raise InvalidInput("Hurst exponent requires positive closes", field_name="close")

        returns = [math.log(closes[i] / closes[i - 1]) for i in range(1, len(closes))]
        mean = sum(returns) / len(returns)
        deviations = [r - mean for r in returns]

        cumulative = []
        running = 0.0
        for dev in deviations:
            running += dev
            cumulative.append(running)

        value_range = max(cumulative) - min(cumulative)
        std = math.sqrt(sum(d * d for d in deviations) / len(deviations))
        if std == 0 or value_range <= 0:
            return 0.5

        return math.log(value_range / std) / math.log(len(closes))


# =============================================================================
# VOLATILITY INDICATORS
# =============================================================================


class VolatilityIndicators:
    """Volatility bands and ranges."""

    @staticmethod
    def calculate_bollinger_bands(
        candles: CandleSeries,
        period: int = _PERIODS.bollinger,
        std_dev: float = _PERIODS.bollinger_std_dev,
    ) -> List[BollingerPoint]:
        """
        Bollinger Bands: SMA middle band +/- std_dev population deviations.

        A zero-variance window collapses all three bands onto the mean.
        """
        require_period(period)
        if not is_finite(std_dev) or std_dev < 0:
            raise InvalidInput(f"std_dev must be a non-negative finite number, got {std_dev!r}")
        validate_candles(candles)
        require_length("Bollinger", len(candles), period)

        means, stds = calculate_rolling_mean_std(_closes(candles), period)
        points = []
        for i, (mean, std) in enumerate(zip(means, stds)):
            band = std_dev * std
            points.append(
                BollingerPoint(
                    time=candles[period - 1 + i].time,
                    upper=mean + band,
                    middle=mean,
                    lower=mean - band,
                )
            )
        return points

    @staticmethod
    def calculate_atr(candles: CandleSeries, period: int = _PERIODS.atr) -> List[IndicatorPoint]:
        """
        Average True Range.

        First value is the mean of the first `period` true ranges, placed at
        candles[period]; later values use Wilder smoothing.
        """
        require_period(period)
        validate_candles(candles)
        require_length("ATR", len(candles), period + 1)

        true_ranges = _true_ranges(candles)
        atr = sum(true_ranges[:period]) / period
        points = [IndicatorPoint(candles[period].time, atr)]
        for i in range(period, len(true_ranges)):
            atr = (atr * (period - 1) + true_ranges[i]) / period
            points.append(IndicatorPoint(candles[i + 1].time, atr))
        return points


# =============================================================================
# VOLUME INDICATORS
# =============================================================================


class VolumeIndicators:
    """Volume-weighted indicators."""

    @staticmethod
    def calculate_vwap(candles: CandleSeries) -> List[IndicatorPoint]:
        """
        Cumulative VWAP over the whole series using typical price.

        While cumulative volume is zero the value is the current close.
        """
        validate_candles(candles)
        require_length("VWAP", len(candles), 1)

        cumulative_pv = 0.0
        cumulative_volume = 0.0
        points = []
        for candle in candles:
            cumulative_pv += candle.typical_price * candle.volume
            cumulative_volume += candle.volume
            value = cumulative_pv / cumulative_volume if cumulative_volume > 0 else candle.close
            points.append(IndicatorPoint(candle.time, value))
        return points

    @staticmethod
    def calculate_session_vwap(
        candles: CandleSeries,
        timezone: Union[str, tzinfo] = "UTC",
    ) -> List[IndicatorPoint]:
        """
        VWAP that resets at each calendar-day boundary in `timezone`.

        Uses pytz so session boundaries follow the exchange's local day.
        """
        tz = pytz.timezone(timezone) if isinstance(timezone, str) else timezone
        validate_candles(candles)
        require_length("Session VWAP", len(candles), 1)

        cumulative_pv = 0.0
        cumulative_volume = 0.0
        current_session = None
        points = []
        for candle in candles:
            session = datetime.fromtimestamp(candle.time, tz).date()
            if session != current_session:
                if current_session is not None:
                    logger.debug(f"VWAP session reset at {candle.time} ({session})")
                current_session = session
                cumulative_pv = 0.0
                cumulative_volume = 0.0

            cumulative_pv += candle.typical_price * candle.volume
            cumulative_volume += candle.volume
            value = cumulative_pv / cumulative_volume if cumulative_volume > 0 else candle.close
            points.append(IndicatorPoint(candle.time, value))
        return points

    @staticmethod
    def calculate_obv(candles: CandleSeries) -> List[IndicatorPoint]:
        """On-balance volume, starting at 0 on the first candle."""
        validate_candles(candles)
        require_length("OBV", len(candles), 1)

        obv = 0.0
        points = [IndicatorPoint(candles[0].time, obv)]
        for i in range(1, len(candles)):
            if candles[i].close > candles[i - 1].close:
                obv += candles[i].volume
            elif candles[i].close < candles[i - 1].close:
                obv -= candles[i].volume
            points.append(IndicatorPoint(candles[i].time, obv))
        return points


# =============================================================================
# CROSS-SERIES
# =============================================================================


def calculate_correlation(
    series_a: Sequence[float],
    series_b: Sequence[float],
    min_points: Optional[int] = None,
) -> float:
    """
    Pearson correlation of two numeric series over their common trailing length.

    Returns 0 when fewer than `min_points` (default 10) values overlap or
    either series is constant.
    """
    require_finite(series_a, "series_a")
    require_finite(series_b, "series_b")
    if min_points is None:
        min_points = _PERIODS.correlation_min_points
    return pearson_correlation(series_a, series_b, min_points=min_points)
