"""
Mean-Reversion and Tail-Risk Statistics

Z-score, AR(1) autocorrelation and Ornstein-Uhlenbeck half-life over a
return series, plus historical VaR / CVaR.

No NaN or infinity ever leaves this module: degenerate intermediates are
reported as 0.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .calculations import clamp, finite_or_zero, population_std, require_finite
from .errors import InvalidInput
from .indicator_config import DEFAULT_CONFIG, MeanReversionThresholds
from .signals import MeanReversionSignal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeanReversionResult:
    """Mean-reversion diagnostics for a return series."""

    signal: MeanReversionSignal
    mean: float = 0.0
    std_dev: float = 0.0
    z_score: float = 0.0
    autocorrelation: float = 0.0
    theta: float = 0.0
    half_life: float = 0.0
    strength: float = 0.0  # 0 = trending, 1 = strongly mean reverting

    def to_dict(self) -> Dict[str, object]:
        return {
            "signal": self.signal.value,
            "mean": self.mean,
            "stdDev": self.std_dev,
            "zScore": self.z_score,
            "autocorrelation": self.autocorrelation,
            "theta": self.theta,
            "halfLife": self.half_life,
            "strength": self.strength,
        }


@dataclass(frozen=True)
class VaRReport:
    """Historical-simulation risk figures in portfolio currency."""

    var_99: float
    var_95: float
    var_90: float
    es_99: float
    es_95: float
    portfolio_value: float
    observations: int


def _classify(z_score: float, thresholds: MeanReversionThresholds) -> MeanReversionSignal:
    if z_score > thresholds.strong_z:
        return MeanReversionSignal.STRONG_SELL
    if z_score > thresholds.weak_z:
        return MeanReversionSignal.SELL
    if z_score < -thresholds.strong_z:
        return MeanReversionSignal.STRONG_BUY
    if z_score < -thresholds.weak_z:
        return MeanReversionSignal.BUY
    return MeanReversionSignal.NEUTRAL


def analyze_mean_reversion(
    returns: Sequence[float],
    thresholds: Optional[MeanReversionThresholds] = None,
) -> MeanReversionResult:
    """
    Analyze a return series for mean-reverting behaviour.

    Args:
        returns: Period returns, oldest first
        thresholds: Override signal thresholds / minimum length

    Returns:
        MeanReversionResult; INSUFFICIENT_DATA with zeroed metrics when
        fewer than `min_observations` returns are supplied.
    """
    thresholds = thresholds or DEFAULT_CONFIG.mean_reversion
    require_finite(returns, "return")

    if len(returns) < thresholds.min_observations:
        return MeanReversionResult(signal=MeanReversionSignal.INSUFFICIENT_DATA)

    values = list(returns)
    mean = sum(values) / len(values)
    std = population_std(values, mean)
    z_score = (values[-1] - mean) / std if std > 0 else 0.0

    numerator = 0.0
    denominator = 0.0
    for i in range(1, len(values)):
        numerator += values[i - 1] * values[i]
        denominator += values[i - 1] ** 2
    autocorrelation = numerator / denominator if denominator > 0 else 0.0

    theta = -math.log(autocorrelation) if autocorrelation > 0 else 0.0
    theta = finite_or_zero(theta)
    half_life = math.log(2) / theta if theta > 0 else 0.0
    half_life = min(finite_or_zero(half_life), thresholds.max_half_life)

    strength = clamp(1 - abs(autocorrelation), 0.0, 1.0)
    z_score = finite_or_zero(z_score)

    return MeanReversionResult(
        signal=_classify(z_score, thresholds),
        mean=finite_or_zero(mean),
        std_dev=finite_or_zero(std),
        z_score=z_score,
        autocorrelation=finite_or_zero(autocorrelation),
        theta=theta,
        half_life=half_life,
        strength=finite_or_zero(strength),
    )


# =============================================================================
# TAIL RISK
# =============================================================================


def _check_confidence(confidence: float) -> None:
    if not (0 < confidence < 1):
        raise InvalidInput(f"confidence must be in (0, 1), got {confidence!r}", field_name="confidence")


def calculate_cvar(returns: Sequence[float], confidence: Optional[float] = None) -> float:
    """
    Conditional VaR (expected shortfall) as a positive loss magnitude.

    `confidence` defaults to the configured mean-reversion cvar_confidence.

    The tail is the floor((1 - confidence) * n) worst returns; when that is
    empty the single worst return is used. Empty input gives 0.
    """
    if confidence is None:
        confidence = DEFAULT_CONFIG.mean_reversion.cvar_confidence
    _check_confidence(confidence)
    require_finite(returns, "return")
    if not returns:
        return 0.0

    ordered = sorted(returns)
    index = math.floor((1 - confidence) * len(ordered))
    if index == 0:
        return -ordered[0]
    tail = ordered[:index]
    return -(sum(tail) / len(tail))


def calculate_historical_var(returns: Sequence[float], confidence: float = 0.95) -> float:
    """
    Historical-simulation VaR as a positive loss magnitude.

    Reads the return at percentile floor(n * (1 - confidence)) of the
    ascending distribution. Empty input gives 0.
    """
    _check_confidence(confidence)
    require_finite(returns, "return")
    if not returns:
        return 0.0

    ordered = sorted(returns)
    index = min(math.floor(len(ordered) * (1 - confidence)), len(ordered) - 1)
    return abs(ordered[index])


def calculate_log_returns(prices: Sequence[float]) -> List[float]:
    """ln(p_t / p_{t-1}) for consecutive prices; prices must be positive."""
    require_finite(prices, "price")
    for i, price in enumerate(prices):
        if price <= 0:
            raise InvalidInput(f"Price must be positive at index {i}: {price!r}", field_name="price", index=i)
    return [math.log(prices[i] / prices[i - 1]) for i in range(1, len(prices))]


def calculate_var_report(
    returns: Sequence[float],
    portfolio_value: float = 10000.0,
    holding_period: float = 1.0,
    min_observations: int = 100,
) -> Optional[VaRReport]:
    """
    VaR at 99/95/90% and expected shortfall at 99/95% in currency terms.

    Scaled by sqrt(holding_period). Returns None below min_observations.
    """
    require_finite(returns, "return")
    if len(returns) < min_observations:
        logger.debug(f"VaR report needs {min_observations} returns, got {len(returns)}")
        return None

    ordered = sorted(returns)
    n = len(ordered)
    scale = math.sqrt(holding_period) * portfolio_value

    def _percentile(p: float) -> float:
        return ordered[math.floor(n * p)]

    def _shortfall(p: float) -> float:
        tail = ordered[:math.floor(n * p)]
        return sum(tail) / len(tail) if tail else 0.0

    return VaRReport(
        var_99=abs(_percentile(0.01) * scale),
        var_95=abs(_percentile(0.05) * scale),
        var_90=abs(_percentile(0.10) * scale),
        es_99=abs(_shortfall(0.01) * scale),
        es_95=abs(_shortfall(0.05) * scale),
        portfolio_value=portfolio_value,
        observations=n,
    )
