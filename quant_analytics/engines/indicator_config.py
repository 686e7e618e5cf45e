"""
Analytics Configuration Module
Centralizes default periods, thresholds and buffer capacities.

This module provides a single source of truth for all configurable parameters,
making it easy to tune the engines without hunting through multiple files.
"""

from dataclasses import dataclass, field
from typing import Optional

# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

EPSILON = 1e-9


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if denominator is near zero.

    Args:
        numerator: The numerator
        denominator: The denominator
        default: Value to return if division is unsafe (default: 0.0)

    Returns:
        numerator / denominator if safe, otherwise default
    """
    return numerator / denominator if abs(denominator) > EPSILON else default


@dataclass
class IndicatorPeriods:
    """Default lookback periods for the indicator library."""

    rsi: int = 14
    ema: int = 20
    sma: int = 20
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bollinger: int = 20
    bollinger_std_dev: float = 2.0
    atr: int = 14
    adx: int = 14

    # Pearson correlation needs at least this many common points
    correlation_min_points: int = 10
    # Hurst exponent falls back to 0.5 below this
    hurst_min_points: int = 100


@dataclass
class OFIThresholds:
    """Order-flow imbalance engine settings."""

    history_size: int = 1000
    average_window: int = 10
    # Significant event detection
    min_history_for_events: int = 10
    event_z_score: float = 2.0


@dataclass
class TradeFlowThresholds:
    """Trade classification and volume delta settings."""

    history_size: int = 10000
    volume_delta_window_ms: float = 60000.0
    cvd_interval_ms: float = 60000.0
    # Price vs CVD divergence over the last N CVD intervals
    divergence_lookback: int = 10
    divergence_threshold: float = 0.01


@dataclass
class VPINThresholds:
    """Volume-synchronised probability of informed trading settings."""

    bucket_size: float = 100.0
    num_buckets: int = 50
    history_size: int = 1000
    spike_threshold: float = 0.7
    trend_lookback: int = 10
    trend_threshold: float = 0.05
    # Toxicity bands: below medium is low, at or above extreme is extreme
    medium_toxicity: float = 0.3
    high_toxicity: float = 0.5
    extreme_toxicity: float = 0.7


@dataclass
class MeanReversionThresholds:
    """Mean-reversion statistics settings."""

    min_observations: int = 20
    strong_z: float = 2.5
    weak_z: float = 1.5
    max_half_life: float = 100.0
    cvar_confidence: float = 0.95


@dataclass
class ProvenanceThresholds:
    """Feed provenance / latency settings."""

    max_samples: int = 1000
    gap_threshold_ms: float = 100.0
    stale_threshold_ms: float = 5000.0
    # Latency above this is logged but keeps the feed LIVE
    high_latency_ms: float = 1000.0


@dataclass
class AggregationDefaults:
    """Candle thinning and order-book history settings."""

    throttle_ms: float = 100.0
    max_snapshots: int = 300
    capture_interval_ms: float = 1000.0


@dataclass
class HeatmapDefaults:
    """Heatmap binning settings."""

    time_bin_seconds: float = 10.0
    price_bin_size: float = 0.5
    time_window_minutes: float = 15.0
    max_price_levels: Optional[int] = None


@dataclass
class AlertDefaults:
    """Alert engine settings."""

    history_limit: int = 100
    cooldown_ms: float = 60000.0
    equals_tolerance: float = 0.01


@dataclass
class WorkerDefaults:
    """Compute worker settings."""

    request_timeout_s: float = 30.0
    ready_timeout_s: float = 10.0
    shutdown_timeout_s: float = 5.0
    # Worker process logging; None leaves it unconfigured
    log_level: Optional[str] = None


@dataclass
class AnalyticsConfig:
    """Master configuration containing all engine settings."""

    periods: IndicatorPeriods = field(default_factory=IndicatorPeriods)
    ofi: OFIThresholds = field(default_factory=OFIThresholds)
    trade_flow: TradeFlowThresholds = field(default_factory=TradeFlowThresholds)
    vpin: VPINThresholds = field(default_factory=VPINThresholds)
    mean_reversion: MeanReversionThresholds = field(default_factory=MeanReversionThresholds)
    provenance: ProvenanceThresholds = field(default_factory=ProvenanceThresholds)
    aggregation: AggregationDefaults = field(default_factory=AggregationDefaults)
    heatmap: HeatmapDefaults = field(default_factory=HeatmapDefaults)
    alerts: AlertDefaults = field(default_factory=AlertDefaults)
    worker: WorkerDefaults = field(default_factory=WorkerDefaults)


# Global default config instance
DEFAULT_CONFIG = AnalyticsConfig()


def get_config() -> AnalyticsConfig:
    """Get the default configuration."""
    return DEFAULT_CONFIG
