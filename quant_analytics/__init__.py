"""Quantitative analytics engine for streaming market data.

Public symbols are exposed lazily so importing `quant_analytics` does not
eagerly import the worker process machinery or pytz.
"""

from __future__ import annotations

import importlib
from typing import Dict, Tuple

__version__ = "0.1.0"

__all__ = [
    # Data types
    "Candle",
    "TradeTick",
    "OrderBookSnapshot",
    "IndicatorPoint",
    "MACDPoint",
    "BollingerPoint",
    "RingBuffer",
    # Errors
    "AnalyticsError",
    "InsufficientData",
    "InvalidInput",
    "InvalidConfig",
    "UnknownRequestType",
    # Config
    "AnalyticsConfig",
    "DEFAULT_CONFIG",
    "get_config",
    "safe_divide",
    # Enums
    "MeanReversionSignal",
    "FeedStatus",
    "OFIEventType",
    "TradeSide",
    "Toxicity",
    # Indicators
    "TrendIndicators",
    "MomentumIndicators",
    "VolatilityIndicators",
    "VolumeIndicators",
    "calculate_correlation",
    # Order flow
    "OFICalculator",
    "OFIResult",
    "OFIEvent",
    "TradeFlowResult",
    "calculate_trade_flow",
    "TradeClassifier",
    "ClassifiedTrade",
    "VolumeDelta",
    "VPINCalculator",
    "VPINResult",
    # Statistics
    "MeanReversionResult",
    "VaRReport",
    "analyze_mean_reversion",
    "calculate_cvar",
    "calculate_historical_var",
    "calculate_log_returns",
    "calculate_var_report",
    # Provenance
    "ProvenanceEngine",
    "ProvenanceRegistry",
    "ProvenanceRecord",
    "Provenanced",
    "LatencyDistribution",
    # Aggregation
    "DataThinner",
    "OrderBookHistory",
    "snapshot_from_levels",
    "HeatmapBinConfig",
    "HeatmapCell",
    "HeatmapAggregationResult",
    "aggregate_order_book_heatmap",
    "merge_heatmap_config",
    # Alerts
    "Alert",
    "AlertType",
    "AlertCondition",
    "AlertEngine",
    "AlertHistoryRecord",
    "AlertStorage",
    "ThreadingScheduler",
    "AsyncioScheduler",
    "serialize_alerts",
    "deserialize_alerts",
    # Worker
    "ComputeWorkerClient",
    "ComputeWorkerError",
    "WorkerTimeoutError",
    "RequestType",
    "handle_message",
    # Logging
    "setup_logging",
    "get_logger",
    "configure_default_logging",
]


_EXPORT_TO_SOURCE: Dict[str, Tuple[str, str]] = {}


def _register(module: str, names: list[str], aliases: Dict[str, str] | None = None) -> None:
    for name in names:
        _EXPORT_TO_SOURCE[name] = (module, name)
    if aliases:
        for public_name, source_name in aliases.items():
            _EXPORT_TO_SOURCE[public_name] = (module, source_name)


_register(
    ".continuous.data_types",
    ["Candle", "TradeTick", "OrderBookSnapshot", "IndicatorPoint", "MACDPoint", "BollingerPoint"],
)

_register(".continuous.ring_buffer", ["RingBuffer"])

_register(
    ".engines.errors",
    ["AnalyticsError", "InsufficientData", "InvalidInput", "InvalidConfig", "UnknownRequestType"],
)

_register(
    ".engines.indicator_config",
    ["AnalyticsConfig", "DEFAULT_CONFIG", "get_config", "safe_divide"],
)

_register(
    ".engines.signals",
    ["MeanReversionSignal", "FeedStatus", "OFIEventType", "TradeSide", "Toxicity"],
)

_register(
    ".engines.indicators",
    [
        "TrendIndicators",
        "MomentumIndicators",
        "VolatilityIndicators",
        "VolumeIndicators",
        "calculate_correlation",
    ],
)

_register(
    ".engines.order_flow",
    [
        "OFICalculator",
        "OFIResult",
        "OFIEvent",
        "TradeFlowResult",
        "calculate_trade_flow",
        "TradeClassifier",
        "ClassifiedTrade",
        "VolumeDelta",
        "VPINCalculator",
        "VPINResult",
    ],
)

_register(
    ".engines.mean_reversion",
    [
        "MeanReversionResult",
        "VaRReport",
        "analyze_mean_reversion",
        "calculate_cvar",
        "calculate_historical_var",
        "calculate_log_returns",
        "calculate_var_report",
    ],
)

_register(
    ".engines.provenance",
    [
        "ProvenanceEngine",
        "ProvenanceRegistry",
        "ProvenanceRecord",
        "Provenanced",
        "LatencyDistribution",
    ],
)

_register(".continuous.aggregation", ["DataThinner", "OrderBookHistory", "snapshot_from_levels"])

_register(
    ".continuous.heatmap",
    [
        "HeatmapBinConfig",
        "HeatmapCell",
        "HeatmapAggregationResult",
        "aggregate_order_book_heatmap",
        "merge_heatmap_config",
    ],
)

_register(
    ".engines.alerts",
    [
        "Alert",
        "AlertType",
        "AlertCondition",
        "AlertEngine",
        "AlertHistoryRecord",
        "AlertStorage",
        "ThreadingScheduler",
        "AsyncioScheduler",
        "serialize_alerts",
        "deserialize_alerts",
    ],
)

_register(
    ".worker.process",
    ["ComputeWorkerClient", "ComputeWorkerError", "WorkerTimeoutError"],
)

_register(".worker.protocol", ["RequestType", "handle_message"])

_register(".logging_config", ["setup_logging", "get_logger", "configure_default_logging"])


_missing_exports = [name for name in __all__ if name not in _EXPORT_TO_SOURCE]
if _missing_exports:
    raise RuntimeError(f"Lazy export map incomplete: {_missing_exports}")


def __getattr__(name: str):
    if name not in _EXPORT_TO_SOURCE:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, symbol_name = _EXPORT_TO_SOURCE[name]
    module = importlib.import_module(module_name, __name__)
    value = getattr(module, symbol_name)

    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
