"""
Compute worker message protocol.

Wire messages are plain dicts so they cross process boundaries unchanged:

    request:  {"type": "CALCULATE_INDICATORS", "payload": {...}, "id": "task_1_..."}
    success:  {"type": "CALCULATE_INDICATORS_RESULT", "payload": {...}, "id": ...}
    failure:  {"type": "ERROR", "payload": {"message": ..., "stack": ...}, "id": ...}
    ready:    {"type": "READY"}

Inside the worker each request is parsed into one of a closed set of
request dataclasses and dispatched exhaustively. handle_message never
raises: every failure becomes an ERROR response carrying the request id.
"""

import logging
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..continuous.data_types import Candle
from ..engines.errors import AnalyticsError, InsufficientData, InvalidInput, UnknownRequestType
from ..engines.indicator_config import DEFAULT_CONFIG
from ..engines.indicators import (
    MomentumIndicators,
    TrendIndicators,
    VolatilityIndicators,
    calculate_correlation,
)

logger = logging.getLogger(__name__)

_PERIODS = DEFAULT_CONFIG.periods

READY_TYPE = "READY"
ERROR_TYPE = "ERROR"
RESULT_SUFFIX = "_RESULT"


class RequestType(Enum):
    CALCULATE_INDICATORS = "CALCULATE_INDICATORS"
    CALCULATE_CORRELATION = "CALCULATE_CORRELATION"
    CALCULATE_MULTI_TIMEFRAME = "CALCULATE_MULTI_TIMEFRAME"

    @property
    def result_type(self) -> str:
        return self.value + RESULT_SUFFIX


# =============================================================================
# REQUEST VARIANTS
# =============================================================================


@dataclass(frozen=True)
class IndicatorsRequest:
    id: Optional[str]
    candles: List[Candle]
    rsi_period: int = _PERIODS.rsi
    macd_fast: int = _PERIODS.macd_fast
    macd_slow: int = _PERIODS.macd_slow
    macd_signal: int = _PERIODS.macd_signal
    bb_period: int = _PERIODS.bollinger
    bb_std_dev: float = _PERIODS.bollinger_std_dev
    atr_period: int = _PERIODS.atr
    ema_period: int = _PERIODS.ema

    request_type = RequestType.CALCULATE_INDICATORS


@dataclass(frozen=True)
class CorrelationRequest:
    id: Optional[str]
    symbols: List[str]
    data: Dict[str, List[float]] = field(default_factory=dict)

    request_type = RequestType.CALCULATE_CORRELATION


@dataclass(frozen=True)
class MultiTimeframeRequest:
    id: Optional[str]
    data: Dict[str, List[Candle]] = field(default_factory=dict)

    request_type = RequestType.CALCULATE_MULTI_TIMEFRAME


Request = Union[IndicatorsRequest, CorrelationRequest, MultiTimeframeRequest]

# camelCase wire key -> request field
_INDICATOR_PARAMS = {
    "rsiPeriod": "rsi_period",
    "macdFast": "macd_fast",
    "macdSlow": "macd_slow",
    "macdSignal": "macd_signal",
    "bbPeriod": "bb_period",
    "bbStdDev": "bb_std_dev",
    "atrPeriod": "atr_period",
    "emaPeriod": "ema_period",
}


def _parse_candles(raw: Any, where: str) -> List[Candle]:
    if not isinstance(raw, list):
        raise InvalidInput(f"{where} must be a list of candles", field_name=where)
    candles = []
    for i, item in enumerate(raw):
        if isinstance(item, Candle):
            candles.append(item)
            continue
        try:
            candles.append(Candle.from_dict(item))
        except (KeyError, TypeError) as exc:
            raise InvalidInput(f"Malformed candle at {where}[{i}]: {exc}", field_name=where, index=i) from exc
    return candles


def parse_request(message: Mapping[str, Any]) -> Request:
    """Turn a wire dict into a typed request; UnknownRequestType / InvalidInput on failure."""
    raw_type = message.get("type")
    try:
        request_type = RequestType(raw_type)
    except ValueError:
        raise UnknownRequestType(raw_type) from None

    request_id = message.get("id")
    payload = message.get("payload") or {}
    if not isinstance(payload, Mapping):
        raise InvalidInput("payload must be an object", field_name="payload")

    if request_type is RequestType.CALCULATE_INDICATORS:
        params = {
            field_name: payload[wire_key]
            for wire_key, field_name in _INDICATOR_PARAMS.items()
            # 0 or null means "use the default"
            if payload.get(wire_key) not in (None, 0)
        }
        return IndicatorsRequest(
            id=request_id,
            candles=_parse_candles(payload.get("data"), "data"),
            **params,
        )

    if request_type is RequestType.CALCULATE_CORRELATION:
        symbols = payload.get("symbols")
        data = payload.get("data") or {}
        if not isinstance(symbols, list) or not isinstance(data, Mapping):
            raise InvalidInput("correlation payload needs symbols[] and data{}", field_name="payload")
        return CorrelationRequest(id=request_id, symbols=list(symbols), data=dict(data))

    if request_type is RequestType.CALCULATE_MULTI_TIMEFRAME:
        data = payload.get("data")
        if not isinstance(data, Mapping):
            raise InvalidInput("multi-timeframe payload needs data{}", field_name="data")
        return MultiTimeframeRequest(
            id=request_id,
            data={label: _parse_candles(series, f"data.{label}") for label, series in data.items()},
        )

    raise UnknownRequestType(raw_type)


# =============================================================================
# EXECUTION
# =============================================================================


def _series(compute: Callable[[], List[Any]]) -> List[Dict[str, Any]]:
    """Run one indicator; a too-short series yields [] instead of failing the batch."""
    try:
        return [point.to_dict() for point in compute()]
    except InsufficientData as exc:
        logger.debug(f"Skipping indicator: {exc}")
        return []


def _run_indicators(request: IndicatorsRequest) -> Dict[str, Any]:
    candles = request.candles
    return {
        "rsi": _series(lambda: MomentumIndicators.calculate_rsi(candles, request.rsi_period)),
        "macd": _series(
            lambda: TrendIndicators.calculate_macd(
                candles, request.macd_fast, request.macd_slow, request.macd_signal
            )
        ),
        "bb": _series(
            lambda: VolatilityIndicators.calculate_bollinger_bands(
                candles, request.bb_period, request.bb_std_dev
            )
        ),
        "atr": _series(lambda: VolatilityIndicators.calculate_atr(candles, request.atr_period)),
        "ema": _series(lambda: TrendIndicators.calculate_ema(candles, request.ema_period)),
    }


def _run_correlation(request: CorrelationRequest) -> Dict[str, float]:
    matrix: Dict[str, float] = {}
    for symbol_a in request.symbols:
        for symbol_b in request.symbols:
            key = f"{symbol_a}-{symbol_b}"
            if symbol_a == symbol_b:
                matrix[key] = 1.0
            elif symbol_a in request.data and symbol_b in request.data:
                matrix[key] = calculate_correlation(request.data[symbol_a], request.data[symbol_b])
            else:
                matrix[key] = 0.0
    return matrix


def _run_multi_timeframe(request: MultiTimeframeRequest) -> Dict[str, Any]:
    results = {}
    for label, candles in request.data.items():
        results[label] = {
            "rsi": _series(lambda: MomentumIndicators.calculate_rsi(candles, _PERIODS.rsi)),
            "macd": _series(
                lambda: TrendIndicators.calculate_macd(
                    candles, _PERIODS.macd_fast, _PERIODS.macd_slow, _PERIODS.macd_signal
                )
            ),
            "ema": _series(lambda: TrendIndicators.calculate_ema(candles, _PERIODS.ema)),
        }
    return results


_HANDLERS: Dict[RequestType, Callable[[Any], Any]] = {
    RequestType.CALCULATE_INDICATORS: _run_indicators,
    RequestType.CALCULATE_CORRELATION: _run_correlation,
    RequestType.CALCULATE_MULTI_TIMEFRAME: _run_multi_timeframe,
}

_missing_handlers = [t for t in RequestType if t not in _HANDLERS]
if _missing_handlers:
    raise RuntimeError(f"Worker dispatch table incomplete: {_missing_handlers}")


def execute_request(request: Request) -> Any:
    return _HANDLERS[request.request_type](request)


def result_message(request_type: RequestType, request_id: Optional[str], payload: Any) -> Dict[str, Any]:
    return {"type": request_type.result_type, "payload": payload, "id": request_id}


def error_message(request_id: Optional[str], exc: BaseException) -> Dict[str, Any]:
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {"type": ERROR_TYPE, "payload": {"message": str(exc), "stack": stack}, "id": request_id}


def handle_message(message: Mapping[str, Any]) -> Dict[str, Any]:
    """Process one request dict and build its response dict."""
    request_id = message.get("id") if isinstance(message, Mapping) else None
    try:
        if not isinstance(message, Mapping):
            raise InvalidInput(f"Request must be an object, got {type(message).__name__}")
        request = parse_request(message)
        return result_message(request.request_type, request_id, execute_request(request))
    except AnalyticsError as exc:
        logger.warning(f"Request {request_id} failed: {exc}")
        return error_message(request_id, exc)
    except Exception as exc:
        logger.exception(f"Unexpected failure handling request {request_id}")
        return error_message(request_id, exc)
