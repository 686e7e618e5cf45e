"""
Tests for the compute worker protocol and client.

Tests cover:
- Request parsing and wire parameter names
- Batch semantics (short series -> [], bad input -> ERROR)
- Correlation matrix
- worker_main loop with in-process queues
- ComputeWorkerClient against a real spawned worker
"""

import asyncio
import math
import queue

import pytest

from conftest import make_candles
from quant_analytics.engines.errors import InvalidInput, UnknownRequestType
from quant_analytics.engines.indicator_config import WorkerDefaults
from quant_analytics.worker import (
    ComputeWorkerClient,
    ComputeWorkerError,
    RequestType,
    handle_message,
    parse_request,
    worker_main,
)


def wave(n):
    closes = [100.0 + 0.1 * i + (3.0 if i % 3 == 0 else -2.0 if i % 3 == 1 else 0.5) for i in range(n)]
    return [c.to_dict() for c in make_candles(closes)]


def indicators_message(data, request_id="task_1", **params):
    return {"type": "CALCULATE_INDICATORS", "payload": {"data": data, **params}, "id": request_id}


# =============================================================================
# PARSING
# =============================================================================


class TestParseRequest:
    def test_wire_parameter_names(self):
        request = parse_request(indicators_message(wave(5), rsiPeriod=7, bbStdDev=1.5, emaPeriod=None))
        assert request.rsi_period == 7
        assert request.bb_std_dev == 1.5
        assert request.ema_period == 20
        assert request.request_type is RequestType.CALCULATE_INDICATORS
        assert len(request.candles) == 5

    def test_zero_period_falls_back_to_default(self):
        request = parse_request(indicators_message(wave(5), rsiPeriod=0, macdSlow=0))
        assert request.rsi_period == 14
        assert request.macd_slow == 26

    def test_negative_period_still_fails(self):
        response = handle_message(indicators_message(wave(60), rsiPeriod=-3))
        assert response["type"] == "ERROR"

    def test_unknown_type(self):
        with pytest.raises(UnknownRequestType):
            parse_request({"type": "CALCULATE_EVERYTHING", "payload": {}, "id": "x"})

    def test_malformed_candle(self):
        with pytest.raises(InvalidInput) as exc_info:
            parse_request(indicators_message([{"time": 1, "open": 1.0}]))
        assert exc_info.value.index == 0

    def test_result_type(self):
        assert RequestType.CALCULATE_CORRELATION.result_type == "CALCULATE_CORRELATION_RESULT"


# =============================================================================
# HANDLING
# =============================================================================


class TestHandleMessage:
    """Tests for handle_message, the pure worker core."""

    def test_indicator_batch(self):
        response = handle_message(indicators_message(wave(60), request_id="task_7"))

        assert response["type"] == "CALCULATE_INDICATORS_RESULT"
        assert response["id"] == "task_7"
        payload = response["payload"]
        assert set(payload) == {"rsi", "macd", "bb", "atr", "ema"}
        assert len(payload["rsi"]) == 60 - 14
        assert len(payload["macd"]) == 60 - 33
        assert len(payload["bb"]) == 60 - 19
        assert set(payload["macd"][0]) == {"time", "macd", "signal", "histogram"}
        assert set(payload["bb"][0]) == {"time", "upper", "middle", "lower"}

    def test_short_series_gives_empty_lists(self):
        response = handle_message(indicators_message(wave(10)))
        assert response["type"] == "CALCULATE_INDICATORS_RESULT"
        assert all(series == [] for series in response["payload"].values())

    def test_partial_results(self):
        response = handle_message(indicators_message(wave(25)))
        payload = response["payload"]
        assert len(payload["rsi"]) == 11
        assert payload["macd"] == []

    def test_non_finite_input_is_error(self):
        data = wave(60)
        data[3]["close"] = math.nan
        response = handle_message(indicators_message(data, request_id="bad"))

        assert response["type"] == "ERROR"
        assert response["id"] == "bad"
        assert "close" in response["payload"]["message"]
        assert response["payload"]["stack"]

    def test_unknown_type_is_error(self):
        response = handle_message({"type": "FOO", "payload": {}, "id": "t9"})
        assert response == {
            "type": "ERROR",
            "payload": {"message": "Unknown message type: FOO", "stack": response["payload"]["stack"]},
            "id": "t9",
        }

    def test_non_mapping_message(self):
        response = handle_message(["not", "a", "dict"])
        assert response["type"] == "ERROR"
        assert response["id"] is None

    def test_correlation_matrix(self):
        a = [float(i) for i in range(20)]
        response = handle_message(
            {
                "type": "CALCULATE_CORRELATION",
                "payload": {"symbols": ["A", "B", "C"], "data": {"A": a, "B": [-x for x in a]}},
                "id": "c1",
            }
        )
        matrix = response["payload"]
        assert response["type"] == "CALCULATE_CORRELATION_RESULT"
        assert len(matrix) == 9
        assert matrix["A-A"] == 1.0
        assert matrix["C-C"] == 1.0
        assert matrix["A-B"] == pytest.approx(-1.0)
        assert matrix["A-B"] == matrix["B-A"]
        assert matrix["A-C"] == 0.0

    def test_multi_timeframe(self):
        response = handle_message(
            {
                "type": "CALCULATE_MULTI_TIMEFRAME",
                "payload": {"data": {"1m": wave(60), "1h": wave(10)}},
                "id": "m1",
            }
        )
        payload = response["payload"]
        assert set(payload) == {"1m", "1h"}
        assert set(payload["1m"]) == {"rsi", "macd", "ema"}
        assert len(payload["1m"]["ema"]) == 41
        assert payload["1h"]["rsi"] == []


class TestWorkerMain:
    def test_ready_then_responses_in_order(self):
        inbox = queue.Queue()
        outbox = queue.Queue()
        inbox.put(indicators_message(wave(30), request_id="first"))
        inbox.put({"type": "NOPE", "payload": {}, "id": "second"})
        inbox.put(None)

        worker_main(inbox, outbox)

        assert outbox.get_nowait() == {"type": "READY"}
        assert outbox.get_nowait()["id"] == "first"
        second = outbox.get_nowait()
        assert second["type"] == "ERROR"
        assert second["id"] == "second"
        assert outbox.empty()


# =============================================================================
# CLIENT
# =============================================================================


class TestComputeWorkerClient:
    """Integration tests against a spawned worker process."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        async with ComputeWorkerClient(WorkerDefaults(ready_timeout_s=30)) as worker:
            assert worker.is_running
            candles = make_candles([100.0 + (i % 7) for i in range(60)])

            result, matrix = await asyncio.gather(
                worker.calculate_indicators(candles, rsiPeriod=10),
                worker.calculate_correlation(["A", "B"], {"A": [float(i) for i in range(15)], "B": [1.0] * 15}),
            )

            assert len(result["rsi"]) == 50
            assert matrix["A-A"] == 1.0
            assert matrix["A-B"] == 0.0
            assert worker.stats()["pending"] == 0

        assert not worker.is_running

    @pytest.mark.asyncio
    async def test_error_response_raises(self):
        async with ComputeWorkerClient(WorkerDefaults(ready_timeout_s=30)) as worker:
            with pytest.raises(ComputeWorkerError) as exc_info:
                await worker.execute("CALCULATE_SOMETHING", {})
            assert "Unknown message type" in str(exc_info.value)
            assert exc_info.value.request_id.startswith("task_")

            # the worker keeps serving after an error
            frames = await worker.calculate_multi_timeframe({"5m": make_candles([1.0 + i for i in range(40)])})
            assert len(frames["5m"]["rsi"]) == 26

    @pytest.mark.asyncio
    async def test_execute_before_start(self):
        with pytest.raises(ComputeWorkerError):
            await ComputeWorkerClient().execute(RequestType.CALCULATE_CORRELATION, {"symbols": [], "data": {}})
