"""
Compute worker process and its asyncio client.

The worker runs in a separate process and talks to the caller only through
two multiprocessing queues carrying protocol dicts. It announces READY
once, then answers requests strictly in arrival order.

The client correlates responses to requests by id, so many requests can be
in flight at once:

    async with ComputeWorkerClient() as worker:
        result = await worker.calculate_indicators(candles, rsiPeriod=14)
"""

import asyncio
import itertools
import logging
import multiprocessing
import threading
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..continuous.data_types import Candle
from ..engines.errors import AnalyticsError
from ..engines.indicator_config import DEFAULT_CONFIG, WorkerDefaults
from ..logging_config import setup_logging
from .protocol import ERROR_TYPE, READY_TYPE, RequestType, handle_message

logger = logging.getLogger(__name__)

_STOP = None  # queue sentinel


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================


class ComputeWorkerError(AnalyticsError):
    """Raised when the worker answers a request with an ERROR message."""

    def __init__(self, message: str, request_id: Optional[str] = None, stack: str = ""):
        self.request_id = request_id
        self.stack = stack
        super().__init__(message)


class WorkerTimeoutError(ComputeWorkerError):
    """Raised when no response arrives within the request timeout."""

    def __init__(self, request_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(f"Worker request {request_id} timed out after {timeout}s", request_id)


# =============================================================================
# WORKER SIDE
# =============================================================================


def worker_main(
    inbox: "multiprocessing.Queue",
    outbox: "multiprocessing.Queue",
    log_level: Optional[str] = None,
) -> None:
    """Worker process entry point: READY, then one response per request until the sentinel."""
    if log_level:
        setup_logging(level=log_level)
    outbox.put({"type": READY_TYPE})
    while True:
        message = inbox.get()
        if message is _STOP:
            break
        outbox.put(handle_message(message))


# =============================================================================
# CLIENT SIDE
# =============================================================================


def _candles_to_wire(candles: Iterable[Union[Candle, Mapping[str, Any]]]) -> List[Dict[str, Any]]:
    return [c.to_dict() if isinstance(c, Candle) else dict(c) for c in candles]


class ComputeWorkerClient:
    """
    Async front end for a worker process.

    Owns the process, both queues and a reader thread that hands responses
    back to the event loop.
    """

    def __init__(
        self,
        config: Optional[WorkerDefaults] = None,
        start_method: str = "spawn",
    ):
        self.config = config or DEFAULT_CONFIG.worker
        self._ctx = multiprocessing.get_context(start_method)
        self._process = None
        self._inbox = None
        self._outbox = None
        self._reader: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ready: Optional[asyncio.Event] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._counter = itertools.count(1)

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.is_alive()

    async def start(self) -> None:
        """Spawn the worker and wait for its READY message."""
        if self._process is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._ready = asyncio.Event()
        self._inbox = self._ctx.Queue()
        self._outbox = self._ctx.Queue()
        self._process = self._ctx.Process(
            target=worker_main,
            args=(self._inbox, self._outbox, self.config.log_level),
            name="quant-compute-worker",
            daemon=True,
        )
        self._process.start()

        self._reader = threading.Thread(target=self._read_responses, name="quant-worker-reader", daemon=True)
        self._reader.start()

        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.config.ready_timeout_s)
        except asyncio.TimeoutError:
            await self.close()
            raise ComputeWorkerError(f"Worker not ready after {self.config.ready_timeout_s}s") from None
        logger.info(f"Compute worker started (pid {self._process.pid})")

    def _read_responses(self) -> None:
        while True:
            message = self._outbox.get()
            if message is _STOP:
                return
            self._loop.call_soon_threadsafe(self._on_message, message)

    def _on_message(self, message: Dict[str, Any]) -> None:
        message_type = message.get("type")
        if message_type == READY_TYPE:
            self._ready.set()
            return

        request_id = message.get("id")
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            logger.debug(f"Dropping response for unknown or expired request {request_id}")
            return

        payload = message.get("payload")
        if message_type == ERROR_TYPE:
            payload = payload or {}
            future.set_exception(
                ComputeWorkerError(payload.get("message", "worker error"), request_id, payload.get("stack", ""))
            )
        else:
            future.set_result(payload)

    def _next_id(self) -> str:
        return f"task_{next(self._counter)}_{int(time.time() * 1000)}"

    async def execute(
        self,
        request_type: Union[RequestType, str],
        payload: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> Any:
        """Send one request and await its result payload."""
        if self._process is None:
            raise ComputeWorkerError("Worker not started")
        if timeout is None:
            timeout = self.config.request_timeout_s

        type_value = request_type.value if isinstance(request_type, RequestType) else str(request_type)
        request_id = self._next_id()
        future = self._loop.create_future()
        self._pending[request_id] = future
        self._inbox.put({"type": type_value, "payload": dict(payload), "id": request_id})

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            self._pending.pop(request_id, None)
            raise WorkerTimeoutError(request_id, timeout) from None

    async def calculate_indicators(
        self,
        candles: Sequence[Union[Candle, Mapping[str, Any]]],
        **periods: Any,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Indicator suite; `periods` use wire names (rsiPeriod, macdFast, ...)."""
        payload = {"data": _candles_to_wire(candles), **periods}
        return await self.execute(RequestType.CALCULATE_INDICATORS, payload)

    async def calculate_correlation(
        self,
        symbols: Sequence[str],
        data: Mapping[str, Sequence[float]],
    ) -> Dict[str, float]:
        payload = {"symbols": list(symbols), "data": {k: list(v) for k, v in data.items()}}
        return await self.execute(RequestType.CALCULATE_CORRELATION, payload)

    async def calculate_multi_timeframe(
        self,
        data: Mapping[str, Sequence[Union[Candle, Mapping[str, Any]]]],
    ) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        payload = {"data": {label: _candles_to_wire(series) for label, series in data.items()}}
        return await self.execute(RequestType.CALCULATE_MULTI_TIMEFRAME, payload)

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "pending": len(self._pending),
            "pid": self._process.pid if self._process is not None else None,
        }

    async def close(self) -> None:
        """Stop the worker and fail any request still waiting."""
        if self._process is None:
            return
        process, self._process = self._process, None

        self._inbox.put(_STOP)
        await self._loop.run_in_executor(None, process.join, self.config.shutdown_timeout_s)
        if process.is_alive():
            logger.warning("Compute worker did not exit, terminating")
            process.terminate()
            await self._loop.run_in_executor(None, process.join, self.config.shutdown_timeout_s)

        self._outbox.put(_STOP)
        await self._loop.run_in_executor(None, self._reader.join, self.config.shutdown_timeout_s)

        for request_id, future in self._pending.items():
            if not future.done():
                future.set_exception(ComputeWorkerError("Worker closed", request_id))
        self._pending.clear()
        logger.info("Compute worker stopped")

    async def __aenter__(self) -> "ComputeWorkerClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
