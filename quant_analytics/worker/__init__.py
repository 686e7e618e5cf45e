"""Compute worker: message protocol and process client."""

from .process import ComputeWorkerClient, ComputeWorkerError, WorkerTimeoutError, worker_main
from .protocol import RequestType, handle_message, parse_request

__all__ = [
    "ComputeWorkerClient",
    "ComputeWorkerError",
    "WorkerTimeoutError",
    "worker_main",
    "RequestType",
    "handle_message",
    "parse_request",
]
