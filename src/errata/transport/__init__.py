"""Envelope delivery: bounded transport, rate limiter and network executors."""

from errata.transport.executors import ExecutorResponse, HttpxExecutor, NetworkExecutor
from errata.transport.rate_limit import RateLimiter, parse_rate_limits, parse_retry_after
from errata.transport.transport import Transport, TransportResult

__all__ = [
    "ExecutorResponse",
    "HttpxExecutor",
    "NetworkExecutor",
    "RateLimiter",
    "Transport",
    "TransportResult",
    "parse_rate_limits",
    "parse_retry_after",
]
