"""Bounded, rate-limit-aware envelope transport.

The Transport is the single owner of the in-flight queue:
1. Classifies each envelope by its primary item
2. Drops it immediately if the server has rate-limited that category
3. Drops it immediately if `capacity` sends are already in flight
4. Otherwise dispatches it to a worker pool, which calls the network
   executor, feeds the response to the RateLimiter and settles the Future

Delivery is at-most-once. Nothing is retried here: a failed or dropped
envelope is gone.

Thread Safety:
    send() may be called from any thread and never blocks on the network.
    Admission (capacity check + increment) happens under `_cond`, so the
    in-flight count can never exceed capacity. flush() only observes the
    count; it does not stop new sends from being admitted while draining.
    Every admitted send frees its slot exactly once: when its worker
    finishes, or when close() cancels it while still queued.
"""

from __future__ import annotations

import functools
import threading
from collections import Counter
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import structlog

from errata.contracts.enums import DataCategory, DropReason, SendStatus
from errata.contracts.errors import (
    InvalidEnvelopeError,
    NetworkError,
    RateLimitedError,
    ServerError,
    TransportError,
)
from errata.core.clock import DEFAULT_CLOCK, Clock
from errata.envelope import Envelope, serialize_envelope
from errata.transport.executors import ExecutorResponse, NetworkExecutor
from errata.transport.rate_limit import RateLimiter

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 30
DEFAULT_WORKERS = 2
ENVELOPE_CONTENT_TYPE = "application/x-sentry-envelope"


@dataclass(frozen=True, slots=True)
class TransportResult:
    """Resolved outcome of a send.

    Only SUCCESS, RATE_LIMITED (dropped before sending) and SKIPPED
    (backpressure) resolve with a result. Failures after dispatch complete
    the Future with a TransportError instead.
    """

    status: SendStatus
    category: DataCategory
    status_code: int | None = None


def _resolved(result: TransportResult) -> Future[TransportResult]:
    future: Future[TransportResult] = Future()
    future.set_result(result)
    return future


def check_response(response: ExecutorResponse) -> None:
    """Raise the TransportError matching a non-2xx status code."""
    code = response.status_code
    if 200 <= code < 300:
        return
    if code == 429:
        raise RateLimitedError("server rate limited the request", status_code=code)
    if 400 <= code < 500:
        raise InvalidEnvelopeError(f"server rejected envelope with HTTP {code}", status_code=code)
    if code >= 500:
        raise ServerError(f"server failed with HTTP {code}", status_code=code)
    raise TransportError(f"unexpected HTTP {code}", status_code=code)


class Transport:
    """Sends envelopes through a NetworkExecutor with bounded concurrency.

    Example:
        transport = Transport(HttpxExecutor(), url=dsn.envelope_url)
        future = transport.send(envelope)
        transport.flush(timeout=2.0)
        future.result().status  # SendStatus.SUCCESS
    """

    _LOG_INTERVAL = 100  # Aggregate drop warnings every N drops

    def __init__(
        self,
        executor: NetworkExecutor,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        capacity: int = DEFAULT_CAPACITY,
        max_workers: int = DEFAULT_WORKERS,
        rate_limiter: RateLimiter | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        """Initialize the transport.

        Args:
            executor: Network layer performing the actual POST
            url: Envelope endpoint
            headers: Extra request headers (auth, user agent)
            capacity: Maximum number of sends in flight at once
            max_workers: Worker threads dispatching to the executor
            rate_limiter: Shared limiter; a private one is created if omitted
            clock: Time source for rate-limit checks

        Raises:
            ValueError: If capacity or max_workers < 1.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._executor = executor
        self._url = url
        self._headers = {"Content-Type": ENVELOPE_CONTENT_TYPE, **(headers or {})}
        self._capacity = capacity
        self._clock = clock
        self._rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter(clock=clock)

        self._cond = threading.Condition()
        self._in_flight = 0
        self._closed = False
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="errata-transport")

        # Health metrics, guarded by _cond
        self._outcomes: Counter[SendStatus] = Counter()
        self._dropped: Counter[tuple[str, str]] = Counter()
        self._last_logged_drop_count = 0

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        """Number of sends currently in flight."""
        with self._cond:
            return self._in_flight

    def send(self, envelope: Envelope) -> Future[TransportResult]:
        """Queue an envelope for delivery without blocking.

        Returns:
            Future resolving to a TransportResult, or completing with a
            TransportError if the request failed after dispatch.
        """
        category = envelope.category

        if self._closed:
            return self._drop(category, SendStatus.SKIPPED, DropReason.QUEUE_OVERFLOW)

        now = self._clock.now()
        if self._rate_limiter.is_disabled(category, now):
            return self._drop(category, SendStatus.RATE_LIMITED, DropReason.RATE_LIMIT)

        envelope = self._strip_limited_items(envelope, now)
        body = serialize_envelope(envelope)

        with self._cond:
            if self._in_flight >= self._capacity:
                admitted = False
            else:
                self._in_flight += 1
                admitted = True
        if not admitted:
            return self._drop(category, SendStatus.SKIPPED, DropReason.QUEUE_OVERFLOW)

        result: Future[TransportResult] = Future()
        try:
            task = self._pool.submit(self._deliver, body, category, result)
        except RuntimeError:
            # Pool shut down between the closed check and submit
            self._settle()
            return self._drop(category, SendStatus.SKIPPED, DropReason.QUEUE_OVERFLOW)
        task.add_done_callback(functools.partial(self._skip_if_cancelled, result, category))
        return result

    def _strip_limited_items(self, envelope: Envelope, now: float) -> Envelope:
        """Remove secondary items whose own category is rate limited."""
        kept = [envelope.items[0]] if envelope.items else []
        for item in envelope.items[1:]:
            if self._rate_limiter.is_disabled(item.category, now):
                self.record_lost_event(DropReason.RATE_LIMIT, item.category)
            else:
                kept.append(item)
        if len(kept) == len(envelope.items):
            return envelope
        return Envelope(headers=envelope.headers, items=tuple(kept))

    def _deliver(self, body: bytes, category: DataCategory, result: Future[TransportResult]) -> None:
        """Worker: perform the request, resolve `result`, then free the slot."""
        try:
            if result.set_running_or_notify_cancel():
                try:
                    result.set_result(self._post(body, category))
                except TransportError as e:
                    result.set_exception(e)
                except Exception as e:
                    logger.error("envelope_delivery_crashed", category=str(category), error=str(e))
                    self._count(SendStatus.FAILED)
                    result.set_exception(TransportError(str(e)))
            else:
                self.record_lost_event(DropReason.QUEUE_OVERFLOW, category)
                self._count(SendStatus.SKIPPED)
        finally:
            self._settle()

    def _skip_if_cancelled(self, result: Future[TransportResult], category: DataCategory, task: Future[None]) -> None:
        """Settle a queued send that close() cancelled before a worker picked it up."""
        if not task.cancelled():
            return
        self._count(SendStatus.SKIPPED)
        self.record_lost_event(DropReason.QUEUE_OVERFLOW, category)
        if result.set_running_or_notify_cancel():
            result.set_result(TransportResult(status=SendStatus.SKIPPED, category=category))
        self._settle()

    def _post(self, body: bytes, category: DataCategory) -> TransportResult:
        try:
            response = self._executor.execute(body, self._headers, self._url)
        except Exception as e:
            logger.warning("envelope_send_failed", category=str(category), error=str(e))
            self.record_lost_event(DropReason.NETWORK_ERROR, category)
            self._count(SendStatus.FAILED)
            raise NetworkError(str(e)) from e

        self._rate_limiter.update(response.status_code, response.headers)
        try:
            check_response(response)
        except TransportError as e:
            logger.warning(
                "envelope_rejected",
                category=str(category),
                status_code=response.status_code,
                status=str(e.status),
            )
            self._count(e.status)
            raise
        self._count(SendStatus.SUCCESS)
        return TransportResult(status=SendStatus.SUCCESS, category=category, status_code=response.status_code)

    def _settle(self) -> None:
        with self._cond:
            self._in_flight -= 1
            self._cond.notify_all()

    def _count(self, status: SendStatus) -> None:
        with self._cond:
            self._outcomes[status] += 1

    def _drop(self, category: DataCategory, status: SendStatus, reason: DropReason) -> Future[TransportResult]:
        self._count(status)
        self.record_lost_event(reason, category)
        return _resolved(TransportResult(status=status, category=category))

    def record_lost_event(self, reason: DropReason, category: DataCategory, quantity: int = 1) -> None:
        """Count events discarded before delivery.

        Logs every drop at debug and an aggregate warning every
        _LOG_INTERVAL drops.
        """
        with self._cond:
            self._dropped[(str(reason), str(category))] += quantity
            total = sum(self._dropped.values())
            should_warn = total - self._last_logged_drop_count >= self._LOG_INTERVAL
            if should_warn:
                since_last = total - self._last_logged_drop_count
                self._last_logged_drop_count = total
        logger.debug("event_dropped", reason=str(reason), category=str(category), quantity=quantity)
        if should_warn:
            logger.warning(
                "Telemetry events dropped",
                dropped_since_last_log=since_last,
                dropped_total=total,
                capacity=self._capacity,
            )

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of delivery outcomes.

        Returns:
            sent, failed, rate_limited, skipped, in_flight, capacity and a
            `dropped` mapping of "reason:category" -> count.
        """
        with self._cond:
            return {
                "sent": self._outcomes[SendStatus.SUCCESS],
                "failed": self._outcomes[SendStatus.FAILED] + self._outcomes[SendStatus.INVALID],
                "rate_limited": self._outcomes[SendStatus.RATE_LIMITED],
                "skipped": self._outcomes[SendStatus.SKIPPED],
                "in_flight": self._in_flight,
                "capacity": self._capacity,
                "dropped": {f"{reason}:{category}": count for (reason, category), count in self._dropped.items()},
            }

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until nothing is in flight.

        Args:
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            True if the queue drained, False if the timeout elapsed first.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._in_flight == 0, timeout=timeout)

    def close(self, timeout: float | None = 2.0) -> bool:
        """Flush, then stop accepting envelopes and release the executor.

        Idempotent. If the timeout elapses first, sends still queued behind
        the workers are cancelled and resolve as SKIPPED; requests already
        running are left to finish in the background.

        Returns:
            Result of the final flush.
        """
        if self._closed:
            return self.flush(timeout=0)
        drained = self.flush(timeout=timeout)
        self._closed = True
        if not drained:
            logger.warning("transport_closed_with_pending_sends", in_flight=len(self))
        self._pool.shutdown(wait=drained, cancel_futures=not drained)
        self._executor.close()
        logger.debug("transport_closed", **self.health_metrics)
        return drained
