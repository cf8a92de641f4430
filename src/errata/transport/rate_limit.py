"""Per-category rate limiting driven by server response headers.

The limiter is a table of category -> absolute deadline (epoch seconds).
A category is disabled while its own deadline or the wildcard "all"
deadline lies in the future. Every response feeds update(); the server is
the source of truth, so the most recent value for a category replaces the
previous one even when it is shorter.

Header formats:
- ``X-Sentry-Rate-Limits``: comma-separated groups
  ``<delay_seconds>:<category;category;...>:<scope>[:<reason>]``.
  An empty category list means every category.
- ``Retry-After``: delay in seconds or an HTTP date. Applies to every
  category and is consulted only when the richer header is absent.

A 429 carrying neither header disables everything for 60 seconds.

Thread Safety:
    The table is owned by one RateLimiter and guarded by its lock. Reads
    and whole-response updates are atomic with respect to each other.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Mapping, Sequence
from email.utils import parsedate_to_datetime

import structlog

from errata.contracts.enums import DataCategory
from errata.core.clock import DEFAULT_CLOCK, Clock

logger = structlog.get_logger(__name__)

DEFAULT_RETRY_AFTER = 60.0

RATE_LIMITS_HEADER = "x-sentry-rate-limits"
RETRY_AFTER_HEADER = "retry-after"

HeaderValue = str | Sequence[str]


def _get_header(headers: Mapping[str, HeaderValue], name: str) -> str | None:
    """Case-insensitive header lookup; repeated headers are comma-joined."""
    for key, value in headers.items():
        if key.lower() == name:
            if isinstance(value, str):
                return value
            return ",".join(value)
    return None


def parse_retry_after(value: str, now: float) -> float:
    """Return the delay in seconds expressed by a Retry-After value.

    Accepts delta-seconds or an HTTP date. Unparseable values fall back to
    DEFAULT_RETRY_AFTER.
    """
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if math.isfinite(seconds) and seconds >= 0:
            return seconds
        return DEFAULT_RETRY_AFTER

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER
    if retry_at is None:
        return DEFAULT_RETRY_AFTER
    return max(retry_at.timestamp() - now, 0.0)


def parse_rate_limits(value: str, now: float) -> dict[str, float]:
    """Parse an X-Sentry-Rate-Limits value into category deadlines.

    Malformed groups are skipped one at a time; the remaining groups are
    still applied.

    Example:
        >>> parse_rate_limits("60:error:organization,2700::organization", now=0.0)
        {'error': 60.0, 'all': 2700.0}
    """
    limits: dict[str, float] = {}
    for raw_group in value.split(","):
        group = raw_group.strip()
        if not group:
            continue
        parts = group.split(":")
        try:
            delay = float(parts[0])
        except ValueError:
            logger.debug("rate_limit_group_skipped", group=group, reason="non-numeric delay")
            continue
        if not math.isfinite(delay) or delay < 0:
            logger.debug("rate_limit_group_skipped", group=group, reason="invalid delay")
            continue

        categories = [c.strip() for c in parts[1].split(";")] if len(parts) > 1 else []
        categories = [c for c in categories if c]
        deadline = now + delay
        if not categories:
            limits[DataCategory.ALL.value] = deadline
            continue
        for category in categories:
            limits[category] = deadline
    return limits


class RateLimiter:
    """Tracks which categories the server has told us to stop sending.

    Example:
        limiter = RateLimiter()
        limiter.update(200, {"X-Sentry-Rate-Limits": "60:transaction:key"})
        limiter.is_disabled(DataCategory.TRANSACTION)  # True for 60 seconds
    """

    def __init__(self, clock: Clock = DEFAULT_CLOCK) -> None:
        self._clock = clock
        self._limits: dict[str, float] = {}
        self._lock = threading.Lock()

    def is_disabled(self, category: str, now: float | None = None) -> bool:
        """True while `category` or the wildcard is limited."""
        if now is None:
            now = self._clock.now()
        with self._lock:
            return self._disabled_until_locked(category) > now

    def disabled_until(self, category: str) -> float:
        """Deadline after which `category` may be sent again (0.0 if never limited)."""
        with self._lock:
            return self._disabled_until_locked(category)

    def _disabled_until_locked(self, category: str) -> float:
        return max(
            self._limits.get(str(category), 0.0),
            self._limits.get(DataCategory.ALL.value, 0.0),
        )

    def update(
        self,
        status_code: int | None,
        headers: Mapping[str, HeaderValue],
        now: float | None = None,
    ) -> dict[str, float]:
        """Apply the limits carried by one response.

        Successful responses are parsed too: servers may announce limits
        before they start rejecting.

        Args:
            status_code: HTTP status of the response
            headers: Response headers, matched case-insensitively
            now: Reference time; defaults to the limiter's clock

        Returns:
            The category deadlines applied by this response.
        """
        if now is None:
            now = self._clock.now()

        rate_limits = _get_header(headers, RATE_LIMITS_HEADER)
        retry_after = _get_header(headers, RETRY_AFTER_HEADER)

        if rate_limits is not None:
            applied = parse_rate_limits(rate_limits, now)
        elif retry_after is not None:
            applied = {DataCategory.ALL.value: now + parse_retry_after(retry_after, now)}
        elif status_code == 429:
            applied = {DataCategory.ALL.value: now + DEFAULT_RETRY_AFTER}
        else:
            applied = {}

        if applied:
            with self._lock:
                self._limits.update(applied)
            logger.debug("rate_limits_updated", status_code=status_code, limits=applied)
        return applied

    def snapshot(self) -> dict[str, float]:
        """Copy of the current table."""
        with self._lock:
            return dict(self._limits)

    def clear(self) -> None:
        with self._lock:
            self._limits.clear()
