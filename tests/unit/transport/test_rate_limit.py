"""Tests for rate-limit header parsing and the RateLimiter table."""

from email.utils import formatdate

import pytest

from errata.contracts.enums import DataCategory
from errata.core.clock import MockClock
from errata.transport.rate_limit import (
    DEFAULT_RETRY_AFTER,
    RateLimiter,
    parse_rate_limits,
    parse_retry_after,
)
from tests.fixtures import START_TIME

# =============================================================================
# Header parsing
# =============================================================================


class TestParseRateLimits:
    """Tests for X-Sentry-Rate-Limits parsing."""

    def test_multiple_groups(self) -> None:
        """Each group applies its delay to each of its categories."""
        limits = parse_rate_limits("60:error;transaction:organization, 2700::key", now=100.0)

        assert limits == {"error": 160.0, "transaction": 160.0, "all": 2800.0}

    def test_empty_category_list_means_all(self) -> None:
        assert parse_rate_limits("30::organization", now=0.0) == {"all": 30.0}

    def test_reason_field_is_ignored(self) -> None:
        """A trailing reason code does not affect the parsed limit."""
        assert parse_rate_limits("10:error:key:quota_exceeded", now=0.0) == {"error": 10.0}

    def test_fractional_delay(self) -> None:
        assert parse_rate_limits("1.5:error:key", now=0.0) == {"error": 1.5}

    @pytest.mark.parametrize(
        "malformed",
        [
            pytest.param("abc:error:org", id="non-numeric"),
            pytest.param("-5:error:org", id="negative"),
            pytest.param("inf:error:org", id="infinite"),
            pytest.param("nan:error:org", id="nan"),
        ],
    )
    def test_malformed_group_skipped_others_applied(self, malformed: str) -> None:
        """A bad group does not prevent the valid ones from applying."""
        limits = parse_rate_limits(f"{malformed},30:transaction:key", now=0.0)

        assert limits == {"transaction": 30.0}

    def test_blank_value(self) -> None:
        assert parse_rate_limits(" , ", now=0.0) == {}


class TestParseRetryAfter:
    """Tests for Retry-After parsing."""

    def test_delta_seconds(self) -> None:
        assert parse_retry_after("120", now=START_TIME) == 120.0

    def test_http_date(self) -> None:
        """An HTTP date is converted into a delay relative to now."""
        value = formatdate(START_TIME + 30, usegmt=True)

        assert parse_retry_after(value, now=START_TIME) == pytest.approx(30.0)

    def test_http_date_in_past_is_zero(self) -> None:
        value = formatdate(START_TIME - 30, usegmt=True)

        assert parse_retry_after(value, now=START_TIME) == 0.0

    @pytest.mark.parametrize("value", ["soon", "", "-10"])
    def test_unparseable_falls_back_to_default(self, value: str) -> None:
        assert parse_retry_after(value, now=START_TIME) == DEFAULT_RETRY_AFTER


# =============================================================================
# RateLimiter
# =============================================================================


class TestRateLimiter:
    """Tests for the category -> deadline table."""

    @pytest.fixture
    def limiter(self, clock: MockClock) -> RateLimiter:
        return RateLimiter(clock=clock)

    def test_fresh_limiter_allows_everything(self, limiter: RateLimiter) -> None:
        assert not limiter.is_disabled(DataCategory.ERROR)
        assert limiter.disabled_until(DataCategory.ERROR) == 0.0

    def test_bare_429_disables_all_for_default(self, limiter: RateLimiter, clock: MockClock) -> None:
        """A 429 without headers disables every category for 60 seconds."""
        limiter.update(429, {})

        assert limiter.is_disabled(DataCategory.ERROR)
        assert limiter.is_disabled(DataCategory.TRANSACTION)
        assert limiter.disabled_until(DataCategory.ERROR) == START_TIME + DEFAULT_RETRY_AFTER

    def test_limit_expires(self, limiter: RateLimiter, clock: MockClock) -> None:
        """A category is usable again once its deadline has passed."""
        limiter.update(429, {"Retry-After": "10"})

        clock.advance(9.5)
        assert limiter.is_disabled(DataCategory.ERROR)
        clock.advance(0.5)
        assert not limiter.is_disabled(DataCategory.ERROR)

    def test_category_limit_leaves_others_enabled(self, limiter: RateLimiter) -> None:
        limiter.update(429, {"X-Sentry-Rate-Limits": "60:transaction:key"})

        assert limiter.is_disabled(DataCategory.TRANSACTION)
        assert not limiter.is_disabled(DataCategory.ERROR)

    def test_successful_response_updates_table(self, limiter: RateLimiter) -> None:
        """2xx responses may announce limits proactively."""
        applied = limiter.update(200, {"x-sentry-rate-limits": "60:error:key"})

        assert applied == {"error": START_TIME + 60}
        assert limiter.is_disabled(DataCategory.ERROR)

    def test_rate_limits_header_takes_precedence(self, limiter: RateLimiter) -> None:
        """Retry-After is ignored when the richer header is present."""
        limiter.update(429, {"X-Sentry-Rate-Limits": "60:error:key", "Retry-After": "3600"})

        assert limiter.snapshot() == {"error": START_TIME + 60}

    def test_header_names_are_case_insensitive(self, limiter: RateLimiter) -> None:
        limiter.update(429, {"X-SENTRY-RATE-LIMITS": "60:error:key"})

        assert limiter.is_disabled(DataCategory.ERROR)

    def test_repeated_header_values_are_combined(self, limiter: RateLimiter) -> None:
        """A header received several times is treated as one comma-joined value."""
        limiter.update(429, {"x-sentry-rate-limits": ["60:error:key", "120:transaction:key"]})

        assert limiter.snapshot() == {"error": START_TIME + 60, "transaction": START_TIME + 120}

    def test_last_response_wins_even_when_shorter(self, limiter: RateLimiter) -> None:
        """The server is the source of truth; a shorter limit replaces a longer one."""
        limiter.update(429, {"Retry-After": "600"})
        limiter.update(429, {"Retry-After": "10"})

        assert limiter.disabled_until(DataCategory.ERROR) == START_TIME + 10

    def test_wildcard_and_category_combine(self, limiter: RateLimiter, clock: MockClock) -> None:
        """The effective deadline is the later of category and wildcard."""
        limiter.update(429, {"X-Sentry-Rate-Limits": "100:error:key,10::key"})

        clock.advance(50)
        assert limiter.is_disabled(DataCategory.ERROR)
        assert not limiter.is_disabled(DataCategory.TRANSACTION)

    def test_error_without_headers_changes_nothing(self, limiter: RateLimiter) -> None:
        assert limiter.update(500, {}) == {}
        assert limiter.snapshot() == {}

    def test_clear(self, limiter: RateLimiter) -> None:
        limiter.update(429, {})
        limiter.clear()

        assert not limiter.is_disabled(DataCategory.ERROR)
