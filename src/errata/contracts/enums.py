"""Enumerations shared across the capture pipeline and the transport.

All enums use StrEnum so members serialize directly into wire payloads
and compare equal to their string values.
"""

from enum import StrEnum


class Level(StrEnum):
    """Severity of an event or breadcrumb."""

    FATAL = "fatal"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"


class DataCategory(StrEnum):
    """Rate-limit accounting categories.

    ALL is the wildcard: a limit recorded for it disables every category.
    """

    ALL = "all"
    DEFAULT = "default"
    ERROR = "error"
    TRANSACTION = "transaction"
    ATTACHMENT = "attachment"
    SESSION = "session"
    SECURITY = "security"
    INTERNAL = "internal"


class SendStatus(StrEnum):
    """Outcome of a single Transport.send() call."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    SKIPPED = "skipped"
    INVALID = "invalid"
    FAILED = "failed"


class DropReason(StrEnum):
    """Why an event never reached the network."""

    EVENT_PROCESSOR = "event_processor"
    SAMPLE_RATE = "sample_rate"
    BEFORE_SEND = "before_send"
    RATE_LIMIT = "ratelimit_backoff"
    QUEUE_OVERFLOW = "queue_overflow"
    NETWORK_ERROR = "network_error"


# Item type -> rate-limit category. Unknown item types fall back to DEFAULT.
ITEM_TYPE_CATEGORIES: dict[str, DataCategory] = {
    "event": DataCategory.ERROR,
    "transaction": DataCategory.TRANSACTION,
    "attachment": DataCategory.ATTACHMENT,
    "session": DataCategory.SESSION,
    "sessions": DataCategory.SESSION,
    "client_report": DataCategory.INTERNAL,
    "security": DataCategory.SECURITY,
}


def category_for_item_type(item_type: str) -> DataCategory:
    """Map an envelope item type onto its rate-limit category."""
    return ITEM_TYPE_CATEGORIES.get(item_type, DataCategory.DEFAULT)
