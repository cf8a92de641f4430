"""Types shared by every layer: enums, errors and event records."""

from errata.contracts.enums import DataCategory, DropReason, Level, SendStatus, category_for_item_type
from errata.contracts.errors import (
    EnvelopeDecodeError,
    ErrataError,
    IntegrationError,
    InvalidDsnError,
    InvalidEnvelopeError,
    NetworkError,
    RateLimitedError,
    ServerError,
    TransportError,
)
from errata.contracts.events import Attachment, Breadcrumb, Event, new_event_id

__all__ = [
    "Attachment",
    "Breadcrumb",
    "DataCategory",
    "DropReason",
    "EnvelopeDecodeError",
    "ErrataError",
    "Event",
    "IntegrationError",
    "InvalidDsnError",
    "InvalidEnvelopeError",
    "Level",
    "NetworkError",
    "RateLimitedError",
    "SendStatus",
    "ServerError",
    "TransportError",
    "category_for_item_type",
    "new_event_id",
]
