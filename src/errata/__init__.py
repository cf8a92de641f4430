"""errata: a telemetry-capture client.

Application code reports errors, messages and transactions; errata merges
them with the ambient scope, serializes them into envelopes and ships them
to an ingestion endpoint without blocking, honouring server rate limits.

Usage:
    import errata

    errata.init(dsn="https://public@o1.ingest.example.com/42", release="app@1.2.0")
    errata.set_tag("region", "eu-west-1")
    try:
        risky()
    except Exception as e:
        errata.capture_exception(e)
    errata.flush(timeout=2.0)
"""

from errata.api import (
    add_breadcrumb,
    capture_event,
    capture_exception,
    capture_message,
    close,
    configure_scope,
    flush,
    init,
    last_event_id,
    push_scope,
    set_context,
    set_extra,
    set_extras,
    set_tag,
    set_tags,
    set_user,
    start_transaction,
    with_scope,
)
from errata.client import Capture, Client
from errata.contracts.enums import DataCategory, Level, SendStatus
from errata.contracts.errors import (
    ErrataError,
    InvalidDsnError,
    InvalidEnvelopeError,
    NetworkError,
    RateLimitedError,
    ServerError,
    TransportError,
)
from errata.contracts.events import Attachment, Breadcrumb, Event
from errata.core.config import ClientOptions, Dsn
from errata.hub import Hub, get_current_hub
from errata.scope import Scope
from errata.tracing import Span, Transaction

__all__ = [
    "Attachment",
    "Breadcrumb",
    "Capture",
    "Client",
    "ClientOptions",
    "DataCategory",
    "Dsn",
    "ErrataError",
    "Event",
    "Hub",
    "InvalidDsnError",
    "InvalidEnvelopeError",
    "Level",
    "NetworkError",
    "RateLimitedError",
    "Scope",
    "SendStatus",
    "ServerError",
    "Span",
    "Transaction",
    "TransportError",
    "add_breadcrumb",
    "capture_event",
    "capture_exception",
    "capture_message",
    "close",
    "configure_scope",
    "flush",
    "get_current_hub",
    "init",
    "last_event_id",
    "push_scope",
    "set_context",
    "set_extra",
    "set_extras",
    "set_tag",
    "set_tags",
    "set_user",
    "start_transaction",
    "with_scope",
]
