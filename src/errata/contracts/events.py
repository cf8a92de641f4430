"""Event-shaped records that flow through the capture pipeline.

Breadcrumb and Event are frozen: a pipeline stage that wants a different
event builds a new one with dataclasses.replace(). Container fields are
owned by the event once it is built; nothing else holds a reference to them.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from errata.contracts.enums import Level

SDK_NAME = "errata.python"
SDK_VERSION = "0.4.0"


def new_event_id() -> str:
    """Return a fresh 32-character hex event id."""
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class Breadcrumb:
    """A record of something that happened before an event was captured.

    Attributes:
        timestamp: Seconds since the epoch
        category: Dotted category such as "http" or "ui.click"
        message: Human-readable description
        level: Severity
        data: Arbitrary structured data
        type: Rendering hint ("default", "http", "navigation", ...)
    """

    timestamp: float = field(default_factory=time.time)
    category: str | None = None
    message: str | None = None
    level: Level = Level.INFO
    data: dict[str, Any] = field(default_factory=dict)
    type: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"timestamp": self.timestamp, "level": str(self.level)}
        if self.type is not None:
            payload["type"] = self.type
        if self.category is not None:
            payload["category"] = self.category
        if self.message is not None:
            payload["message"] = self.message
        if self.data:
            payload["data"] = dict(self.data)
        return payload


@dataclass(frozen=True, slots=True)
class Attachment:
    """A file carried alongside an event as its own envelope item."""

    payload: bytes
    filename: str
    content_type: str = "application/octet-stream"
    attachment_type: str = "event.attachment"

    @classmethod
    def from_text(cls, text: str, filename: str) -> "Attachment":
        return cls(payload=text.encode("utf-8"), filename=filename, content_type="text/plain")


@dataclass(frozen=True, slots=True)
class Event:
    """Snapshot of one capture, ready for serialization.

    Error events carry `exception` and/or `message`; transaction events set
    `type="transaction"` and carry `spans` and `start_timestamp`.
    """

    event_id: str
    timestamp: float
    level: Level | None = None
    message: str | None = None
    logger: str | None = None
    exception: tuple[dict[str, Any], ...] = ()
    stacktrace: dict[str, Any] | None = None
    tags: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    user: dict[str, Any] | None = None
    contexts: dict[str, dict[str, Any]] = field(default_factory=dict)
    breadcrumbs: tuple[Breadcrumb, ...] = ()
    fingerprint: tuple[str, ...] = ()
    release: str | None = None
    environment: str | None = None
    server_name: str | None = None
    transaction: str | None = None
    type: str | None = None
    spans: tuple[dict[str, Any], ...] = ()
    start_timestamp: float | None = None
    platform: str = "python"
    sdk: dict[str, str] = field(default_factory=lambda: {"name": SDK_NAME, "version": SDK_VERSION})

    @property
    def is_transaction(self) -> bool:
        return self.type == "transaction"

    @property
    def item_type(self) -> str:
        """Envelope item type this event travels as."""
        return "transaction" if self.is_transaction else "event"

    def with_changes(self, **changes: Any) -> "Event":
        return replace(self, **changes)

    def to_payload(self) -> dict[str, Any]:
        """Render the wire payload, omitting unset fields."""
        payload: dict[str, Any] = {
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "platform": self.platform,
        }
        if self.type is not None:
            payload["type"] = self.type
        if self.level is not None:
            payload["level"] = str(self.level)
        if self.message is not None:
            payload["message"] = self.message
        if self.logger is not None:
            payload["logger"] = self.logger
        if self.transaction is not None:
            payload["transaction"] = self.transaction
        if self.start_timestamp is not None:
            payload["start_timestamp"] = self.start_timestamp
        if self.exception:
            payload["exception"] = {"values": [dict(value) for value in self.exception]}
        if self.stacktrace is not None:
            payload["stacktrace"] = dict(self.stacktrace)
        if self.spans:
            payload["spans"] = [dict(span) for span in self.spans]
        if self.breadcrumbs:
            payload["breadcrumbs"] = {"values": [crumb.to_payload() for crumb in self.breadcrumbs]}
        if self.tags:
            payload["tags"] = dict(self.tags)
        if self.extra:
            payload["extra"] = dict(self.extra)
        if self.user is not None:
            payload["user"] = dict(self.user)
        if self.contexts:
            payload["contexts"] = {name: dict(ctx) for name, ctx in self.contexts.items()}
        if self.fingerprint:
            payload["fingerprint"] = list(self.fingerprint)
        for key in ("release", "environment", "server_name"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        payload["sdk"] = dict(self.sdk)
        return payload
