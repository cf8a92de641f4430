"""Envelope model and newline-delimited wire codec.

Wire layout::

    <envelope header json>\\n
    <item header json>\\n
    <item payload>\\n
    ...

Structured payloads are written as single-line JSON. Binary payloads are
written raw and delimited by the `length` field of their item header, so
they may contain newlines.

Encoding is deterministic: JSON is written with fixed separators and the
insertion order of the header dicts, which every builder in this module
populates in a fixed order.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from errata.contracts.enums import DataCategory, category_for_item_type
from errata.contracts.errors import EnvelopeDecodeError
from errata.contracts.events import Attachment, Event

_NEWLINE = b"\n"


def _json_fallback(obj: Any) -> Any:
    """Coerce values the stdlib encoder rejects into JSON-safe stand-ins."""
    if isinstance(obj, datetime | date):
        return obj.isoformat()
    if isinstance(obj, set | frozenset):
        return sorted(obj, key=repr)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    return repr(obj)


def dump_json(obj: Any) -> bytes:
    """Serialize to compact single-line UTF-8 JSON."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False, default=_json_fallback).encode("utf-8")


def format_timestamp(value: float) -> str:
    """Render epoch seconds as an ISO-8601 UTC timestamp."""
    return datetime.fromtimestamp(value, tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class EnvelopeItem:
    """One typed record inside an envelope.

    `payload` is either raw bytes (written length-delimited) or any
    JSON-serializable object (written as one JSON line).
    """

    headers: dict[str, Any]
    payload: Any

    @property
    def type(self) -> str:
        return str(self.headers.get("type", ""))

    @property
    def category(self) -> DataCategory:
        return category_for_item_type(self.type)

    @classmethod
    def for_event(cls, event: Event) -> EnvelopeItem:
        return cls(headers={"type": event.item_type}, payload=event.to_payload())

    @classmethod
    def for_attachment(cls, attachment: Attachment) -> EnvelopeItem:
        headers = {
            "type": "attachment",
            "length": len(attachment.payload),
            "filename": attachment.filename,
            "content_type": attachment.content_type,
            "attachment_type": attachment.attachment_type,
        }
        return cls(headers=headers, payload=attachment.payload)


@dataclass(frozen=True, slots=True)
class Envelope:
    """Header plus ordered items. The first item decides the category."""

    headers: dict[str, Any]
    items: tuple[EnvelopeItem, ...] = field(default_factory=tuple)

    @property
    def event_id(self) -> str | None:
        return self.headers.get("event_id")

    @property
    def category(self) -> DataCategory:
        """Rate-limit category of the primary (first) item."""
        if not self.items:
            return DataCategory.DEFAULT
        return self.items[0].category

    def add_item(self, item: EnvelopeItem) -> Envelope:
        return Envelope(headers=self.headers, items=(*self.items, item))


def create_envelope(
    headers: Mapping[str, Any],
    items: Iterable[EnvelopeItem] = (),
) -> Envelope:
    return Envelope(headers=dict(headers), items=tuple(items))


def envelope_from_event(
    event: Event,
    *,
    sent_at: float,
    attachments: Iterable[Attachment] = (),
    dsn: str | None = None,
) -> Envelope:
    """Wrap an event and its attachments, event item first.

    Args:
        event: Finished event; becomes the primary item
        sent_at: Epoch seconds recorded as the envelope's sent_at
        attachments: Extra items appended after the event
        dsn: Optional routing hint for relays
    """
    headers: dict[str, Any] = {"event_id": event.event_id, "sent_at": format_timestamp(sent_at)}
    if dsn is not None:
        headers["dsn"] = dsn
    items = [EnvelopeItem.for_event(event)]
    items.extend(EnvelopeItem.for_attachment(attachment) for attachment in attachments)
    return Envelope(headers=headers, items=tuple(items))


def serialize_envelope(envelope: Envelope) -> bytes:
    """Encode an envelope into wire bytes."""
    parts = [dump_json(envelope.headers)]
    for item in envelope.items:
        if isinstance(item.payload, bytes | bytearray):
            payload = bytes(item.payload)
            headers = {**item.headers, "length": len(payload)}
        else:
            payload = dump_json(item.payload)
            headers = item.headers
        parts.append(dump_json(headers))
        parts.append(payload)
    return _NEWLINE.join(parts) + _NEWLINE


class _Reader:
    """Cursor over envelope bytes."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def exhausted(self) -> bool:
        return self._pos >= len(self._data)

    def read_line(self) -> bytes:
        end = self._data.find(_NEWLINE, self._pos)
        if end == -1:
            end = len(self._data)
        line = self._data[self._pos : end]
        self._pos = end + 1
        return line

    def read_exact(self, length: int) -> bytes:
        end = self._pos + length
        if end > len(self._data):
            raise EnvelopeDecodeError(f"Item declares length {length} but only {len(self._data) - self._pos} bytes remain")
        chunk = self._data[self._pos : end]
        self._pos = end
        # Payload is followed by a newline unless it is the last thing in the stream
        if not self.exhausted:
            if self._data[self._pos : self._pos + 1] != _NEWLINE:
                raise EnvelopeDecodeError("Length-delimited payload is not followed by a newline")
            self._pos += 1
        return chunk


def _load_json_object(line: bytes, what: str) -> dict[str, Any]:
    try:
        value = json.loads(line)
    except ValueError as e:
        raise EnvelopeDecodeError(f"{what} is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise EnvelopeDecodeError(f"{what} must be a JSON object, got {type(value).__name__}")
    return value


def parse_envelope(data: bytes) -> Envelope:
    """Decode wire bytes into an Envelope.

    Only structure is validated: headers must be JSON objects and declared
    lengths must fit. Payload contents are not checked against any schema.

    Raises:
        EnvelopeDecodeError: If the bytes are not a well-formed envelope.
    """
    reader = _Reader(data)
    if reader.exhausted:
        raise EnvelopeDecodeError("Envelope is empty")
    headers = _load_json_object(reader.read_line(), "Envelope header")

    items: list[EnvelopeItem] = []
    while not reader.exhausted:
        line = reader.read_line()
        if not line.strip():
            # tolerate trailing blank lines
            continue
        item_headers = _load_json_object(line, "Item header")
        length = item_headers.get("length")
        if length is not None:
            if not isinstance(length, int) or isinstance(length, bool) or length < 0:
                raise EnvelopeDecodeError(f"Item length must be a non-negative integer, got {length!r}")
            payload: Any = reader.read_exact(length)
        else:
            payload_line = reader.read_line()
            try:
                payload = json.loads(payload_line)
            except ValueError as e:
                raise EnvelopeDecodeError(f"Item payload without length is not valid JSON: {e}") from e
        items.append(EnvelopeItem(headers=item_headers, payload=payload))

    return Envelope(headers=headers, items=tuple(items))
