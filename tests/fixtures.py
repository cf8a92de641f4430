# tests/fixtures.py
"""Reusable test doubles for transport and client tests.

These doubles provide:
1. RecordingExecutor - in-memory network executor with scripted responses
2. BlockingExecutor - executor that holds every request until released
3. Helpers for building envelopes and clients wired to a fake executor
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from typing import Any

from errata.client import Client
from errata.contracts.events import Attachment, Event, new_event_id
from errata.core.clock import MockClock
from errata.core.config import ClientOptions
from errata.envelope import Envelope, EnvelopeItem, create_envelope, parse_envelope
from errata.transport.executors import ExecutorResponse
from errata.transport.transport import Transport

TEST_DSN = "https://public@ingest.example.com/42"
TEST_URL = "https://ingest.example.com/api/42/envelope/"
START_TIME = 1_700_000_000.0


class RecordingExecutor:
    """Executor that records requests and replays scripted responses.

    Each queued response is used once, in order; afterwards `default` is
    returned. A queued Exception instance is raised instead of returned.

    Example:
        executor = RecordingExecutor([ExecutorResponse(429, {"Retry-After": "10"})])
        transport = Transport(executor, TEST_URL)
    """

    def __init__(
        self,
        responses: Iterable[ExecutorResponse | Exception] = (),
        default: ExecutorResponse | None = None,
    ) -> None:
        self._responses = list(responses)
        self._default = default or ExecutorResponse(200)
        self._lock = threading.Lock()
        self.requests: list[tuple[bytes, dict[str, str], str]] = []
        self.closed = False

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.requests)

    @property
    def envelopes(self) -> list[Envelope]:
        return [parse_envelope(body) for body, _, _ in self.requests]

    def execute(self, body: bytes, headers: Mapping[str, str], url: str) -> ExecutorResponse:
        with self._lock:
            self.requests.append((body, dict(headers), url))
            response = self._responses.pop(0) if self._responses else self._default
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


class BlockingExecutor(RecordingExecutor):
    """Executor whose requests block until release() is called."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._release = threading.Event()
        self.started = threading.Event()

    def execute(self, body: bytes, headers: Mapping[str, str], url: str) -> ExecutorResponse:
        self.started.set()
        self._release.wait(timeout=10.0)
        return super().execute(body, headers, url)

    def release(self) -> None:
        self._release.set()


def make_event(**fields: Any) -> Event:
    fields.setdefault("timestamp", START_TIME)
    return Event(event_id=fields.pop("event_id", new_event_id()), **fields)


def make_envelope(item_type: str = "event", *, extra_items: Iterable[EnvelopeItem] = ()) -> Envelope:
    """Envelope whose primary item has the given type."""
    event_id = new_event_id()
    return create_envelope(
        {"event_id": event_id, "sent_at": "2023-11-14T22:13:20Z"},
        [EnvelopeItem(headers={"type": item_type}, payload={"event_id": event_id}), *extra_items],
    )


def attachment_item(payload: bytes = b"log line 1\nlog line 2\n") -> EnvelopeItem:
    return EnvelopeItem.for_attachment(Attachment(payload=payload, filename="app.log", content_type="text/plain"))


def make_client(
    executor: RecordingExecutor | None = None,
    *,
    clock: MockClock | None = None,
    capacity: int = 30,
    **options: Any,
) -> tuple[Client, RecordingExecutor]:
    """Client wired to a fake executor; default integrations are off."""
    executor = executor if executor is not None else RecordingExecutor()
    clock = clock if clock is not None else MockClock(start=START_TIME)
    options.setdefault("dsn", TEST_DSN)
    options.setdefault("default_integrations", False)
    options.setdefault("server_name", "test-host")
    transport = Transport(executor, TEST_URL, capacity=capacity, clock=clock)
    client = Client(ClientOptions(**options), transport=transport, clock=clock)
    return client, executor
