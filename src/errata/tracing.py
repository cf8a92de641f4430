"""Manual tracing: transactions and their child spans.

A Transaction is the root span of a trace. Child spans are created with
start_child() and must be finished before the transaction; spans still
open when the transaction finishes are discarded. Finishing a transaction
captures it as a `type="transaction"` event through its hub, where the
client pipeline makes the sampling decision.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from errata.contracts.events import Event, new_event_id
from errata.core.clock import DEFAULT_CLOCK, Clock

if TYPE_CHECKING:
    from errata.hub import Hub

logger = structlog.get_logger(__name__)


def _new_span_id() -> str:
    return uuid.uuid4().hex[16:]


@dataclass(eq=False, slots=True)
class Span:
    """A timed operation inside a trace."""

    op: str | None = None
    description: str | None = None
    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    span_id: str = field(default_factory=_new_span_id)
    parent_span_id: str | None = None
    status: str | None = None
    tags: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    start_timestamp: float | None = None
    timestamp: float | None = None
    clock: Clock = field(default=DEFAULT_CLOCK, repr=False)
    _recorder: list[Span] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.start_timestamp is None:
            self.start_timestamp = self.clock.now()

    @property
    def finished(self) -> bool:
        return self.timestamp is not None

    def start_child(self, op: str | None = None, description: str | None = None) -> Span:
        """Create a span parented to this one within the same trace."""
        child = Span(
            op=op,
            description=description,
            trace_id=self.trace_id,
            parent_span_id=self.span_id,
            clock=self.clock,
            _recorder=self._recorder,
        )
        if self._recorder is not None:
            self._recorder.append(child)
        return child

    def set_tag(self, key: str, value: Any) -> None:
        self.tags[key] = value

    def set_data(self, key: str, value: Any) -> None:
        self.data[key] = value

    def set_status(self, status: str) -> None:
        self.status = status

    def finish(self, end_timestamp: float | None = None) -> None:
        if self.finished:
            return
        self.timestamp = end_timestamp if end_timestamp is not None else self.clock.now()

    def __enter__(self) -> Span:
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, tb: Any) -> None:
        if exc_type is not None and self.status is None:
            self.set_status("internal_error")
        self.finish()

    def trace_context(self) -> dict[str, Any]:
        """Context attached to events as contexts["trace"]."""
        context: dict[str, Any] = {"trace_id": self.trace_id, "span_id": self.span_id}
        if self.parent_span_id is not None:
            context["parent_span_id"] = self.parent_span_id
        if self.op is not None:
            context["op"] = self.op
        if self.status is not None:
            context["status"] = self.status
        return context

    def to_payload(self) -> dict[str, Any]:
        payload = self.trace_context()
        if self.description is not None:
            payload["description"] = self.description
        payload["start_timestamp"] = self.start_timestamp
        payload["timestamp"] = self.timestamp
        if self.tags:
            payload["tags"] = dict(self.tags)
        if self.data:
            payload["data"] = dict(self.data)
        return payload


@dataclass(eq=False, slots=True)
class Transaction(Span):
    """Root span of a trace, captured as one event when finished.

    Attributes:
        name: Transaction name shown in the event
        sampled: Explicit sampling decision; None defers to client options
        sampling_context: Extra data handed to the traces_sampler callback
    """

    name: str = "<unlabeled transaction>"
    sampled: bool | None = None
    sampling_context: dict[str, Any] = field(default_factory=dict)
    hub: Hub | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        Span.__post_init__(self)
        if self._recorder is None:
            self._recorder = []

    @property
    def spans(self) -> tuple[Span, ...]:
        return tuple(self._recorder or ())

    def to_event(self) -> Event:
        """Build the transaction event from this span tree."""
        finished = [span for span in self.spans if span.finished]
        dropped = len(self.spans) - len(finished)
        if dropped:
            logger.debug("unfinished_spans_discarded", transaction=self.name, count=dropped)
        assert self.timestamp is not None and self.start_timestamp is not None
        return Event(
            event_id=new_event_id(),
            timestamp=self.timestamp,
            type="transaction",
            transaction=self.name,
            start_timestamp=self.start_timestamp,
            spans=tuple(span.to_payload() for span in finished),
            tags=dict(self.tags),
            contexts={"trace": self.trace_context()},
        )

    def finish(self, end_timestamp: float | None = None) -> str | None:  # type: ignore[override]
        """Finish and capture the transaction.

        Returns:
            The event id handed to the hub, or None if already finished or
            no hub is bound. A transaction bound to the hub's current scope
            is unbound first.
        """
        if self.finished:
            return None
        Span.finish(self, end_timestamp)
        if self.hub is None:
            logger.debug("transaction_without_hub", transaction=self.name)
            return None
        if self.hub.scope.span is self:
            self.hub.scope.span = None
        hint = {"sampled": self.sampled, "sampling_context": self.build_sampling_context()}
        return self.hub.capture_event(self.to_event(), hint=hint)

    def build_sampling_context(self) -> dict[str, Any]:
        """Input for the traces_sampler callback."""
        return {
            "transaction_context": {
                "name": self.name,
                "op": self.op,
                "trace_id": self.trace_id,
            },
            **self.sampling_context,
        }
