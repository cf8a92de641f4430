"""Drop an error event that repeats the one captured just before it."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from errata.contracts.events import Event

if TYPE_CHECKING:
    from errata.client import Client

logger = structlog.get_logger(__name__)


def _signature(event: Event) -> tuple[Any, ...] | None:
    """Comparable identity of an error event, or None if not comparable."""
    if event.is_transaction:
        return None
    exception = tuple(
        (value.get("type"), value.get("value"), repr(value.get("stacktrace"))) for value in event.exception
    )
    if not exception and event.message is None:
        return None
    return (event.message, exception, event.fingerprint)


class DedupeIntegration:
    """Suppresses back-to-back duplicates of the same error.

    Two events are duplicates when their message, exception types, values
    and stack traces, and fingerprint all match.
    """

    identifier = "dedupe"

    def __init__(self) -> None:
        self._previous: tuple[Any, ...] | None = None

    def install(self, client: Client) -> None:
        client.add_event_processor(self.process)

    def process(self, event: Event) -> Event | None:
        signature = _signature(event)
        if signature is None:
            return event
        if signature == self._previous:
            logger.debug("duplicate_event_dropped", event_id=event.event_id)
            return None
        self._previous = signature
        return event
