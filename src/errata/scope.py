"""Scope: the ambient context applied to events captured while it is current.

A Scope holds breadcrumbs, tags, extra data, the user, named contexts, the
active span, a fingerprint override, attachments and event processors.
Scopes are cloned whenever the Hub pushes a new frame; a clone shares no
mutable containers with its parent, so mutations on either side after the
clone never leak across.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from errata.contracts.enums import Level
from errata.contracts.events import Attachment, Breadcrumb, Event

if TYPE_CHECKING:
    from errata.tracing import Span

logger = structlog.get_logger(__name__)

DEFAULT_MAX_BREADCRUMBS = 100

EventProcessor = Callable[[Event], Event | None]


def copy_structure(value: Any) -> Any:
    """Copy nested dicts, lists, sets and tuples; leaf objects are shared."""
    if isinstance(value, dict):
        return {key: copy_structure(item) for key, item in value.items()}
    if isinstance(value, list):
        return [copy_structure(item) for item in value]
    if isinstance(value, tuple):
        return tuple(copy_structure(item) for item in value)
    if isinstance(value, set):
        return {copy_structure(item) for item in value}
    return value


def run_event_processors(event: Event, processors: Iterable[EventProcessor]) -> Event | None:
    """Run processors in order; None (or a raising processor) drops the event."""
    for processor in processors:
        try:
            result = processor(event)
        except Exception as e:
            logger.warning(
                "event_processor_failed",
                processor=getattr(processor, "__qualname__", repr(processor)),
                event_id=event.event_id,
                error=str(e),
            )
            return None
        if result is None:
            logger.debug(
                "event_dropped_by_processor",
                processor=getattr(processor, "__qualname__", repr(processor)),
                event_id=event.event_id,
            )
            return None
        event = result
    return event


class Scope:
    """Mutable context bundle owned by one Hub frame.

    Breadcrumbs live in a deque(maxlen=N): appends are O(1) and the oldest
    entry is evicted once the scope holds N breadcrumbs.

    Example:
        scope = Scope()
        scope.set_tag("region", "eu")
        scope.add_breadcrumb(Breadcrumb(timestamp=time.time(), message="clicked"))
        child = scope.clone()
        child.set_tag("region", "us")
        scope.tags["region"]  # still "eu"
    """

    def __init__(self, max_breadcrumbs: int = DEFAULT_MAX_BREADCRUMBS) -> None:
        if max_breadcrumbs < 0:
            raise ValueError(f"max_breadcrumbs must be >= 0, got {max_breadcrumbs}")
        self._breadcrumbs: deque[Breadcrumb] = deque(maxlen=max_breadcrumbs)
        self._tags: dict[str, Any] = {}
        self._extra: dict[str, Any] = {}
        self._user: dict[str, Any] | None = None
        self._contexts: dict[str, dict[str, Any]] = {}
        self._level: Level | None = None
        self._fingerprint: tuple[str, ...] = ()
        self._transaction_name: str | None = None
        self._span: Span | None = None
        self._event_processors: list[EventProcessor] = []
        self._attachments: list[Attachment] = []

    def clone(self) -> Scope:
        """Return a structurally independent copy of this scope."""
        clone = Scope(max_breadcrumbs=self.max_breadcrumbs)
        clone._breadcrumbs.extend(self._breadcrumbs)
        clone._tags = copy_structure(self._tags)
        clone._extra = copy_structure(self._extra)
        clone._user = copy_structure(self._user)
        clone._contexts = copy_structure(self._contexts)
        clone._level = self._level
        clone._fingerprint = self._fingerprint
        clone._transaction_name = self._transaction_name
        clone._span = self._span
        clone._event_processors = list(self._event_processors)
        clone._attachments = list(self._attachments)
        return clone

    __copy__ = clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Scope):
            return NotImplemented
        return self._state() == other._state()

    __hash__ = None  # type: ignore[assignment]

    def _state(self) -> tuple[Any, ...]:
        return (
            self.max_breadcrumbs,
            list(self._breadcrumbs),
            self._tags,
            self._extra,
            self._user,
            self._contexts,
            self._level,
            self._fingerprint,
            self._transaction_name,
            self._span,
            self._event_processors,
            self._attachments,
        )

    # -- read access -------------------------------------------------------

    @property
    def max_breadcrumbs(self) -> int:
        maxlen = self._breadcrumbs.maxlen
        assert maxlen is not None  # always constructed bounded
        return maxlen

    @property
    def breadcrumbs(self) -> tuple[Breadcrumb, ...]:
        return tuple(self._breadcrumbs)

    @property
    def tags(self) -> Mapping[str, Any]:
        return self._tags

    @property
    def extra(self) -> Mapping[str, Any]:
        return self._extra

    @property
    def user(self) -> Mapping[str, Any] | None:
        return self._user

    @property
    def contexts(self) -> Mapping[str, Mapping[str, Any]]:
        return self._contexts

    @property
    def level(self) -> Level | None:
        return self._level

    @property
    def fingerprint(self) -> tuple[str, ...]:
        return self._fingerprint

    @property
    def transaction_name(self) -> str | None:
        return self._transaction_name

    @property
    def attachments(self) -> tuple[Attachment, ...]:
        return tuple(self._attachments)

    @property
    def event_processors(self) -> tuple[EventProcessor, ...]:
        return tuple(self._event_processors)

    @property
    def span(self) -> Span | None:
        return self._span

    @span.setter
    def span(self, span: Span | None) -> None:
        self._span = span

    # -- mutation ----------------------------------------------------------

    def add_breadcrumb(self, breadcrumb: Breadcrumb) -> None:
        self._breadcrumbs.append(breadcrumb)

    def clear_breadcrumbs(self) -> None:
        self._breadcrumbs.clear()

    def set_max_breadcrumbs(self, max_breadcrumbs: int) -> None:
        """Change the breadcrumb capacity, keeping the newest entries that still fit."""
        if max_breadcrumbs < 0:
            raise ValueError(f"max_breadcrumbs must be >= 0, got {max_breadcrumbs}")
        if max_breadcrumbs != self.max_breadcrumbs:
            self._breadcrumbs = deque(self._breadcrumbs, maxlen=max_breadcrumbs)

    def set_tag(self, key: str, value: Any) -> None:
        """Set a tag; None removes it."""
        if value is None:
            self._tags.pop(key, None)
        else:
            self._tags[key] = value

    def set_tags(self, tags: Mapping[str, Any]) -> None:
        for key, value in tags.items():
            self.set_tag(key, value)

    def remove_tag(self, key: str) -> None:
        self._tags.pop(key, None)

    def set_extra(self, key: str, value: Any) -> None:
        self._extra[key] = copy_structure(value)

    def set_extras(self, extras: Mapping[str, Any]) -> None:
        for key, value in extras.items():
            self.set_extra(key, value)

    def remove_extra(self, key: str) -> None:
        self._extra.pop(key, None)

    def set_user(self, user: Mapping[str, Any] | None) -> None:
        """Replace the user record; None unsets it."""
        self._user = None if user is None else copy_structure(dict(user))

    def set_context(self, name: str, context: Mapping[str, Any] | None) -> None:
        """Set a named context; None removes it."""
        if context is None:
            self._contexts.pop(name, None)
        else:
            self._contexts[name] = copy_structure(dict(context))

    def remove_context(self, name: str) -> None:
        self._contexts.pop(name, None)

    def set_level(self, level: Level | str | None) -> None:
        self._level = None if level is None else Level(level)

    def set_fingerprint(self, fingerprint: Iterable[str] | None) -> None:
        self._fingerprint = () if fingerprint is None else tuple(fingerprint)

    def set_transaction_name(self, name: str | None) -> None:
        self._transaction_name = name

    def add_event_processor(self, processor: EventProcessor) -> None:
        self._event_processors.append(processor)

    def add_attachment(self, attachment: Attachment) -> None:
        self._attachments.append(attachment)

    def clear_attachments(self) -> None:
        self._attachments.clear()

    def clear(self) -> None:
        """Reset everything except the breadcrumb capacity."""
        self._breadcrumbs.clear()
        self._tags = {}
        self._extra = {}
        self._user = None
        self._contexts = {}
        self._level = None
        self._fingerprint = ()
        self._transaction_name = None
        self._span = None
        self._event_processors = []
        self._attachments = []

    # -- application -------------------------------------------------------

    def apply_to_event(self, event: Event) -> Event:
        """Merge this scope into `event`.

        Values already on the event win on key collision: they were passed
        explicitly with the capture call. Scope breadcrumbs follow the
        event's own and the combined list keeps the newest max_breadcrumbs.
        Processors are not run here; see run_event_processors().
        """
        contexts = {**copy_structure(self._contexts), **event.contexts}
        if self._span is not None and "trace" not in contexts:
            contexts["trace"] = self._span.trace_context()

        breadcrumbs = (*event.breadcrumbs, *self._breadcrumbs)
        if len(breadcrumbs) > self.max_breadcrumbs:
            breadcrumbs = breadcrumbs[len(breadcrumbs) - self.max_breadcrumbs :]

        return event.with_changes(
            tags={**self._tags, **event.tags},
            extra={**copy_structure(self._extra), **event.extra},
            user=event.user if event.user is not None else copy_structure(self._user),
            contexts=contexts,
            level=event.level if event.level is not None else self._level,
            fingerprint=event.fingerprint or self._fingerprint,
            transaction=event.transaction if event.transaction is not None else self._transaction_name,
            breadcrumbs=breadcrumbs,
        )
