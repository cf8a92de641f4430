"""Hub: the stack of (client, scope) frames that tracks "what is happening now".

The stack always holds at least one frame. push_scope() clones the top
scope onto a new frame and the frame is popped when the managed block
exits, however it exits. A popped child never leaks mutations back to its
parent because the parent's scope was never shared with it.

Hub resolution:
    get_current_hub() returns the hub bound to the current context (see
    Hub.run) or, outside any binding, the process-wide main hub. Threads and
    asyncio tasks that need isolated context should fork() the hub and run
    under the fork.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, TypeVar, Unpack

import structlog

from errata.client import CaptureContext, Client
from errata.contracts.enums import Level
from errata.contracts.events import Breadcrumb, Event, new_event_id
from errata.integrations.protocols import Integration
from errata.scope import Scope
from errata.tracing import Transaction

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _Frame:
    client: Client | None
    scope: Scope


class Hub:
    """Stack of (client, scope) frames.

    Example:
        hub = Hub(client)
        with hub.push_scope() as scope:
            scope.set_tag("job", "reindex")
            hub.capture_message("started")
        # tag "job" is gone again here
    """

    def __init__(self, client: Client | None = None, scope: Scope | None = None) -> None:
        if scope is None:
            max_breadcrumbs = client.options.max_breadcrumbs if client is not None else 100
            scope = Scope(max_breadcrumbs=max_breadcrumbs)
        self._stack: list[_Frame] = [_Frame(client=client, scope=scope)]
        self._last_event_id: str | None = None

    @property
    def client(self) -> Client | None:
        return self._stack[-1].client

    @property
    def scope(self) -> Scope:
        return self._stack[-1].scope

    @property
    def depth(self) -> int:
        return len(self._stack)

    def bind_client(self, client: Client | None) -> None:
        """Replace the client of the top frame.

        The top scope adopts the client's max_breadcrumbs.
        """
        top = self._stack[-1]
        top.client = client
        if client is not None:
            top.scope.set_max_breadcrumbs(client.options.max_breadcrumbs)

    def fork(self) -> Hub:
        """New hub seeded with a clone of this hub's top frame."""
        return Hub(self.client, self.scope.clone())

    def run(self, callback: Callable[[], T]) -> T:
        """Run `callback` with this hub as the current hub."""
        token = _current_hub.set(self)
        try:
            return callback()
        finally:
            _current_hub.reset(token)

    # -- scope stack -------------------------------------------------------

    def push_scope_frame(self) -> Scope:
        """Push a frame holding a clone of the current scope; return the clone."""
        top = self._stack[-1]
        scope = top.scope.clone()
        self._stack.append(_Frame(client=top.client, scope=scope))
        return scope

    def pop_scope(self) -> bool:
        """Pop the top frame unless it is the root frame."""
        if len(self._stack) <= 1:
            logger.warning("pop_scope_on_root_frame")
            return False
        self._stack.pop()
        return True

    @contextmanager
    def push_scope(self) -> Iterator[Scope]:
        """Context manager pushing a cloned scope, popped on exit or error."""
        depth = len(self._stack)
        scope = self.push_scope_frame()
        try:
            yield scope
        finally:
            # Also discards frames the block pushed and never popped
            del self._stack[depth:]

    def with_scope(self, callback: Callable[[Scope], T]) -> T:
        """Call `callback` with a freshly pushed scope and return its result."""
        with self.push_scope() as scope:
            return callback(scope)

    def configure_scope(self, callback: Callable[[Scope], None]) -> None:
        """Mutate the current scope in place."""
        callback(self.scope)

    # -- capture -----------------------------------------------------------

    def last_event_id(self) -> str | None:
        return self._last_event_id

    def capture_event(
        self,
        event: Event,
        *,
        hint: dict[str, Any] | None = None,
        scope: Scope | None = None,
    ) -> str:
        self._last_event_id = event.event_id
        client = self.client
        if client is not None:
            client.capture_event(event, scope=scope or self.scope, hint=hint)
        return event.event_id

    def capture_exception(
        self,
        error: BaseException | None = None,
        *,
        hint: dict[str, Any] | None = None,
        **context: Unpack[CaptureContext],
    ) -> str | None:
        """Capture `error`, or the exception currently being handled.

        Returns:
            The event id, or None when there is no exception to capture.
        """
        if error is None:
            error = sys.exc_info()[1]
        if error is None:
            logger.debug("capture_exception_without_exception")
            return None
        client = self.client
        if client is None:
            event_id = new_event_id()
        else:
            event_id = client.capture_exception(error, scope=self.scope, hint=hint, **context).event_id
        self._last_event_id = event_id
        return event_id

    def capture_message(
        self,
        message: str,
        level: Level | str | None = None,
        *,
        hint: dict[str, Any] | None = None,
        **context: Unpack[CaptureContext],
    ) -> str:
        client = self.client
        if client is None:
            event_id = new_event_id()
        else:
            event_id = client.capture_message(message, level, scope=self.scope, hint=hint, **context).event_id
        self._last_event_id = event_id
        return event_id

    def add_breadcrumb(
        self,
        breadcrumb: Breadcrumb | Mapping[str, Any] | None = None,
        hint: dict[str, Any] | None = None,
        **fields: Any,
    ) -> None:
        """Record a breadcrumb on the current scope.

        Accepts a Breadcrumb, a mapping of Breadcrumb fields, or keyword
        fields. Ignored when no client is bound. The client's
        before_breadcrumb hook may replace or drop it.
        """
        client = self.client
        if client is None:
            return
        if not isinstance(breadcrumb, Breadcrumb):
            data = {**(breadcrumb or {}), **fields}
            data.setdefault("timestamp", client.clock.now())
            if "level" in data:
                data["level"] = Level(data["level"])
            breadcrumb = Breadcrumb(**data)

        hook = client.options.before_breadcrumb
        if hook is not None:
            try:
                result = hook(breadcrumb, hint or {})
            except Exception as e:
                logger.warning("before_breadcrumb_failed", error=str(e))
                return
            if result is None:
                return
            breadcrumb = result
        self.scope.add_breadcrumb(breadcrumb)

    # -- scope shortcuts ---------------------------------------------------

    def set_tag(self, key: str, value: Any) -> None:
        self.scope.set_tag(key, value)

    def set_tags(self, tags: Mapping[str, Any]) -> None:
        self.scope.set_tags(tags)

    def set_extra(self, key: str, value: Any) -> None:
        self.scope.set_extra(key, value)

    def set_extras(self, extras: Mapping[str, Any]) -> None:
        self.scope.set_extras(extras)

    def set_user(self, user: Mapping[str, Any] | None) -> None:
        self.scope.set_user(user)

    def set_context(self, name: str, context: Mapping[str, Any] | None) -> None:
        self.scope.set_context(name, context)

    # -- tracing and lifecycle ---------------------------------------------

    def start_transaction(
        self,
        name: str,
        op: str | None = None,
        *,
        sampled: bool | None = None,
        custom_sampling_context: Mapping[str, Any] | None = None,
        bind_to_scope: bool = False,
    ) -> Transaction:
        """Start a transaction that captures itself through this hub on finish().

        Args:
            name: Transaction name
            op: Operation, e.g. "http.server"
            sampled: Force the sampling decision
            custom_sampling_context: Extra input for traces_sampler
            bind_to_scope: Make it the current scope's span so errors
                captured meanwhile carry its trace context
        """
        kwargs: dict[str, Any] = {}
        if self.client is not None:
            kwargs["clock"] = self.client.clock
        transaction = Transaction(
            op=op,
            name=name,
            sampled=sampled,
            sampling_context=dict(custom_sampling_context or {}),
            hub=self,
            **kwargs,
        )
        if bind_to_scope:
            self.scope.span = transaction
        return transaction

    def get_integration(self, identifier: str) -> Integration | None:
        client = self.client
        return client.get_integration(identifier) if client is not None else None

    def flush(self, timeout: float | None = None) -> bool:
        client = self.client
        return client.flush(timeout) if client is not None else True


_MAIN_HUB = Hub()
_current_hub: ContextVar[Hub | None] = ContextVar("errata_current_hub", default=None)


def get_main_hub() -> Hub:
    return _MAIN_HUB


def get_current_hub() -> Hub:
    """The hub bound to this context, else the process-wide main hub."""
    hub = _current_hub.get()
    return hub if hub is not None else _MAIN_HUB
