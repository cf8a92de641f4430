"""Client: turns captures into envelopes and hands them to the transport.

Pipeline, in order. Every step can end the pipeline without raising:
1. Build a draft event from the capture input plus client metadata
2. Merge the current scope (explicit capture values win on collision), then
   default the level: the scope level if set, else ERROR or INFO
3. Run event processors: client-level (integrations) first, then the scope's
4. Sampling: sample_rate for errors; explicit decision, traces_sampler or
   traces_sample_rate for transactions
5. before_send / before_send_transaction; a raising hook drops the event
6. Wrap in an envelope (with attachments) and call Transport.send()

Capture methods return a Capture synchronously. Delivery happens on the
transport's worker threads and is reported through Capture.future.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypedDict, Unpack

import structlog

from errata.contracts.enums import DropReason, Level, category_for_item_type
from errata.contracts.errors import IntegrationError
from errata.contracts.events import SDK_NAME, SDK_VERSION, Attachment, Event, new_event_id
from errata.core.clock import DEFAULT_CLOCK, Clock
from errata.core.config import ClientOptions, Dsn
from errata.core.logging import configure_logging
from errata.envelope import envelope_from_event
from errata.integrations.factory import discover_integrations
from errata.integrations.protocols import Integration
from errata.scope import EventProcessor, run_event_processors
from errata.stacktrace import current_stack, exception_values
from errata.transport.executors import HttpxExecutor
from errata.transport.transport import Transport, TransportResult

if TYPE_CHECKING:
    from errata.scope import Scope

logger = structlog.get_logger(__name__)


class CaptureContext(TypedDict, total=False):
    """Context passed explicitly with a capture call."""

    level: Level | str
    tags: Mapping[str, Any]
    extra: Mapping[str, Any]
    user: Mapping[str, Any]
    contexts: Mapping[str, Mapping[str, Any]]
    fingerprint: Sequence[str]


_CONTEXT_KEYS = frozenset(CaptureContext.__annotations__)


@dataclass(frozen=True, slots=True)
class Capture:
    """Result of a capture call.

    Attributes:
        event_id: Id generated for the event, available immediately
        future: Delivery outcome, or None if nothing was handed to the transport
    """

    event_id: str
    future: Future[TransportResult] | None = None

    @property
    def sent(self) -> bool:
        return self.future is not None


def apply_capture_context(event: Event, context: Mapping[str, Any]) -> Event:
    """Layer explicit capture-call context onto a draft event."""
    unknown = set(context) - _CONTEXT_KEYS
    if unknown:
        logger.warning("unknown_capture_context_keys", keys=sorted(unknown))
    changes: dict[str, Any] = {}
    if context.get("level") is not None:
        changes["level"] = Level(context["level"])
    if context.get("tags"):
        changes["tags"] = {**event.tags, **context["tags"]}
    if context.get("extra"):
        changes["extra"] = {**event.extra, **context["extra"]}
    if context.get("user") is not None:
        changes["user"] = dict(context["user"])
    if context.get("contexts"):
        changes["contexts"] = {**event.contexts, **{k: dict(v) for k, v in context["contexts"].items()}}
    if context.get("fingerprint"):
        changes["fingerprint"] = tuple(context["fingerprint"])
    return event.with_changes(**changes) if changes else event


class Client:
    """Builds, filters and ships events for one DSN.

    Example:
        client = Client(ClientOptions(dsn="https://key@o1.ingest.example.com/42"))
        capture = client.capture_message("deploy finished", scope=Scope())
        client.flush(timeout=2.0)
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        *,
        transport: Transport | None = None,
        clock: Clock = DEFAULT_CLOCK,
        integration_plugins: Iterable[Any] = (),
    ) -> None:
        """Initialize the client.

        Args:
            options: Validated client options; defaults to ClientOptions()
            transport: Pre-built transport (tests inject one with a fake
                executor). Built from the DSN when omitted.
            clock: Time source for event timestamps and rate limits
            integration_plugins: Extra pluggy plugins announcing integrations
        """
        self.options = options if options is not None else ClientOptions()
        if self.options.debug:
            configure_logging(level="DEBUG")
        self._clock = clock
        self._dsn = self.options.parsed_dsn
        if transport is None and self._dsn is not None:
            transport = self._make_transport(self._dsn)
        self.transport = transport
        self._event_processors: list[EventProcessor] = []
        self._integrations: dict[str, Integration] = {}
        self._setup_integrations(integration_plugins)

    def _make_transport(self, dsn: Dsn) -> Transport:
        headers = {
            "X-Sentry-Auth": dsn.auth_header(),
            "User-Agent": f"{SDK_NAME}/{SDK_VERSION}",
            **self.options.http_headers,
        }
        executor = HttpxExecutor(timeout=self.options.request_timeout, proxy=self.options.http_proxy)
        return Transport(
            executor,
            dsn.envelope_url,
            headers=headers,
            capacity=self.options.transport_capacity,
            max_workers=self.options.transport_workers,
            clock=self._clock,
        )

    def _setup_integrations(self, plugins: Iterable[Any]) -> None:
        candidates: list[Integration] = list(self.options.integrations)
        if self.options.default_integrations:
            try:
                candidates.extend(discover_integrations(plugins))
            except IntegrationError as e:
                logger.error("integration_discovery_failed", error=str(e))

        for integration in candidates:
            identifier = integration.identifier
            if identifier in self._integrations:
                continue
            try:
                integration.install(self)
            except Exception as e:
                logger.error("integration_install_failed", integration=identifier, error=str(e))
                continue
            self._integrations[identifier] = integration
            logger.debug("integration_installed", integration=identifier)

    @property
    def dsn(self) -> Dsn | None:
        return self._dsn

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def enabled(self) -> bool:
        return self.transport is not None

    def get_integration(self, identifier: str) -> Integration | None:
        return self._integrations.get(identifier)

    def add_event_processor(self, processor: EventProcessor) -> None:
        """Register a processor that runs before any scope processor."""
        self._event_processors.append(processor)

    # -- event construction ------------------------------------------------

    def _draft(self, **fields: Any) -> Event:
        return Event(event_id=new_event_id(), timestamp=self._clock.now(), **fields)

    def event_from_exception(self, error: BaseException) -> Event:
        return self._draft(exception=exception_values(error))

    def event_from_message(self, message: str, level: Level | str | None = None) -> Event:
        stacktrace = current_stack(skip=3) if self.options.attach_stacktrace else None
        return self._draft(level=Level(level) if level is not None else None, message=message, stacktrace=stacktrace)

    # -- capture -----------------------------------------------------------

    def capture_exception(
        self,
        error: BaseException,
        *,
        scope: Scope | None = None,
        hint: dict[str, Any] | None = None,
        **context: Unpack[CaptureContext],
    ) -> Capture:
        hint = {"original_exception": error, **(hint or {})}
        try:
            event = apply_capture_context(self.event_from_exception(error), context)
        except Exception as e:
            logger.error("event_build_failed", error=str(e))
            return Capture(event_id=new_event_id())
        return self.capture_event(event, scope=scope, hint=hint)

    def capture_message(
        self,
        message: str,
        level: Level | str | None = None,
        *,
        scope: Scope | None = None,
        hint: dict[str, Any] | None = None,
        **context: Unpack[CaptureContext],
    ) -> Capture:
        try:
            event = apply_capture_context(self.event_from_message(message, level), context)
        except Exception as e:
            logger.error("event_build_failed", error=str(e))
            return Capture(event_id=new_event_id())
        return self.capture_event(event, scope=scope, hint=hint)

    def capture_event(
        self,
        event: Event,
        *,
        scope: Scope | None = None,
        hint: dict[str, Any] | None = None,
        attachments: Iterable[Attachment] = (),
    ) -> Capture:
        """Run the pipeline for a pre-built event.

        Never raises. The returned Capture always carries the event id.
        """
        if not self.enabled:
            logger.debug("client_disabled", event_id=event.event_id)
            return Capture(event_id=event.event_id)

        try:
            prepared = self._prepare_event(event, scope, hint or {})
            if prepared is None:
                return Capture(event_id=event.event_id)
            future = self._send(prepared, scope, attachments)
        except Exception as e:
            logger.error("event_pipeline_failed", event_id=event.event_id, error=str(e))
            return Capture(event_id=event.event_id)
        return Capture(event_id=event.event_id, future=future)

    # -- pipeline ----------------------------------------------------------

    def _apply_metadata(self, event: Event) -> Event:
        changes: dict[str, Any] = {}
        if event.release is None and self.options.release is not None:
            changes["release"] = self.options.release
        if event.environment is None:
            changes["environment"] = self.options.environment
        if event.server_name is None and self.options.server_name is not None:
            changes["server_name"] = self.options.server_name
        return event.with_changes(**changes) if changes else event

    def _prepare_event(self, event: Event, scope: Scope | None, hint: dict[str, Any]) -> Event | None:
        category = category_for_item_type(event.item_type)
        merged = self._apply_metadata(event)

        processors: list[EventProcessor] = list(self._event_processors)
        if scope is not None:
            merged = scope.apply_to_event(merged)
            processors.extend(scope.event_processors)
        if merged.level is None and not merged.is_transaction:
            merged = merged.with_changes(level=Level.ERROR if merged.exception else Level.INFO)

        prepared = run_event_processors(merged, processors)
        if prepared is None:
            self.record_dropped(DropReason.EVENT_PROCESSOR, category)
            return None

        if not self._is_sampled(prepared, hint):
            logger.debug("event_not_sampled", event_id=prepared.event_id, type=prepared.item_type)
            self.record_dropped(DropReason.SAMPLE_RATE, category)
            return None

        hook = self.options.before_send_transaction if prepared.is_transaction else self.options.before_send
        if hook is not None:
            try:
                prepared = hook(prepared, hint)
            except Exception as e:
                logger.warning("before_send_failed", event_id=event.event_id, error=str(e))
                prepared = None
            if prepared is None:
                logger.debug("event_dropped_by_before_send", event_id=event.event_id)
                self.record_dropped(DropReason.BEFORE_SEND, category)
                return None

        return prepared

    def _is_sampled(self, event: Event, hint: Mapping[str, Any]) -> bool:
        if event.is_transaction:
            explicit = hint.get("sampled")
            if explicit is not None:
                return bool(explicit)
            if self.options.traces_sampler is not None:
                try:
                    rate = float(self.options.traces_sampler(dict(hint.get("sampling_context", {}))))
                except Exception as e:
                    logger.warning("traces_sampler_failed", error=str(e))
                    return False
            elif self.options.traces_sample_rate is not None:
                rate = self.options.traces_sample_rate
            else:
                return False
        else:
            rate = self.options.sample_rate

        if not 0.0 <= rate <= 1.0:
            logger.warning("invalid_sample_rate", rate=rate)
            return False
        return random.random() < rate

    def _send(
        self,
        event: Event,
        scope: Scope | None,
        attachments: Iterable[Attachment],
    ) -> Future[TransportResult] | None:
        transport = self.transport
        if transport is None:
            logger.debug("client_closed_during_capture", event_id=event.event_id)
            return None
        all_attachments = [*(scope.attachments if scope is not None else ()), *attachments]
        envelope = envelope_from_event(
            event,
            sent_at=self._clock.now(),
            attachments=all_attachments,
            dsn=str(self._dsn) if self._dsn is not None else None,
        )
        return transport.send(envelope)

    def record_dropped(self, reason: DropReason, category: Any) -> None:
        if self.transport is not None:
            self.transport.record_lost_event(reason, category)

    # -- lifecycle ---------------------------------------------------------

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for in-flight envelopes; True if everything settled."""
        if self.transport is None:
            return True
        return self.transport.flush(timeout=self.options.shutdown_timeout if timeout is None else timeout)

    def close(self, timeout: float | None = None) -> bool:
        """Flush and release the transport. Later captures are not sent."""
        if self.transport is None:
            return True
        transport, self.transport = self.transport, None
        return transport.close(timeout=self.options.shutdown_timeout if timeout is None else timeout)
