"""Module-level capture functions operating on the current hub.

These are thin conveniences for application code. Libraries and tests
should hold a Hub explicitly instead of relying on the process-wide one.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, TypeVar, Unpack

from errata.client import CaptureContext, Client
from errata.contracts.enums import Level
from errata.contracts.events import Breadcrumb, Event
from errata.core.config import load_options, options_from_env
from errata.hub import get_current_hub
from errata.scope import Scope
from errata.tracing import Transaction

T = TypeVar("T")


def init(dsn: str | None = None, *, config_path: Path | None = None, **options: Any) -> Client:
    """Create a client and bind it to the current hub.

    Options come from `config_path` (YAML + ERRATA_* environment) when
    given, otherwise from keyword arguments with ERRATA_DSN,
    ERRATA_RELEASE and ERRATA_ENVIRONMENT as fallbacks.

    Any previously bound client is closed.
    """
    if config_path is not None:
        if dsn is not None:
            options["dsn"] = dsn
        client_options = load_options(config_path, **options)
    else:
        client_options = options_from_env(dsn=dsn, **options)

    hub = get_current_hub()
    previous = hub.client
    client = Client(client_options)
    hub.bind_client(client)
    if previous is not None:
        previous.close()
    return client


def capture_exception(error: BaseException | None = None, **context: Unpack[CaptureContext]) -> str | None:
    return get_current_hub().capture_exception(error, **context)


def capture_message(message: str, level: Level | str | None = None, **context: Unpack[CaptureContext]) -> str:
    return get_current_hub().capture_message(message, level, **context)


def capture_event(event: Event, hint: dict[str, Any] | None = None) -> str:
    return get_current_hub().capture_event(event, hint=hint)


def add_breadcrumb(breadcrumb: Breadcrumb | Mapping[str, Any] | None = None, **fields: Any) -> None:
    get_current_hub().add_breadcrumb(breadcrumb, **fields)


def configure_scope(callback: Callable[[Scope], None]) -> None:
    get_current_hub().configure_scope(callback)


def with_scope(callback: Callable[[Scope], T]) -> T:
    return get_current_hub().with_scope(callback)


def push_scope() -> AbstractContextManager[Scope]:
    """Context manager form of with_scope()."""
    return get_current_hub().push_scope()


def set_tag(key: str, value: Any) -> None:
    get_current_hub().set_tag(key, value)


def set_tags(tags: Mapping[str, Any]) -> None:
    get_current_hub().set_tags(tags)


def set_extra(key: str, value: Any) -> None:
    get_current_hub().set_extra(key, value)


def set_extras(extras: Mapping[str, Any]) -> None:
    get_current_hub().set_extras(extras)


def set_user(user: Mapping[str, Any] | None) -> None:
    get_current_hub().set_user(user)


def set_context(name: str, context: Mapping[str, Any] | None) -> None:
    get_current_hub().set_context(name, context)


def start_transaction(name: str, op: str | None = None, **kwargs: Any) -> Transaction:
    return get_current_hub().start_transaction(name, op, **kwargs)


def last_event_id() -> str | None:
    return get_current_hub().last_event_id()


def flush(timeout: float | None = None) -> bool:
    return get_current_hub().flush(timeout)


def close(timeout: float | None = None) -> bool:
    """Flush and detach the current client."""
    hub = get_current_hub()
    client = hub.client
    if client is None:
        return True
    hub.bind_client(None)
    return client.close(timeout)
