"""Capture uncaught exceptions via sys.excepthook."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable
from types import TracebackType
from typing import TYPE_CHECKING

from errata.contracts.enums import Level

if TYPE_CHECKING:
    from errata.client import Client

ExceptHook = Callable[[type[BaseException], BaseException, TracebackType | None], object]

_install_lock = threading.Lock()
_installed = False


class ExceptHookIntegration:
    """Reports uncaught exceptions as fatal events, then defers to the previous hook.

    The interpreter hook is process-global, so it is installed at most once
    per process; each client still registers the integration so
    Client.get_integration() finds it.
    """

    identifier = "excepthook"

    def install(self, client: Client) -> None:
        global _installed
        with _install_lock:
            if _installed:
                return
            _installed = True
        sys.excepthook = _make_excepthook(sys.excepthook)


def _make_excepthook(previous: ExceptHook) -> ExceptHook:
    def errata_excepthook(
        exc_type: type[BaseException],
        exc_value: BaseException,
        tb: TracebackType | None,
    ) -> None:
        from errata.hub import get_current_hub

        hub = get_current_hub()
        try:
            if hub.get_integration(ExceptHookIntegration.identifier) is not None and not isinstance(
                exc_value, KeyboardInterrupt
            ):
                hub.capture_exception(exc_value, level=Level.FATAL)
                hub.flush()
        finally:
            previous(exc_type, exc_value, tb)

    return errata_excepthook
