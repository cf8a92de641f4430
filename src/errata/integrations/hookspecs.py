"""pluggy hook specifications for integration discovery.

Usage (shipping an integration as a plugin):
    from errata.integrations.hookspecs import hookimpl

    class MyIntegrationPlugin:
        @hookimpl
        def errata_get_integrations(self):
            return [MyIntegration]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from errata.integrations.protocols import Integration

PROJECT_NAME = "errata"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class ErrataIntegrationSpec:
    """Hook specifications for integration plugins."""

    @hookspec
    def errata_get_integrations(self) -> list[type["Integration"]]:  # type: ignore[empty-body]
        """Return integration classes (not instances).

        Each class must be constructible without arguments.
        """
