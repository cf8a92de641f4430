"""Built-in integrations.

Integrations are discovered via pluggy hooks. The BuiltinIntegrationsPlugin
in this module registers the integrations that ship with errata:

- DedupeIntegration: drops back-to-back duplicate errors
- ExceptHookIntegration: captures uncaught exceptions
"""

from errata.integrations.dedupe import DedupeIntegration
from errata.integrations.excepthook import ExceptHookIntegration
from errata.integrations.hookspecs import hookimpl
from errata.integrations.protocols import Integration


class BuiltinIntegrationsPlugin:
    """Plugin that registers built-in integrations."""

    @hookimpl
    def errata_get_integrations(self) -> list[type]:
        return [DedupeIntegration, ExceptHookIntegration]


__all__ = [
    "BuiltinIntegrationsPlugin",
    "DedupeIntegration",
    "ExceptHookIntegration",
    "Integration",
]
