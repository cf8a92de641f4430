"""Discover and instantiate integrations from pluggy plugins.

Usage:
    integrations = discover_integrations(extra_plugins=[MyPlugin()])
    client = Client(ClientOptions(dsn=..., integrations=integrations))
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from errata.contracts.errors import IntegrationError
from errata.integrations import BuiltinIntegrationsPlugin
from errata.integrations.hookspecs import PROJECT_NAME, ErrataIntegrationSpec
from errata.integrations.protocols import Integration

logger = structlog.get_logger(__name__)


def discover_integrations(
    plugins: Iterable[Any] = (),
    *,
    include_builtins: bool = True,
) -> list[Integration]:
    """Instantiate every integration announced through errata_get_integrations.

    Args:
        plugins: Additional plugin objects implementing the hook
        include_builtins: Register BuiltinIntegrationsPlugin first

    Returns:
        One instance per distinct identifier, in discovery order.

    Raises:
        IntegrationError: If a plugin fails validation, a hook raises, or
            two integrations share an identifier.
    """
    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(ErrataIntegrationSpec)

    to_register: list[Any] = [BuiltinIntegrationsPlugin()] if include_builtins else []
    to_register.extend(plugins)
    for plugin in to_register:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # ValueError: the same plugin object registered twice
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise IntegrationError(
                "integrations",
                f"Invalid integration plugin {type(plugin).__name__}: {e}",
            ) from e

    # pluggy calls the most recently registered implementation first
    try:
        results = list(reversed(plugin_manager.hook.errata_get_integrations()))
    except Exception as e:
        raise IntegrationError("integrations", f"errata_get_integrations failed: {e}") from e

    integrations: dict[str, Integration] = {}
    for classes in results:
        if classes is None or isinstance(classes, str | bytes):
            raise IntegrationError(
                "integrations",
                f"errata_get_integrations returned {type(classes).__name__}; expected iterable of classes",
            )
        for integration_class in classes:
            try:
                integration = integration_class()
            except Exception as e:
                raise IntegrationError(
                    getattr(integration_class, "__name__", repr(integration_class)),
                    f"Failed to instantiate integration: {e}",
                ) from e
            identifier = integration.identifier
            if identifier in integrations:
                raise IntegrationError(identifier, f"Duplicate integration identifier '{identifier}'")
            integrations[identifier] = integration

    logger.debug("integrations_discovered", identifiers=list(integrations))
    return list(integrations.values())
