"""Protocol definitions for integrations.

An integration hooks errata into something outside the capture pipeline
(an interpreter hook, a framework, a library). The pipeline never knows
how an integration works; it only runs the event processors integrations
register on the client.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from errata.client import Client


@runtime_checkable
class Integration(Protocol):
    """Protocol for integrations.

    Lifecycle:
        1. Discovery: errata_get_integrations hook returns integration classes,
           or the application passes instances in ClientOptions.integrations
        2. Installation: install(client) is called once per client

    Error handling:
        install() MAY raise; the client reports it as IntegrationError and
        carries on without that integration.
    """

    @property
    def identifier(self) -> str:
        """Unique name, used for de-duplication and Client.get_integration()."""
        ...

    def install(self, client: "Client") -> None:
        """Wire the integration into `client`."""
        ...
