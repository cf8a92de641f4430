"""Exception hierarchy for the capture client.

Only configuration-time errors are ever raised to application code.
Delivery failures travel through the Future returned by Transport.send()
and are never raised from a capture call.
"""

from errata.contracts.enums import SendStatus


class ErrataError(Exception):
    """Base class for every error raised by errata."""


class InvalidDsnError(ErrataError, ValueError):
    """Raised when a DSN string cannot be parsed."""

    def __init__(self, dsn: str, message: str) -> None:
        self.dsn = dsn
        self.message = message
        super().__init__(f"Invalid DSN {dsn!r}: {message}")


class EnvelopeDecodeError(ErrataError, ValueError):
    """Raised when envelope bytes are structurally malformed."""


class IntegrationError(ErrataError):
    """Raised when integration discovery or installation fails.

    Attributes:
        identifier: Integration identifier, or "integrations" for discovery failures
        message: Human-readable error description
    """

    def __init__(self, identifier: str, message: str) -> None:
        self.identifier = identifier
        self.message = message
        super().__init__(f"Integration '{identifier}' failed: {message}")


class TransportError(ErrataError):
    """Delivery failed after the envelope was handed to the network executor.

    Attributes:
        status: Send status reported to the caller
        reason: Human-readable failure description
        status_code: HTTP status code, or None when the request never completed
    """

    status: SendStatus = SendStatus.FAILED

    def __init__(self, reason: str, *, status_code: int | None = None) -> None:
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{self.status}: {reason}")


class RateLimitedError(TransportError):
    """Server answered 429."""

    status = SendStatus.RATE_LIMITED


class InvalidEnvelopeError(TransportError):
    """Server rejected the envelope (4xx other than 429)."""

    status = SendStatus.INVALID


class ServerError(TransportError):
    """Server failed to process the envelope (5xx)."""


class NetworkError(TransportError):
    """The network executor raised before a response was received."""
