"""Network executors: the only code that touches the wire.

The transport needs exactly one capability from the environment: send
bytes, get back a status code and headers. Executors must raise for
transport-level failures (DNS, refused or reset connections, timeouts)
rather than inventing a status code.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutorResponse:
    """Status and headers of a completed request.

    Header names keep the server's spelling; consumers match them
    case-insensitively.
    """

    status_code: int
    headers: Mapping[str, str | list[str]] = field(default_factory=dict)


@runtime_checkable
class NetworkExecutor(Protocol):
    """Protocol for the injected network layer.

    Thread Safety:
        execute() is called from transport worker threads and may run
        concurrently with itself.
    """

    def execute(self, body: bytes, headers: Mapping[str, str], url: str) -> ExecutorResponse:
        """POST `body` to `url`.

        Raises:
            Exception: Any transport-level failure. The transport reports
                it as a network error.
        """
        ...

    def close(self) -> None:
        """Release connections. Must be idempotent."""
        ...


class HttpxExecutor:
    """Executor backed by a shared httpx.Client.

    Example:
        executor = HttpxExecutor(timeout=10.0)
        response = executor.execute(body, {"Content-Type": "application/x-sentry-envelope"}, url)
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        proxy: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            timeout: Per-request timeout in seconds
            proxy: Optional proxy URL
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self._client = httpx.Client(timeout=timeout, proxy=proxy, transport=transport)
        self._closed = False

    def execute(self, body: bytes, headers: Mapping[str, str], url: str) -> ExecutorResponse:
        response = self._client.post(url, content=body, headers=dict(headers))
        collected: dict[str, str | list[str]] = {}
        for name in response.headers.keys():
            values = response.headers.get_list(name)
            collected[name] = values[0] if len(values) == 1 else values
        return ExecutorResponse(status_code=response.status_code, headers=collected)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client.close()
