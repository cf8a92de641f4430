"""
Client configuration: DSN parsing, options schema and file loading.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Options are frozen (immutable) after construction.
"""

from __future__ import annotations

import os
import socket
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

from errata.contracts.errors import InvalidDsnError
from errata.contracts.events import SDK_NAME, SDK_VERSION, Event

ENV_PREFIX = "ERRATA"
PROTOCOL_VERSION = 7


@dataclass(frozen=True, slots=True)
class Dsn:
    """Parsed Data Source Name.

    Format: ``{scheme}://{public_key}[:{secret}]@{host}[:{port}]/{path}{project_id}``
    """

    scheme: str
    public_key: str
    host: str
    project_id: str
    port: int | None = None
    path: str = ""
    secret_key: str | None = None

    @classmethod
    def parse(cls, dsn: str) -> Dsn:
        """Parse a DSN string.

        Raises:
            InvalidDsnError: If the scheme, key, host or project id is
                missing or malformed.
        """
        try:
            parts = urlsplit(dsn)
            port = parts.port
        except ValueError as e:
            raise InvalidDsnError(dsn, str(e)) from e

        if parts.scheme not in ("http", "https"):
            raise InvalidDsnError(dsn, f"unsupported scheme {parts.scheme!r}")
        if not parts.username:
            raise InvalidDsnError(dsn, "missing public key")
        if not parts.hostname:
            raise InvalidDsnError(dsn, "missing host")

        path, _, project_id = parts.path.rpartition("/")
        if not project_id.isdigit():
            raise InvalidDsnError(dsn, f"project id must be numeric, got {project_id!r}")

        return cls(
            scheme=parts.scheme,
            public_key=parts.username,
            secret_key=parts.password,
            host=parts.hostname,
            port=port,
            path=path.strip("/"),
            project_id=project_id,
        )

    @property
    def netloc(self) -> str:
        return self.host if self.port is None else f"{self.host}:{self.port}"

    @property
    def envelope_url(self) -> str:
        prefix = f"/{self.path}" if self.path else ""
        return f"{self.scheme}://{self.netloc}{prefix}/api/{self.project_id}/envelope/"

    def auth_header(self, client: str = f"{SDK_NAME}/{SDK_VERSION}") -> str:
        """Value for the X-Sentry-Auth request header."""
        fields = [
            f"sentry_version={PROTOCOL_VERSION}",
            f"sentry_client={client}",
            f"sentry_key={self.public_key}",
        ]
        if self.secret_key:
            fields.append(f"sentry_secret={self.secret_key}")
        return "Sentry " + ", ".join(fields)

    def __str__(self) -> str:
        credentials = self.public_key if not self.secret_key else f"{self.public_key}:{self.secret_key}"
        prefix = f"/{self.path}" if self.path else ""
        return f"{self.scheme}://{credentials}@{self.netloc}{prefix}/{self.project_id}"


BeforeSend = Callable[[Event, dict[str, Any]], Event | None]
TracesSampler = Callable[[dict[str, Any]], bool | float]


class ClientOptions(BaseModel):
    """Options controlling one Client.

    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True, "extra": "forbid", "arbitrary_types_allowed": True}

    dsn: str | None = Field(default=None, description="Where to send events; None disables sending")
    release: str | None = Field(default=None, description="Application release attached to every event")
    environment: str = Field(default="production", description="Deployment environment")
    server_name: str | None = Field(default_factory=socket.gethostname, description="Host name reported")

    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0, description="Fraction of error events kept")
    traces_sample_rate: float | None = Field(default=None, ge=0.0, le=1.0, description="Fraction of transactions kept")
    traces_sampler: TracesSampler | None = Field(default=None, description="Per-transaction sampling callback")

    before_send: BeforeSend | None = Field(default=None, description="Final transform hook for error events")
    before_send_transaction: BeforeSend | None = Field(default=None, description="Final transform hook for transactions")
    before_breadcrumb: Callable[[Any, dict[str, Any]], Any] | None = Field(
        default=None, description="Filter/transform hook for breadcrumbs"
    )

    max_breadcrumbs: int = Field(default=100, ge=0, description="Breadcrumbs kept per scope")
    attach_stacktrace: bool = Field(default=False, description="Attach the call stack to message events")

    transport_capacity: int = Field(default=30, gt=0, description="Maximum envelopes in flight")
    transport_workers: int = Field(default=2, gt=0, description="Threads dispatching envelopes")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    shutdown_timeout: float = Field(default=2.0, ge=0, description="Seconds close() waits for in-flight sends")
    http_proxy: str | None = Field(default=None, description="Proxy URL for outgoing requests")
    http_headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")

    debug: bool = Field(default=False, description="Configure DEBUG logging on client creation")
    default_integrations: bool = Field(default=True, description="Install integrations discovered via plugins")
    integrations: tuple[Any, ...] = Field(default=(), description="Explicit integration instances")

    @field_validator("dsn")
    @classmethod
    def validate_dsn(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        Dsn.parse(v)
        return v

    @property
    def parsed_dsn(self) -> Dsn | None:
        return Dsn.parse(self.dsn) if self.dsn else None


def options_from_env(**overrides: Any) -> ClientOptions:
    """Build options, filling dsn/release/environment from ERRATA_* variables.

    Explicit overrides always win over the environment.
    """
    values = dict(overrides)
    for key in ("dsn", "release", "environment"):
        env_value = os.environ.get(f"{ENV_PREFIX}_{key.upper()}")
        if values.get(key) is None and env_value:
            values[key] = env_value
    return ClientOptions(**{key: value for key, value in values.items() if value is not None})


def load_options(config_path: Path, **overrides: Any) -> ClientOptions:
    """Load options from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Keyword overrides (callables such as before_send) - highest priority
    2. Environment variables (ERRATA_*)
    3. Config file
    4. Defaults from the Pydantic schema - lowest priority

    Args:
        config_path: Path to YAML configuration file
        **overrides: Values that cannot come from a file

    Returns:
        Validated ClientOptions instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix=ENV_PREFIX,
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys and adds its own bookkeeping entries
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config.update(overrides)
    return ClientOptions(**raw_config)
