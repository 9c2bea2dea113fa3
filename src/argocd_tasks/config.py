# ABOUTME: Configuration management for ArgoCD CLI tasks
# ABOUTME: Immutable connection/request records, environment settings, and resolution

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Every task execution starts from three small value records:

1. ConnectionConfig: how to reach the ArgoCD API server (server, token, TLS)
2. SyncRequest: what to sync and with which flags
3. StatusRequest: which application to query

They are frozen pydantic models. A record is built once per execution and
never mutated afterwards, so two concurrent executions can never see each
other's settings.

Defaults come from the environment through TaskSettings, and explicit task
parameters win over them (see resolve_connection).

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

Connection defaults (same names the argocd CLI itself reads):
    ARGOCD_SERVER       -> API server, scheme optional
    ARGOCD_AUTH_TOKEN   -> Bearer token
    ARGOCD_INSECURE     -> Skip TLS verification (default: true)
    ARGOCD_PLAINTEXT    -> Plain HTTP instead of HTTPS
    ARGOCD_GRPC_WEB     -> gRPC-web transport
    ARGOCD_SERVER_CERT  -> PEM certificate of the server
    ARGOCD_VERSION      -> CLI version to download (default: latest)

Execution settings (ARGOCD_TASKS_ prefix):
    ARGOCD_TASKS_RUNNER          -> "docker" or "process" (default: docker)
    ARGOCD_TASKS_CONTAINER_IMAGE -> Image for the docker runner
    ARGOCD_TASKS_INSTALL_CLI     -> Download the CLI first (default: true)
    ARGOCD_TASKS_TIMEOUT         -> Max seconds for the whole command line
    ARGOCD_TASKS_LOG_LEVEL       -> DEBUG/INFO/WARNING/ERROR/CRITICAL
    ARGOCD_TASKS_LOG_JSON        -> Render logs as JSON
    ARGOCD_TASKS_AUDIT_LOG       -> Path to JSON-lines execution log
    ARGOCD_TASKS_MASK_SECRETS    -> Mask tokens in logs (default: true)
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_IMAGE = "curlimages/curl:latest"


class ConfigurationError(ValueError):
    """
    A required setting could not be resolved to a concrete value.

    Raised before anything is executed. The message names the missing
    setting so the caller can fix the task definition.
    """

    def __init__(self, setting: str, message: str | None = None) -> None:
        self.setting = setting
        super().__init__(message or f"Missing required setting '{setting}'")


def _strip_scheme(server: str) -> str:
    """Drop a leading https:// or http://, the CLI only wants host[:port]."""
    for scheme in ("https://", "http://"):
        if server.startswith(scheme):
            return server[len(scheme) :]
    return server


# =============================================================================
# VALUE RECORDS
# =============================================================================


class ConnectionConfig(BaseModel):
    """
    How to reach one ArgoCD API server.

    WHY IS THE SCHEME STRIPPED?
    ---------------------------
    The argocd CLI takes `--server host[:port]` and picks the transport
    from --plaintext / --grpc-web. Users naturally paste the URL from
    their browser, so "https://argocd.example.com" becomes
    "argocd.example.com" here, once, at construction time.

    WHY DOES insecure DEFAULT TO TRUE?
    ----------------------------------
    Most in-cluster ArgoCD installs serve a self-signed certificate. Set
    insecure=False together with server_cert to verify against a
    custom CA instead.

    USAGE EXAMPLE:
    --------------
        conn = ConnectionConfig(
            server="https://argocd.example.com",
            token=SecretStr("my-api-token"),
        )
        conn.server  # "argocd.example.com"
    """

    model_config = {"extra": "ignore", "frozen": True}

    server: str = Field(default="", description="ArgoCD API host[:port]")
    token: SecretStr = Field(default=SecretStr(""), description="ArgoCD auth token")
    insecure: bool = Field(default=True, description="Skip TLS verification")
    plaintext: bool = Field(default=False, description="Use HTTP instead of HTTPS")
    grpc_web: bool = Field(default=False, description="Use the gRPC-web transport")
    server_cert: str | None = Field(
        default=None,
        description="PEM certificate of the server, staged to a file before use",
    )
    argocd_version: str | None = Field(
        default=None,
        description="ArgoCD CLI version to download, latest when unset",
    )

    @field_validator("server")
    @classmethod
    def validate_server(cls, v: str) -> str:
        """Trim whitespace and drop the URL scheme."""
        return _strip_scheme(v.strip())

    @field_validator("server_cert", "argocd_version")
    @classmethod
    def empty_as_none(cls, v: str | None) -> str | None:
        """Treat blank optional strings as not configured."""
        if v is None or not v.strip():
            return None
        return v

    def require(self) -> ConnectionConfig:
        """
        Check the invariant that server and token are non-empty.

        Returns self so it can be chained after construction.

        Raises:
            ConfigurationError: If server or token is empty.
        """
        if not self.server:
            raise ConfigurationError("server")
        if not self.token.get_secret_value():
            raise ConfigurationError("token")
        return self


class SyncRequest(BaseModel):
    """Parameters of one `argocd app sync` invocation."""

    model_config = {"extra": "ignore", "frozen": True}

    application: str = Field(description="ArgoCD application name")
    revision: str | None = Field(default=None, description="Git revision to sync to")
    prune: bool = Field(default=False, description="Delete resources no longer in Git")
    dry_run: bool = Field(default=False, description="Preview without applying")
    force: bool = Field(default=False, description="Force resource recreation")
    timeout: timedelta | None = Field(
        default=None,
        description="Max wait for the sync, seconds granularity",
    )
    # pydantic accepts plain numbers (seconds) and ISO-8601 ("PT5M") here

    @field_validator("application")
    @classmethod
    def validate_application(cls, v: str) -> str:
        return v.strip()


class StatusRequest(BaseModel):
    """Parameters of one `argocd app get` invocation."""

    model_config = {"extra": "ignore", "frozen": True}

    application: str = Field(description="ArgoCD application name")
    refresh: bool = Field(default=False, description="Force a refresh before reading")

    @field_validator("application")
    @classmethod
    def validate_application(cls, v: str) -> str:
        return v.strip()


# =============================================================================
# ENVIRONMENT SETTINGS
# =============================================================================


class TaskSettings(BaseSettings):
    """
    Environment-provided defaults for task executions.

    Connection fields use validation_alias so they read the same variables
    the argocd CLI reads (ARGOCD_SERVER, ARGOCD_AUTH_TOKEN, ...). The
    execution fields use the ARGOCD_TASKS_ prefix.

    USAGE:
    ------
        settings = load_settings()
        conn = resolve_connection(settings, server="argocd.internal:443")
    """

    model_config = SettingsConfigDict(
        env_prefix="ARGOCD_TASKS_",
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # CONNECTION DEFAULTS
    # -------------------------------------------------------------------------

    server: str = Field(default="", validation_alias="ARGOCD_SERVER")
    token: SecretStr = Field(default=SecretStr(""), validation_alias="ARGOCD_AUTH_TOKEN")
    insecure: bool = Field(default=True, validation_alias="ARGOCD_INSECURE")
    plaintext: bool = Field(default=False, validation_alias="ARGOCD_PLAINTEXT")
    grpc_web: bool = Field(default=False, validation_alias="ARGOCD_GRPC_WEB")
    server_cert: str | None = Field(default=None, validation_alias="ARGOCD_SERVER_CERT")
    argocd_version: str | None = Field(default=None, validation_alias="ARGOCD_VERSION")

    # -------------------------------------------------------------------------
    # EXECUTION
    # -------------------------------------------------------------------------

    runner: Literal["docker", "process"] = Field(
        default="docker",
        description="Run the CLI inside a container or as a local process",
    )
    # "process" expects nothing but /bin/sh and curl on the host; the CLI
    # is still downloaded to /tmp on every execution.

    container_image: str = Field(default=DEFAULT_IMAGE, description="Image for the docker runner")

    install_cli: bool = Field(
        default=True,
        description="Download the ArgoCD CLI before each execution",
    )

    timeout: float | None = Field(
        default=None,
        description="Max seconds for the whole command line, unlimited when unset",
    )

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(default=False, description="Render logs as JSON lines")
    audit_log: Path | None = Field(default=None, description="Path to execution audit log")
    mask_secrets: bool = Field(default=True, description="Mask tokens in log output")

    def connection(self) -> ConnectionConfig:
        """Connection record built from the environment alone."""
        return ConnectionConfig(
            server=self.server,
            token=self.token,
            insecure=self.insecure,
            plaintext=self.plaintext,
            grpc_web=self.grpc_web,
            server_cert=self.server_cert,
            argocd_version=self.argocd_version,
        )


def load_settings() -> TaskSettings:
    """
    Load settings from the environment.

    If ARGOCD_TASKS_ENV_FILE is set, that file is read as a .env file too.

    Raises:
        pydantic.ValidationError: If a value has the wrong type or format.
    """
    return TaskSettings(_env_file=os.environ.get("ARGOCD_TASKS_ENV_FILE"))


def resolve_connection(settings: TaskSettings | None = None, **overrides: Any) -> ConnectionConfig:
    """
    Merge explicit task parameters over environment defaults.

    Overrides that are None are ignored, so callers can pass optional
    parameters straight through. The token may be given as str or SecretStr.

    Example:
        conn = resolve_connection(settings, server="https://argocd.prod", refresh=None)

    Raises:
        ConfigurationError: If server or token is still empty afterwards.
    """
    base = (settings or load_settings()).connection()
    values = base.model_dump()
    values.update({k: v for k, v in overrides.items() if v is not None and k in values})
    if isinstance(values["token"], str):
        values["token"] = SecretStr(values["token"])
    return ConnectionConfig(**values).require()
