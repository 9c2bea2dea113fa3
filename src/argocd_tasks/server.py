# ABOUTME: FastMCP server exposing the ArgoCD Sync and Status tasks as tools
# ABOUTME: Loads settings, selects the process runner, and formats task outputs

"""ArgoCD tasks MCP server - run `argocd app sync` / `argocd app get` as tools."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from datetime import timedelta  # noqa: TC003 - Required at runtime for Pydantic
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field, SecretStr

from argocd_tasks.config import (
    ConfigurationError,
    StatusRequest,
    SyncRequest,
    TaskSettings,
    load_settings,
    resolve_connection,
)
from argocd_tasks.tasks import StatusOutput, SyncOutput, build_runner, run_status, run_sync
from argocd_tasks.utils.logging import (
    AuditLogger,
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)
from argocd_tasks.utils.runner import ProcessRunner, SubprocessError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

MCPContext = Context[Any, Any]
logger = structlog.get_logger(__name__)

# Global state (initialized in lifespan)
_settings: TaskSettings | None = None
_runner: ProcessRunner | None = None
_audit_logger: AuditLogger | None = None


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Load settings, configure logging, pick the runner."""
    global _settings, _runner, _audit_logger

    _settings = load_settings()
    configure_logging(
        level=_settings.log_level,
        json_output=_settings.log_json,
        mask=_settings.mask_secrets,
    )
    _runner = build_runner(_settings)
    _audit_logger = AuditLogger(_settings.audit_log)
    logger.info("ArgoCD tasks server started", runner=_settings.runner)

    yield {"settings": _settings}

    _runner = None
    logger.info("ArgoCD tasks server stopped")


mcp = FastMCP("argocd-tasks", lifespan=lifespan)


def get_settings() -> TaskSettings:
    """Get server settings."""
    if not _settings:
        raise RuntimeError("Server not initialized")
    return _settings


def get_runner() -> ProcessRunner:
    """Get the process runner selected at startup."""
    if not _runner:
        raise RuntimeError("Server not initialized")
    return _runner


def get_audit_logger() -> AuditLogger:
    """Get audit logger for recording executions."""
    if not _audit_logger:
        raise RuntimeError("Server not initialized")
    return _audit_logger


class ConnectionParams(BaseModel):
    """Connection overrides; unset values fall back to ARGOCD_* environment."""

    server: str | None = Field(default=None, description="ArgoCD API server, scheme optional")
    token: SecretStr | None = Field(default=None, description="ArgoCD auth token")
    insecure: bool | None = Field(default=None, description="Skip TLS verification")
    plaintext: bool | None = Field(default=None, description="Use HTTP instead of HTTPS")
    grpc_web: bool | None = Field(default=None, description="Use the gRPC-web transport")
    server_cert: str | None = Field(default=None, description="PEM certificate of the server")
    argocd_version: str | None = Field(default=None, description="ArgoCD CLI version")
    env: dict[str, str] | None = Field(default=None, description="Extra environment variables")

    def overrides(self) -> dict[str, Any]:
        return self.model_dump(exclude={"env"}, exclude_none=True)


class SyncApplicationParams(ConnectionParams):
    """Parameters for sync_application tool."""

    application: str = Field(description="Application name")
    revision: str | None = Field(default=None, description="Git revision to sync to")
    prune: bool = Field(default=False, description="Delete resources no longer defined in Git")
    dry_run: bool = Field(default=False, description="Preview changes without applying them")
    force: bool = Field(default=False, description="Force resource recreation")
    timeout: timedelta | None = Field(default=None, description="Max wait, in seconds")


class GetApplicationStatusParams(ConnectionParams):
    """Parameters for get_application_status tool."""

    application: str = Field(description="Application name")
    refresh: bool = Field(default=False, description="Force a refresh from the cluster first")


def _format_resources(resources: list[dict[str, Any]] | None) -> list[str]:
    if not resources:
        return []
    lines = ["", f"Resources ({len(resources)}):"]
    for res in resources:
        health = res.get("health", {})
        health_status = health.get("status", "-") if isinstance(health, dict) else "-"
        lines.append(
            f"  - {res.get('kind', '?')}/{res.get('name', '?')} "
            f"sync={res.get('status', '-')} health={health_status}"
        )
    return lines


def format_sync_output(application: str, output: SyncOutput) -> str:
    """Render a sync result for agent consumption."""
    lines = [
        f"Sync finished for '{application}' (exit {output.exit_code})",
        f"Sync: {output.sync_status or 'Unknown'}",
        f"Health: {output.health_status or 'Unknown'}",
        f"Revision: {output.revision or 'N/A'}",
    ]
    lines.extend(_format_resources(output.resources))
    if output.parse_warning:
        lines.extend(
            ["", f"Output could not be parsed: {output.parse_warning}", "", output.raw_output]
        )
    return "\n".join(lines)


def format_status_output(application: str, output: StatusOutput) -> str:
    """Render a status result for agent consumption."""
    lines = [
        f"Application: {application}",
        f"Sync: {output.sync_status or 'Unknown'}",
        f"Health: {output.health_status or 'Unknown'}",
    ]
    if output.conditions:
        lines.extend(["", "Conditions:"])
        for cond in output.conditions:
            lines.append(f"  - [{cond.get('type')}] {cond.get('message', 'N/A')}")
    lines.extend(_format_resources(output.resources))
    if output.parse_warning:
        lines.extend(
            ["", f"Output could not be parsed: {output.parse_warning}", "", output.raw_output]
        )
    return "\n".join(lines)


@mcp.tool()
async def sync_application(params: SyncApplicationParams, ctx: MCPContext) -> str:
    """
    Sync an ArgoCD application with `argocd app sync`.

    Supports prune, dry-run and force flags plus an optional revision and
    timeout. Returns sync and health status, the synced revision and the
    resource statuses reported by ArgoCD.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")
    settings = get_settings()
    audit = get_audit_logger()

    try:
        conn = resolve_connection(settings, **params.overrides())
    except ConfigurationError as e:
        audit.log_error("sync", params.application, str(e))
        return f"Configuration error: {e}"

    try:
        req = SyncRequest(
            application=params.application,
            revision=params.revision,
            prune=params.prune,
            dry_run=params.dry_run,
            force=params.force,
            timeout=params.timeout,
        )
        output = await run_sync(
            conn,
            req,
            get_runner(),
            env=params.env,
            audit=audit,
            install=settings.install_cli,
            correlation_id=get_correlation_id(),
        )
    except ConfigurationError as e:
        return f"Configuration error: {e}"
    except SubprocessError as e:
        return str(e)

    return format_sync_output(params.application, output)


@mcp.tool()
async def get_application_status(params: GetApplicationStatusParams, ctx: MCPContext) -> str:
    """
    Get sync and health status of an ArgoCD application with `argocd app get`.

    Set refresh=true to bypass ArgoCD's cache. Returns conditions and
    resource statuses when ArgoCD reports them.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")
    settings = get_settings()
    audit = get_audit_logger()

    try:
        conn = resolve_connection(settings, **params.overrides())
    except ConfigurationError as e:
        audit.log_error("status", params.application, str(e))
        return f"Configuration error: {e}"

    try:
        req = StatusRequest(application=params.application, refresh=params.refresh)
        output = await run_status(
            conn,
            req,
            get_runner(),
            env=params.env,
            audit=audit,
            install=settings.install_cli,
            correlation_id=get_correlation_id(),
        )
    except ConfigurationError as e:
        return f"Configuration error: {e}"
    except SubprocessError as e:
        return str(e)

    return format_status_output(params.application, output)


@mcp.resource("argocd://settings")
async def get_settings_resource() -> str:
    """Get the active execution settings (token never shown)."""
    settings = get_settings()

    return (
        "ArgoCD Task Settings:\n"
        f"  Default server: {settings.server or 'not set'}\n"
        f"  Token configured: {bool(settings.token.get_secret_value())}\n"
        f"  Runner: {settings.runner}\n"
        f"  Container image: {settings.container_image}\n"
        f"  Install CLI: {settings.install_cli}\n"
        f"  CLI version: {settings.argocd_version or 'latest'}\n"
        f"  Timeout: {settings.timeout or 'none'}"
    )


def main() -> None:
    """Run the ArgoCD tasks MCP server."""
    configure_logging(level="INFO")
    logger.info("ArgoCD tasks server starting")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
