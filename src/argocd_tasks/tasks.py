# ABOUTME: ArgoCD Sync and Status tasks
# ABOUTME: Composes command building, process execution, and output extraction

"""
The two ArgoCD tasks.

Each task is one independent pass:

    request -> build domain command -> command line (install, cert, command)
            -> runner -> stdout -> extract_outcome -> task output

run_sync and run_status share the connection arguments, the bootstrap
steps and the extractor; they differ only in the domain command and in
which parsed fields they keep.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from argocd_tasks.config import ConfigurationError, load_settings
from argocd_tasks.utils.commands import (
    build_command_line,
    build_status_command,
    build_sync_command,
    command_environment,
)
from argocd_tasks.utils.extract import ParsedOutcome, extract_outcome
from argocd_tasks.utils.logging import AuditLogger, get_correlation_id, set_correlation_id
from argocd_tasks.utils.runner import (
    CliResult,
    DockerRunner,
    ProcessRunner,
    ShellRunner,
    SubprocessError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from argocd_tasks.config import ConnectionConfig, StatusRequest, SyncRequest, TaskSettings

logger = structlog.get_logger(__name__)


# =============================================================================
# OUTPUTS
# =============================================================================


@dataclass(frozen=True)
class TaskOutput:
    """Fields every task returns, whatever the parse result."""

    exit_code: int
    raw_output: str
    std_out_line_count: int = 0
    std_err_line_count: int = 0
    vars: dict[str, Any] = field(default_factory=dict)
    parse_warning: str | None = None


@dataclass(frozen=True)
class SyncOutput(TaskOutput):
    """Result of `argocd app sync`."""

    sync_status: str | None = None
    health_status: str | None = None
    revision: str | None = None
    resources: list[dict[str, Any]] | None = None


@dataclass(frozen=True)
class StatusOutput(TaskOutput):
    """Result of `argocd app get`."""

    sync_status: str | None = None
    health_status: str | None = None
    conditions: list[dict[str, Any]] | None = None
    resources: list[dict[str, Any]] | None = None


def _common(result: CliResult, outcome: ParsedOutcome) -> dict[str, Any]:
    return {
        "exit_code": result.exit_code,
        "raw_output": outcome.raw_output,
        "std_out_line_count": result.std_out_line_count,
        "std_err_line_count": result.std_err_line_count,
        "vars": result.vars,
        "parse_warning": outcome.parse_warning,
    }


# =============================================================================
# RUNNER SELECTION
# =============================================================================


def build_runner(settings: TaskSettings | None = None) -> ProcessRunner:
    """Runner described by the settings: docker (default) or a local process."""
    settings = settings or load_settings()
    if settings.runner == "process":
        return ShellRunner(timeout=settings.timeout)
    return DockerRunner(image=settings.container_image, timeout=settings.timeout)


async def _execute(
    action: str,
    application: str,
    conn: ConnectionConfig,
    domain_command: str,
    runner: ProcessRunner | None,
    env: Mapping[str, str] | None,
    audit: AuditLogger | None,
    install: bool | None,
) -> tuple[CliResult, ParsedOutcome]:
    if runner is None or install is None:
        settings = load_settings()
        runner = runner or build_runner(settings)
        if install is None:
            install = settings.install_cli

    commands = build_command_line(conn, domain_command, install=install)
    log = logger.bind(action=action, application=application, correlation_id=get_correlation_id())

    try:
        result = await runner.run(commands, command_environment(conn, env))
    except SubprocessError as e:
        log.error("ArgoCD command failed", exit_code=e.exit_code, error=str(e))
        if audit:
            audit.log_error(action, application, str(e))
        raise

    return result, extract_outcome(result.stdout)


# =============================================================================
# TASKS
# =============================================================================


async def run_sync(
    conn: ConnectionConfig,
    req: SyncRequest,
    runner: ProcessRunner | None = None,
    *,
    env: Mapping[str, str] | None = None,
    audit: AuditLogger | None = None,
    install: bool | None = None,
    correlation_id: str | None = None,
) -> SyncOutput:
    """
    Sync one application and report where it ended up.

    Args:
        conn: Resolved connection settings.
        req: Application and sync flags.
        runner: Where to run the command line, from settings when None.
        env: Extra environment variables for the command line.
        audit: Audit logger receiving one entry for this execution.
        install: Download the CLI first; False when argocd is already on PATH.
            From ARGOCD_TASKS_INSTALL_CLI when None.
        correlation_id: ID carried by this execution's logs and audit entry,
            freshly generated when None.

    Raises:
        ConfigurationError: Before anything runs, if a required value is empty.
        SubprocessError: If the command line fails.
    """
    set_correlation_id(correlation_id or "")
    try:
        command = build_sync_command(conn, req)
    except ConfigurationError as e:
        if audit:
            audit.log_error("sync", req.application, str(e))
        raise

    result, outcome = await _execute(
        "sync", req.application, conn, command, runner, env, audit, install
    )

    logger.info(
        "ArgoCD sync completed",
        application=req.application,
        sync_status=outcome.sync_status,
        health_status=outcome.health_status,
    )
    if audit:
        audit.log_success(
            "sync",
            req.application,
            {
                "sync_status": outcome.sync_status,
                "health_status": outcome.health_status,
                "revision": outcome.revision,
                "prune": req.prune,
                "force": req.force,
            },
            dry_run=req.dry_run,
        )

    return SyncOutput(
        **_common(result, outcome),
        sync_status=outcome.sync_status,
        health_status=outcome.health_status,
        revision=outcome.revision,
        resources=outcome.resources,
    )


async def run_status(
    conn: ConnectionConfig,
    req: StatusRequest,
    runner: ProcessRunner | None = None,
    *,
    env: Mapping[str, str] | None = None,
    audit: AuditLogger | None = None,
    install: bool | None = None,
    correlation_id: str | None = None,
) -> StatusOutput:
    """
    Read the current sync and health state of one application.

    Arguments and errors are the same as for run_sync.
    """
    set_correlation_id(correlation_id or "")
    try:
        command = build_status_command(conn, req)
    except ConfigurationError as e:
        if audit:
            audit.log_error("status", req.application, str(e))
        raise

    result, outcome = await _execute(
        "status", req.application, conn, command, runner, env, audit, install
    )

    logger.info(
        "ArgoCD status retrieved",
        application=req.application,
        sync_status=outcome.sync_status,
        health_status=outcome.health_status,
    )
    if audit:
        audit.log_success(
            "status",
            req.application,
            {"sync_status": outcome.sync_status, "health_status": outcome.health_status},
        )

    return StatusOutput(
        **_common(result, outcome),
        sync_status=outcome.sync_status,
        health_status=outcome.health_status,
        conditions=outcome.conditions,
        resources=outcome.resources,
    )
