# ABOUTME: Structured logging with correlation IDs for ArgoCD tasks
# ABOUTME: Configures structlog and records one audit entry per task execution

"""
Structured logging with correlation IDs and an execution audit trail.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. configure_logging: one structlog pipeline for the whole process
2. CORRELATION IDs: every log line of one task execution shares an ID,
   including the stderr lines forwarded by the runner
3. AuditLogger: one record per execution (action, application, result)

=============================================================================
CONTEXT VARIABLES
=============================================================================

Executions can run concurrently on one event loop (two workflow runs
syncing different applications). The correlation ID lives in a ContextVar,
so each asyncio task sees its own value:

    async def run_a():
        set_correlation_id("aaa")
        await run_sync(...)      # logs carry "aaa"

    async def run_b():
        set_correlation_id("bbb")
        await run_status(...)    # logs carry "bbb"
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from argocd_tasks.utils.masking import mask_event, mask_secrets

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Get or generate the correlation ID for the current context.

    Generates an 8-character ID from a UUID4 when none is set, so logs
    written outside a task execution are still correlatable.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID; an empty string makes the next read generate one."""
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor adding "correlation_id" to every event."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# STRUCTLOG CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    mask: bool = True,
) -> None:
    """
    Configure structured logging.

    Call once at startup; calling again reconfigures.

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: values bound with structlog.contextvars
    2. add_log_level: "level" field
    3. TimeStamper: ISO timestamp
    4. add_correlation_id: execution correlation ID
    5. mask_event: token masking (when mask=True)
    6. Renderer: JSON or colored console

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: JSON lines for log aggregators instead of console text.
        mask: Mask auth tokens and other secrets in every event.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if mask:
        processors.append(mask_event)

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGING
# =============================================================================


class AuditLogger:
    """
    Record of every task execution.

    Each entry holds: timestamp (UTC ISO 8601), correlation_id, action
    ("sync" or "status"), target (application name), result ("success",
    "dry_run", "error") and optional details.

    With a path, entries are appended as JSON lines; without one they go
    through structlog as "audit" events.

    EXAMPLE ENTRY:
    --------------
    {"timestamp": "2024-01-15T10:30:00+00:00", "correlation_id": "abc12345",
     "action": "sync", "target": "guestbook", "result": "success",
     "details": {"sync_status": "Synced", "health_status": "Healthy"}}
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Args:
            log_path: JSON-lines file to append to, or None for structlog.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write one audit entry. Details are masked before writing."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }

        if details:
            entry["details"] = mask_secrets(details)

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=entry.get("details"),
            )

    def log_success(
        self,
        action: str,
        target: str,
        details: dict[str, Any] | None = None,
        dry_run: bool = False,
    ) -> None:
        """Log a completed execution; dry runs are recorded as "dry_run"."""
        self.log(action, target, "dry_run" if dry_run else "success", details)

    def log_error(self, action: str, target: str, error: str) -> None:
        """Log a failed execution (configuration or subprocess error)."""
        self.log(action, target, "error", {"error": error})
