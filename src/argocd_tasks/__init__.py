# ABOUTME: ArgoCD tasks package initialization
# ABOUTME: Exposes the task entry points and version information

"""
ArgoCD tasks - sync and status of GitOps applications through the ArgoCD CLI.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

argocd_tasks/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── config.py            <- Connection/request records, environment settings
├── tasks.py             <- run_sync / run_status: the two tasks
├── server.py            <- MCP server exposing the tasks as tools
└── utils/
    ├── __init__.py      <- Utils subpackage marker
    ├── commands.py      <- argocd command-line construction
    ├── extract.py       <- JSON extraction from CLI stdout
    ├── runner.py        <- Local shell and Docker process runners
    ├── logging.py       <- Structured logging with audit trail
    └── masking.py       <- Token masking for logs

Typical use:

    conn = resolve_connection(load_settings(), server="https://argocd.example.com")
    output = await run_sync(conn, SyncRequest(application="guestbook", prune=True))
    output.sync_status, output.health_status, output.revision
"""

from argocd_tasks.config import (
    ConfigurationError,
    ConnectionConfig,
    StatusRequest,
    SyncRequest,
    load_settings,
    resolve_connection,
)
from argocd_tasks.tasks import StatusOutput, SyncOutput, run_status, run_sync
from argocd_tasks.utils.runner import SubprocessError

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ConnectionConfig",
    "StatusOutput",
    "StatusRequest",
    "SubprocessError",
    "SyncOutput",
    "SyncRequest",
    "__version__",
    "load_settings",
    "resolve_connection",
    "run_status",
    "run_sync",
]
