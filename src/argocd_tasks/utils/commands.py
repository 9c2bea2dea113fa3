# ABOUTME: Command construction for the ArgoCD CLI
# ABOUTME: Turns connection and request records into ordered shell command strings

"""
ArgoCD CLI command builder.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Pure functions that render shell command strings. Nothing here executes
anything. A full command line for one execution looks like:

    curl -sSL -o /tmp/argocd https://github.com/.../argocd-linux-$(uname ...)
    chmod +x /tmp/argocd
    export PATH=$PATH:/tmp
    printf '%s' "$ARGOCD_SERVER_CERT" > /tmp/argocd-server.crt    <- optional
    argocd app sync my-app --server argocd.example.com --auth-token ... --output json

=============================================================================
FLAG ORDER
=============================================================================

The order is fixed and never depends on which options are set:

    app sync <app> | app get <app>
    --server, --auth-token, --insecure, --plaintext, --grpc-web, --server-crt
    sync:   --revision, --prune, --dry-run, --force, --timeout
    status: --refresh
    --output json

=============================================================================
QUOTING
=============================================================================

Values are interpolated as-is, the shell running the script does the word
splitting. Application names, revisions and tokens must not carry shell
metacharacters. The server certificate is the one exception: it is never
written into a command, it travels through the ARGOCD_SERVER_CERT
environment variable and is written to a file by the staging step.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from argocd_tasks.config import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from argocd_tasks.config import ConnectionConfig, StatusRequest, SyncRequest

CLI_PATH = "/tmp/argocd"  # noqa: S108 - fixed location inside the container
SERVER_CERT_PATH = "/tmp/argocd-server.crt"  # noqa: S108
SERVER_CERT_ENV = "ARGOCD_SERVER_CERT"

RELEASES_URL = "https://github.com/argoproj/argo-cd/releases"
ARCH_EXPR = "$(uname -m | sed 's/x86_64/amd64/;s/aarch64/arm64/')"


def _require_application(application: str) -> str:
    if not application:
        raise ConfigurationError("application")
    return application


# =============================================================================
# SHARED CONNECTION ARGUMENTS
# =============================================================================


def connection_args(conn: ConnectionConfig) -> list[str]:
    """
    Render the connection flags shared by every ArgoCD command.

    Returns a flat token list, e.g.
        ["--server", "argocd.example.com", "--auth-token", "t", "--insecure"]

    Raises:
        ConfigurationError: If server or token is empty.
    """
    conn.require()

    args = ["--server", conn.server, "--auth-token", conn.token.get_secret_value()]
    if conn.insecure:
        args.append("--insecure")
    if conn.plaintext:
        args.append("--plaintext")
    if conn.grpc_web:
        args.append("--grpc-web")
    if conn.server_cert is not None:
        args.extend(["--server-crt", SERVER_CERT_PATH])
    return args


# =============================================================================
# DOMAIN COMMANDS
# =============================================================================


def build_sync_command(conn: ConnectionConfig, req: SyncRequest) -> str:
    """
    Render `argocd app sync` for one application.

    Example:
        >>> build_sync_command(conn, SyncRequest(application="guestbook", prune=True))
        'argocd app sync guestbook --server host --auth-token t --insecure --prune --output json'

    Raises:
        ConfigurationError: If application, server or token is empty.
    """
    tokens = ["argocd", "app", "sync", _require_application(req.application)]
    tokens.extend(connection_args(conn))

    revision = (req.revision or "").strip()
    if revision:
        tokens.extend(["--revision", revision])
    if req.prune:
        tokens.append("--prune")
    if req.dry_run:
        tokens.append("--dry-run")
    if req.force:
        tokens.append("--force")
    if req.timeout is not None:
        tokens.extend(["--timeout", str(int(req.timeout.total_seconds()))])

    tokens.extend(["--output", "json"])
    return " ".join(tokens)


def build_status_command(conn: ConnectionConfig, req: StatusRequest) -> str:
    """
    Render `argocd app get` for one application.

    Raises:
        ConfigurationError: If application, server or token is empty.
    """
    tokens = ["argocd", "app", "get", _require_application(req.application)]
    tokens.extend(connection_args(conn))

    if req.refresh:
        tokens.append("--refresh")

    tokens.extend(["--output", "json"])
    return " ".join(tokens)


# =============================================================================
# BOOTSTRAP STEPS
# =============================================================================


def download_url(version: str | None) -> str:
    """Release asset URL for the CLI, pinned or latest."""
    if version:
        return f"{RELEASES_URL}/download/v{version.lstrip('v')}/argocd-linux-{ARCH_EXPR}"
    return f"{RELEASES_URL}/latest/download/argocd-linux-{ARCH_EXPR}"


def install_commands(conn: ConnectionConfig) -> list[str]:
    """Download the CLI into /tmp and put it on PATH."""
    return [
        f"curl -sSL -o {CLI_PATH} {download_url(conn.argocd_version)}",
        f"chmod +x {CLI_PATH}",
        "export PATH=$PATH:/tmp",
    ]


def cert_commands(conn: ConnectionConfig) -> list[str]:
    """Write the server certificate from the environment to its staged path."""
    if conn.server_cert is None:
        return []
    return [f"printf '%s' \"${SERVER_CERT_ENV}\" > {SERVER_CERT_PATH}"]


def command_environment(
    conn: ConnectionConfig,
    extra_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """
    Environment variables the command line needs.

    User-supplied variables come first; the certificate variable is set
    last so it cannot be shadowed by them.
    """
    env = dict(extra_env or {})
    if conn.server_cert is not None:
        env[SERVER_CERT_ENV] = conn.server_cert
    return env


def build_command_line(
    conn: ConnectionConfig,
    domain_command: str,
    install: bool = True,
) -> list[str]:
    """
    Assemble the full ordered command list: install, stage cert, run.

    Args:
        conn: Connection the domain command was built for.
        domain_command: Output of build_sync_command / build_status_command.
        install: Set False when the argocd binary is already on PATH.
    """
    commands: list[str] = []
    if install:
        commands.extend(install_commands(conn))
    commands.extend(cert_commands(conn))
    commands.append(domain_command)
    return commands
