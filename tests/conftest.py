# ABOUTME: Pytest fixtures and configuration for ArgoCD task tests
# ABOUTME: Provides connection records, a scripted runner, and integration settings

import os
from collections.abc import Mapping, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from argocd_tasks.config import ConnectionConfig, TaskSettings
from argocd_tasks.utils.runner import CliResult, StdoutCollector, SubprocessError

APPLICATION_JSON = """{
  "metadata": {"name": "my-application"},
  "status": {
    "sync": {"status": "Synced", "revision": "abc123"},
    "health": {"status": "Healthy"},
    "resources": [
      {"kind": "Deployment", "name": "web", "status": "Synced", "health": {"status": "Healthy"}}
    ],
    "conditions": [{"type": "SyncError", "message": "hook failed"}]
  }
}"""


class ScriptedRunner:
    """
    Runner double that replays canned output through a StdoutCollector.

    Records every call so tests can inspect the command list and environment.
    """

    name = "scripted"

    def __init__(
        self,
        stdout: Sequence[str] = (),
        stderr: Sequence[str] = (),
        error: SubprocessError | None = None,
    ) -> None:
        self.stdout = list(stdout)
        self.stderr = list(stderr)
        self.error = error
        self.calls: list[tuple[list[str], dict[str, str]]] = []

    async def run(
        self,
        commands: Sequence[str],
        env: Mapping[str, str] | None = None,
        collector: StdoutCollector | None = None,
    ) -> CliResult:
        self.calls.append((list(commands), dict(env or {})))
        if self.error is not None:
            raise self.error

        collector = collector or StdoutCollector()
        for line in self.stderr:
            collector.accept(line, True)
        for line in self.stdout:
            collector.accept(line, False)
        return CliResult(
            exit_code=0,
            stdout=collector.text,
            std_out_line_count=collector.std_out_line_count,
            std_err_line_count=collector.std_err_line_count,
            vars=dict(collector.vars),
        )


@pytest.fixture
def connection() -> ConnectionConfig:
    """Create a connection to a test ArgoCD server."""
    return ConnectionConfig(
        server="https://argocd.example.com",
        token=SecretStr("token"),
    )


@pytest.fixture
def task_settings() -> TaskSettings:
    """Create task settings without reading the environment."""
    return TaskSettings.model_construct(
        server="argocd.example.com",
        token=SecretStr("token"),
        insecure=True,
        plaintext=False,
        grpc_web=False,
        server_cert=None,
        argocd_version=None,
        runner="process",
        container_image="curlimages/curl:latest",
        install_cli=True,
        timeout=None,
        log_level="INFO",
        log_json=False,
        audit_log=None,
        mask_secrets=True,
    )


@pytest.fixture
def application_json() -> str:
    """Application JSON as printed by `argocd app get -o json`."""
    return APPLICATION_JSON


@pytest.fixture
def make_runner() -> type[ScriptedRunner]:
    """Factory for runners replaying custom output."""
    return ScriptedRunner


@pytest.fixture
def scripted_runner() -> ScriptedRunner:
    """Runner printing the sample application JSON."""
    return ScriptedRunner(stdout=APPLICATION_JSON.splitlines())


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    """Create a mock audit logger."""
    return MagicMock()


@pytest.fixture
def mock_context() -> MagicMock:
    """Create a mock MCP context."""
    ctx = MagicMock()
    ctx.request_id = "test-request-123"
    ctx.report_progress = AsyncMock()
    return ctx


# Integration test fixtures


@pytest.fixture
def argocd_server() -> str | None:
    """Get ArgoCD server from environment."""
    return os.environ.get("ARGOCD_TEST_SERVER")


@pytest.fixture
def argocd_token() -> str | None:
    """Get ArgoCD token from environment."""
    return os.environ.get("ARGOCD_TEST_TOKEN")


@pytest.fixture
def argocd_application() -> str | None:
    """Get the application to query from environment."""
    return os.environ.get("ARGOCD_TEST_APP")
