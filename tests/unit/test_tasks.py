# ABOUTME: Unit tests for the ArgoCD Sync and Status tasks
# ABOUTME: Tests command line ordering, output mapping, degradation, and failure handling

import json
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from pydantic import SecretStr

from argocd_tasks.config import (
    ConfigurationError,
    ConnectionConfig,
    StatusRequest,
    SyncRequest,
    TaskSettings,
)
from argocd_tasks.tasks import (
    StatusOutput,
    SyncOutput,
    build_runner,
    run_status,
    run_sync,
)
from argocd_tasks.utils.commands import SERVER_CERT_ENV, SERVER_CERT_PATH
from argocd_tasks.utils.logging import AuditLogger
from argocd_tasks.utils.runner import DockerRunner, ShellRunner, SubprocessError

PEM = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----"


@pytest.mark.unit
class TestRunSync:
    """Tests for run_sync."""

    async def test_sync_maps_outcome(self, connection: ConnectionConfig, scripted_runner):
        """Test structured fields are taken from the application JSON."""
        req = SyncRequest(application="my-application")

        output = await run_sync(connection, req, scripted_runner)

        assert isinstance(output, SyncOutput)
        assert output.exit_code == 0
        assert output.sync_status == "Synced"
        assert output.health_status == "Healthy"
        assert output.revision == "abc123"
        assert output.resources[0]["kind"] == "Deployment"
        assert output.parse_warning is None
        assert output.raw_output.startswith("{")

    async def test_command_line_order(self, connection: ConnectionConfig, scripted_runner):
        """Test install steps come before the sync command."""
        req = SyncRequest(application="guestbook", prune=True, timeout=timedelta(seconds=60))

        await run_sync(connection, req, scripted_runner)

        ((commands, env),) = scripted_runner.calls
        assert commands[0].startswith("curl -sSL -o /tmp/argocd ")
        assert commands[1] == "chmod +x /tmp/argocd"
        assert commands[2] == "export PATH=$PATH:/tmp"
        assert commands[3] == (
            "argocd app sync guestbook --server argocd.example.com --auth-token token "
            "--insecure --prune --timeout 60 --output json"
        )
        assert env == {}

    async def test_install_disabled(self, connection: ConnectionConfig, scripted_runner):
        """Test install=False runs only the domain command."""
        req = SyncRequest(application="guestbook")

        await run_sync(connection, req, scripted_runner, install=False)

        ((commands, _),) = scripted_runner.calls
        assert len(commands) == 1
        assert commands[0].startswith("argocd app sync guestbook ")

    async def test_certificate_staged_through_env(self, scripted_runner):
        """Test the certificate is staged before the command and passed by env."""
        conn = ConnectionConfig(
            server="argocd.example.com",
            token=SecretStr("token"),
            insecure=False,
            server_cert=PEM,
        )

        await run_sync(conn, SyncRequest(application="guestbook"), scripted_runner)

        ((commands, env),) = scripted_runner.calls
        assert commands[3].startswith("printf '%s'")
        assert f"--server-crt {SERVER_CERT_PATH}" in commands[4]
        assert env == {SERVER_CERT_ENV: PEM}
        assert not any("BEGIN CERTIFICATE" in command for command in commands)

    async def test_extra_env_passed(self, connection: ConnectionConfig, scripted_runner):
        """Test user environment variables reach the runner."""
        await run_sync(
            connection,
            SyncRequest(application="guestbook"),
            scripted_runner,
            env={"HTTPS_PROXY": "http://proxy:3128"},
        )

        ((_, env),) = scripted_runner.calls
        assert env == {"HTTPS_PROXY": "http://proxy:3128"}

    async def test_not_json_degrades(self, connection: ConnectionConfig, make_runner):
        """Test unparseable output still completes with exit code 0."""
        runner = make_runner(stdout=["not-json"])

        output = await run_sync(connection, SyncRequest(application="guestbook"), runner)

        assert output.exit_code == 0
        assert output.raw_output == "not-json"
        assert output.sync_status is None
        assert output.health_status is None
        assert output.revision is None
        assert output.resources is None
        assert output.parse_warning is not None

    async def test_line_counts_and_vars(self, connection: ConnectionConfig, make_runner):
        """Test counters and output variables are reported."""
        runner = make_runner(
            stdout=['::{"outputs":{"phase":"Succeeded"}}::', '{"status":{}}'],
            stderr=["WARN insecure connection"],
        )

        with patch("argocd_tasks.utils.runner.logger"):
            output = await run_sync(connection, SyncRequest(application="guestbook"), runner)

        assert output.std_out_line_count == 2
        assert output.std_err_line_count == 1
        assert output.vars == {"phase": "Succeeded"}
        assert output.raw_output == '{"status":{}}'

    async def test_missing_application_raises_before_run(
        self, connection: ConnectionConfig, scripted_runner, mock_audit_logger: MagicMock
    ):
        """Test configuration errors abort before anything runs."""
        with pytest.raises(ConfigurationError, match="'application'"):
            await run_sync(
                connection, SyncRequest(application=""), scripted_runner, audit=mock_audit_logger
            )

        assert scripted_runner.calls == []
        mock_audit_logger.log_error.assert_called_once()
        mock_audit_logger.log_success.assert_not_called()

    async def test_missing_token_raises_before_run(self, scripted_runner):
        """Test an empty token aborts before anything runs."""
        conn = ConnectionConfig(server="argocd.example.com")

        with pytest.raises(ConfigurationError, match="'token'"):
            await run_sync(conn, SyncRequest(application="guestbook"), scripted_runner)

        assert scripted_runner.calls == []

    async def test_subprocess_error_propagates(
        self, connection: ConnectionConfig, make_runner, mock_audit_logger: MagicMock
    ):
        """Test a failing command line fails the task."""
        runner = make_runner(error=SubprocessError(20, stderr="application not found"))

        with pytest.raises(SubprocessError) as exc_info:
            await run_sync(
                connection, SyncRequest(application="guestbook"), runner, audit=mock_audit_logger
            )

        assert exc_info.value.exit_code == 20
        action, target, error = mock_audit_logger.log_error.call_args[0]
        assert (action, target) == ("sync", "guestbook")
        assert "application not found" in error

    async def test_audit_success(
        self, connection: ConnectionConfig, scripted_runner, mock_audit_logger: MagicMock
    ):
        """Test a completed sync is audited with its outcome."""
        await run_sync(
            connection,
            SyncRequest(application="guestbook", prune=True),
            scripted_runner,
            audit=mock_audit_logger,
        )

        mock_audit_logger.log_success.assert_called_once_with(
            "sync",
            "guestbook",
            {
                "sync_status": "Synced",
                "health_status": "Healthy",
                "revision": "abc123",
                "prune": True,
                "force": False,
            },
            dry_run=False,
        )

    async def test_audit_dry_run(
        self, connection: ConnectionConfig, scripted_runner, mock_audit_logger: MagicMock
    ):
        """Test dry runs are flagged in the audit entry."""
        await run_sync(
            connection,
            SyncRequest(application="guestbook", dry_run=True),
            scripted_runner,
            audit=mock_audit_logger,
        )

        assert mock_audit_logger.log_success.call_args[1] == {"dry_run": True}

    async def test_install_default_from_settings(
        self, connection: ConnectionConfig, task_settings: TaskSettings, scripted_runner
    ):
        """Test install follows ARGOCD_TASKS_INSTALL_CLI when not given."""
        settings = task_settings.model_copy(update={"install_cli": False})

        with patch("argocd_tasks.tasks.load_settings", return_value=settings):
            await run_sync(connection, SyncRequest(application="guestbook"), scripted_runner)

        ((commands, _),) = scripted_runner.calls
        assert len(commands) == 1

    async def test_explicit_install_skips_settings(
        self, connection: ConnectionConfig, scripted_runner
    ):
        """Test settings are not loaded when runner and install are both given."""
        with patch("argocd_tasks.tasks.load_settings") as mock_load:
            await run_sync(
                connection, SyncRequest(application="guestbook"), scripted_runner, install=True
            )

        mock_load.assert_not_called()
        assert len(scripted_runner.calls[0][0]) == 4

    async def test_fresh_correlation_id_per_execution(
        self, connection: ConnectionConfig, make_runner, tmp_path
    ):
        """Test consecutive executions are audited under different correlation ids."""
        audit_path = tmp_path / "audit.log"
        audit = AuditLogger(audit_path)
        req = SyncRequest(application="guestbook")

        await run_sync(connection, req, make_runner(), audit=audit, install=False)
        await run_sync(connection, req, make_runner(), audit=audit, install=False)

        first, second = (json.loads(line) for line in audit_path.read_text().splitlines())
        assert first["correlation_id"]
        assert second["correlation_id"]
        assert first["correlation_id"] != second["correlation_id"]

    async def test_explicit_correlation_id(
        self, connection: ConnectionConfig, scripted_runner, tmp_path
    ):
        """Test a caller-supplied correlation id is used for the audit entry."""
        audit_path = tmp_path / "audit.log"

        await run_sync(
            connection,
            SyncRequest(application="guestbook"),
            scripted_runner,
            audit=AuditLogger(audit_path),
            install=False,
            correlation_id="abcd1234",
        )

        entry = json.loads(audit_path.read_text())
        assert entry["correlation_id"] == "abcd1234"

    async def test_configuration_error_gets_fresh_correlation_id(
        self, scripted_runner, tmp_path
    ):
        """Test a rejected execution is audited under its own correlation id."""
        audit_path = tmp_path / "audit.log"
        audit = AuditLogger(audit_path)
        conn = ConnectionConfig(server="argocd.example.com")

        await run_sync(
            conn.model_copy(update={"token": SecretStr("token")}),
            SyncRequest(application="guestbook"),
            scripted_runner,
            audit=audit,
            install=False,
            correlation_id="abcd1234",
        )
        with pytest.raises(ConfigurationError):
            await run_sync(conn, SyncRequest(application="guestbook"), scripted_runner, audit=audit)

        first, second = (json.loads(line) for line in audit_path.read_text().splitlines())
        assert first["correlation_id"] == "abcd1234"
        assert second["result"] == "error"
        assert second["correlation_id"] != "abcd1234"


@pytest.mark.unit
class TestRunStatus:
    """Tests for run_status."""

    async def test_status_maps_outcome(self, connection: ConnectionConfig, scripted_runner):
        """Test conditions and resources are kept for status."""
        output = await run_status(
            connection, StatusRequest(application="my-application"), scripted_runner
        )

        assert isinstance(output, StatusOutput)
        assert output.sync_status == "Synced"
        assert output.health_status == "Healthy"
        assert output.conditions == [{"type": "SyncError", "message": "hook failed"}]
        assert output.resources[0]["name"] == "web"
        assert not hasattr(output, "revision")

    async def test_status_command(self, connection: ConnectionConfig, scripted_runner):
        """Test the rendered status command."""
        await run_status(connection, StatusRequest(application="my-application"), scripted_runner)

        ((commands, _),) = scripted_runner.calls
        assert commands[-1] == (
            "argocd app get my-application --server argocd.example.com "
            "--auth-token token --insecure --output json"
        )

    async def test_refresh(self, connection: ConnectionConfig, scripted_runner):
        """Test refresh is passed to the CLI."""
        await run_status(
            connection, StatusRequest(application="guestbook", refresh=True), scripted_runner
        )

        ((commands, _),) = scripted_runner.calls
        assert commands[-1].endswith("--refresh --output json")

    async def test_conditions_only(self, connection: ConnectionConfig, make_runner):
        """Test conditions without resources leaves resources empty."""
        runner = make_runner(stdout=['{"status":{"conditions":[{"type":"ComparisonError"}]}}'])

        output = await run_status(connection, StatusRequest(application="guestbook"), runner)

        assert output.conditions == [{"type": "ComparisonError"}]
        assert output.resources is None

    async def test_empty_output(self, connection: ConnectionConfig, make_runner):
        """Test no output gives empty fields and no warning."""
        output = await run_status(connection, StatusRequest(application="guestbook"), make_runner())

        assert output.raw_output == ""
        assert output.parse_warning is None
        assert output.sync_status is None

    async def test_subprocess_error_audited(
        self, connection: ConnectionConfig, make_runner, mock_audit_logger: MagicMock
    ):
        """Test a failing status query is audited and re-raised."""
        runner = make_runner(error=SubprocessError(1, message="timed out after 30s"))

        with pytest.raises(SubprocessError, match="timed out"):
            await run_status(
                connection, StatusRequest(application="guestbook"), runner, audit=mock_audit_logger
            )

        assert mock_audit_logger.log_error.call_args[0][:2] == ("status", "guestbook")

    async def test_audit_success(
        self, connection: ConnectionConfig, scripted_runner, mock_audit_logger: MagicMock
    ):
        """Test a completed status query is audited."""
        await run_status(
            connection,
            StatusRequest(application="guestbook"),
            scripted_runner,
            audit=mock_audit_logger,
        )

        mock_audit_logger.log_success.assert_called_once_with(
            "status",
            "guestbook",
            {"sync_status": "Synced", "health_status": "Healthy"},
        )

    async def test_independent_executions(self, connection: ConnectionConfig, make_runner):
        """Test two executions share nothing."""
        first = await run_status(
            connection, StatusRequest(application="a"), make_runner(stdout=["not-json"])
        )
        second = await run_status(
            connection,
            StatusRequest(application="b"),
            make_runner(stdout=['{"status":{"health":{"status":"Degraded"}}}']),
        )

        assert first.health_status is None
        assert second.health_status == "Degraded"
        assert second.parse_warning is None


@pytest.mark.unit
class TestBuildRunner:
    """Tests for build_runner."""

    def test_process_runner(self, task_settings: TaskSettings):
        """Test runner="process" gives a ShellRunner."""
        runner = build_runner(task_settings)

        assert isinstance(runner, ShellRunner)
        assert not isinstance(runner, DockerRunner)

    def test_docker_runner(self, task_settings: TaskSettings):
        """Test runner="docker" gives a DockerRunner with the configured image."""
        settings = task_settings.model_copy(
            update={"runner": "docker", "container_image": "alpine:3.19", "timeout": 30.0}
        )

        runner = build_runner(settings)

        assert isinstance(runner, DockerRunner)
        assert runner.argv("true", {})[5] == "alpine:3.19"

    def test_settings_loaded_when_omitted(self, task_settings: TaskSettings):
        """Test the environment settings are used without an argument."""
        with patch("argocd_tasks.tasks.load_settings", return_value=task_settings) as mock_load:
            runner = build_runner()

        mock_load.assert_called_once_with()
        assert not isinstance(runner, DockerRunner)
