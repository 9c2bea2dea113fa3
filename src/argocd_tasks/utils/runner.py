# ABOUTME: Process runners executing ArgoCD command lines locally or in Docker
# ABOUTME: Streams stdout/stderr line by line and reports exit code and captured vars

"""Command-line execution for ArgoCD tasks."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import re
import signal
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from argocd_tasks.config import DEFAULT_IMAGE
from argocd_tasks.utils.masking import mask_text

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = structlog.get_logger(__name__)

# ::{"outputs": {"key": "value"}}::
VARS_LINE = re.compile(r"^::(\{.*\})::$")

STREAM_LIMIT = 16 * 1024 * 1024
TAIL_LINES = 20


class SubprocessError(Exception):
    """
    The command line exited non-zero or could not be run at all.

    Whatever output was produced before the failure is kept so the caller
    can surface it.
    """

    def __init__(
        self,
        exit_code: int,
        message: str | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.exit_code = exit_code
        self.message = message or f"exit {exit_code}"
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"ArgoCD CLI failed ({self.message})"
        if self.stderr:
            base += f": {mask_text(self.stderr)}"
        return base


@dataclass(frozen=True)
class CliResult:
    """Outcome of one command line run."""

    exit_code: int
    stdout: str = ""
    std_out_line_count: int = 0
    std_err_line_count: int = 0
    vars: dict[str, Any] = field(default_factory=dict)


class StdoutCollector:
    """
    Line consumer separating the two streams.

    Stdout lines are accumulated into one buffer, except output-variable
    lines (::{"outputs": {...}}::) which are decoded into vars. Stderr
    lines are logged as warnings and only the last few are kept, for
    error messages.
    """

    def __init__(self) -> None:
        self._buffer: list[str] = []
        self._stderr_tail: deque[str] = deque(maxlen=TAIL_LINES)
        self.vars: dict[str, Any] = {}
        self.std_out_line_count = 0
        self.std_err_line_count = 0

    def accept(self, line: str, is_stderr: bool) -> None:
        if is_stderr:
            self.std_err_line_count += 1
            self._stderr_tail.append(line)
            logger.warning(mask_text(line), stream="stderr")
            return

        self.std_out_line_count += 1
        match = VARS_LINE.match(line.strip())
        if match:
            try:
                outputs = json.loads(match.group(1)).get("outputs", {})
            except (ValueError, AttributeError):
                outputs = None
            if isinstance(outputs, dict):
                self.vars.update(outputs)
                return
        self._buffer.append(line + "\n")

    @property
    def text(self) -> str:
        """Everything received on stdout, trimmed."""
        return "".join(self._buffer).strip()

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)


class ProcessRunner(Protocol):
    """Anything that can run an ordered command list and report back."""

    async def run(
        self,
        commands: Sequence[str],
        env: Mapping[str, str] | None = None,
        collector: StdoutCollector | None = None,
    ) -> CliResult: ...


class ShellRunner:
    """
    Run the command list as one /bin/sh script on this host.

    The commands are joined with newlines after `set -e`, so a failing
    install step stops the script before the ArgoCD command runs.

    The shell is started in its own session. On timeout or cancellation
    the whole process group is killed, so curl and argocd die with it.
    Stdin is /dev/null; under the stdio MCP transport the parent's stdin
    is the request stream.
    """

    name = "process"

    def __init__(self, timeout: float | None = None, shell: str = "/bin/sh") -> None:
        """
        Args:
            timeout: Max seconds for the whole script, unlimited when None.
            shell: Shell used to interpret the script.
        """
        self._timeout = timeout
        self._shell = shell

    @staticmethod
    def script(commands: Sequence[str]) -> str:
        return "\n".join(["set -e", *commands])

    @staticmethod
    def run_name() -> str:
        """Unique name for one run, e.g. "argocd-task-1f2e3d4c5b6a"."""
        return f"argocd-task-{uuid.uuid4().hex[:12]}"

    def argv(
        self,
        script: str,
        env: Mapping[str, str],  # noqa: ARG002
        name: str | None = None,  # noqa: ARG002
    ) -> list[str]:
        return [self._shell, "-c", script]

    def process_env(self, env: Mapping[str, str]) -> dict[str, str]:
        return {**os.environ, **env}

    async def run(
        self,
        commands: Sequence[str],
        env: Mapping[str, str] | None = None,
        collector: StdoutCollector | None = None,
    ) -> CliResult:
        """
        Execute the commands and wait for completion.

        Raises:
            SubprocessError: On non-zero exit, timeout, or spawn failure.
        """
        env = dict(env or {})
        collector = collector or StdoutCollector()
        name = self.run_name()
        argv = self.argv(self.script(commands), env, name)

        log = logger.bind(runner=self.name, run=name, steps=len(commands))
        command = commands[-1] if commands else ""
        log.debug("Running ArgoCD command line", command=mask_text(command))

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.process_env(env),
                limit=STREAM_LIMIT,
                start_new_session=True,
            )
        except OSError as e:
            log.error("Failed to start command line", error=str(e))
            raise SubprocessError(-1, message=f"cannot start {argv[0]}: {e}") from e

        async def pump(stream: asyncio.StreamReader, is_stderr: bool) -> None:
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                collector.accept(raw.decode("utf-8", errors="replace").rstrip("\r\n"), is_stderr)

        assert process.stdout is not None and process.stderr is not None
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    pump(process.stdout, False),
                    pump(process.stderr, True),
                    process.wait(),
                ),
                timeout=self._timeout,
            )
        except TimeoutError:
            await self._kill(process, name)
            log.error("Command line timed out", timeout=self._timeout)
            raise SubprocessError(
                -1,
                message=f"timed out after {self._timeout}s",
                stdout=collector.text,
                stderr=collector.stderr_tail,
            ) from None
        except asyncio.CancelledError:
            await self._kill(process, name)
            raise

        exit_code = process.returncode if process.returncode is not None else -1
        if exit_code != 0:
            log.error("Command line failed", exit_code=exit_code)
            raise SubprocessError(
                exit_code,
                stdout=collector.text,
                stderr=collector.stderr_tail,
            )

        log.debug("Command line finished", stdout_lines=collector.std_out_line_count)
        return CliResult(
            exit_code=exit_code,
            stdout=collector.text,
            std_out_line_count=collector.std_out_line_count,
            std_err_line_count=collector.std_err_line_count,
            vars=dict(collector.vars),
        )

    async def _kill(self, process: asyncio.subprocess.Process, name: str) -> None:  # noqa: ARG002
        """Kill the shell and everything it started."""
        with contextlib.suppress(ProcessLookupError):
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        await process.wait()


class DockerRunner(ShellRunner):
    """
    Run the same script inside a throwaway container.

    Environment values never appear on the docker command line: each
    variable is passed as `-e NAME` and docker reads the value from its
    own environment.

    Every container gets the run's unique name. Killing the docker client
    leaves the container running, so the kill path also removes it with
    `docker rm -f <name>`.
    """

    name = "docker"

    def __init__(
        self,
        image: str = DEFAULT_IMAGE,
        timeout: float | None = None,
        docker: str = "docker",
        pull_policy: str | None = None,
    ) -> None:
        """
        Args:
            image: Container image, needs /bin/sh and curl.
            timeout: Max seconds for the whole container run.
            docker: Docker (or compatible) client executable.
            pull_policy: "always", "missing" or "never"; docker's default when None.
        """
        super().__init__(timeout=timeout)
        self._image = image
        self._docker = docker
        self._pull_policy = pull_policy

    def argv(
        self,
        script: str,
        env: Mapping[str, str],
        name: str | None = None,
    ) -> list[str]:
        argv = [self._docker, "run", "--rm", "--entrypoint", ""]
        if name:
            argv.extend(["--name", name])
        if self._pull_policy:
            argv.extend(["--pull", self._pull_policy])
        for var in env:
            argv.extend(["-e", var])
        argv.extend([self._image, "/bin/sh", "-c", script])
        return argv

    def cleanup_argv(self, name: str) -> list[str]:
        return [self._docker, "rm", "-f", name]

    async def _kill(self, process: asyncio.subprocess.Process, name: str) -> None:
        """Kill the docker client, then force-remove its container."""
        await super()._kill(process, name)
        try:
            cleanup = await asyncio.create_subprocess_exec(
                *self.cleanup_argv(name),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await cleanup.wait()
        except OSError as e:
            logger.warning("Failed to remove container", container=name, error=str(e))
