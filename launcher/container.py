"""Supervisor for the named workload container.

Always re-inspects the engine before acting instead of trusting in-memory
assumptions, so it stays correct across launcher restarts.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Literal

from launcher.config import CONTAINER_PORT
from launcher.context import LaunchContext
from launcher.errors import ContainerRestartFailed, ContainerRunFailed, NoToken
from launcher.shell import try_run

logger = logging.getLogger(__name__)

ContainerState = Literal["running", "stopped", "absent"]
EnsureOutcome = Literal["adopted", "started"]

# Docker reports nanosecond precision; datetime handles microseconds
_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(\.\d+)?(Z|[+-]\d{2}:\d{2})?$")


def parse_engine_timestamp(value: str) -> datetime | None:
    """Parse an engine timestamp such as ``2025-01-15T14:23:00.123456789Z``."""
    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        return None
    base, fraction, tz = match.groups()
    fraction = (fraction or ".0")[:7]
    tz = "+00:00" if tz in (None, "Z") else tz
    try:
        parsed = datetime.fromisoformat(f"{base}{fraction}{tz}")
    except ValueError:
        return None
    # Never-started containers report the zero time
    if parsed.year <= 1:
        return None
    return parsed.astimezone(timezone.utc)


class ContainerSupervisor:
    """Inspects, creates, starts, stops and restarts the named container."""

    def __init__(self, ctx: LaunchContext) -> None:
        self.ctx = ctx

    @property
    def name(self) -> str:
        """Container name from the config."""
        return self.ctx.config.container_name

    def _name_filter(self) -> str:
        return f"name=^{self.name}$"

    async def _listed(self, include_stopped: bool) -> bool:
        args = ["docker", "ps"]
        if include_stopped:
            args.append("-a")
        args += ["--filter", self._name_filter(), "--format", "{{.Names}}"]
        result = await try_run(self.ctx.executor, args)
        if not result.ok:
            return False
        return self.name in result.stdout.split()

    async def is_running(self) -> bool:
        """True if the engine lists the container as running.

        An unreachable engine counts as not running.
        """
        return await self._listed(include_stopped=False)

    async def inspect_state(self) -> ContainerState:
        """Classify the container as running, stopped or absent."""
        if await self.is_running():
            return "running"
        if await self._listed(include_stopped=True):
            return "stopped"
        return "absent"

    async def started_at(self) -> datetime | None:
        """When the engine last started the container, if known."""
        result = await try_run(
            self.ctx.executor,
            ["docker", "inspect", "--format", "{{.State.StartedAt}}", self.name],
        )
        if not result.ok:
            return None
        return parse_engine_timestamp(result.stdout)

    def build_run_args(self) -> list[str]:
        """Build the locked-down ``docker run`` command line."""
        config = self.ctx.config
        state = self.ctx.state
        return [
            "docker", "run", "-d",
            "--name", self.name,
            # Isolation
            "--init",
            "--read-only",
            "--tmpfs", "/tmp:rw,noexec,nosuid,size=256m",
            "--tmpfs", "/home/node/.npm:rw,size=64m",
            # Resource limits
            "--memory", config.memory_limit,
            "--memory-swap", config.memory_limit,
            "--cpus", str(config.cpu_limit),
            "--pids-limit", str(config.pids_limit),
            # Privileges
            "--cap-drop", "ALL",
            "--cap-add", "NET_BIND_SERVICE",
            "--security-opt", "no-new-privileges:true",
            # Loopback only
            "-p", f"127.0.0.1:{config.port}:{CONTAINER_PORT}",
            # Persistent state
            "-v", f"{state.config_dir}:/home/node/.openclaw",
            "-v", f"{state.workspace_dir}:/home/node/.openclaw/workspace",
            # Environment
            "-e", "HOME=/home/node",
            "-e", "TERM=xterm-256color",
            "--env-file", str(state.env_file),
            "-e", "NODE_ENV=production",
            "--restart", "unless-stopped",
            config.image,
            "node", "dist/index.js", "gateway",
            "--bind", "lan",
            "--port", str(CONTAINER_PORT),
        ]  # fmt: skip

    async def remove(self) -> None:
        """Force-remove the container; a missing container is fine."""
        result = await try_run(self.ctx.executor, ["docker", "rm", "-f", self.name])
        if not result.ok:
            logger.debug(f"docker rm -f {self.name}: {result.stderr.strip()[:200]}")

    async def ensure_running(self) -> EnsureOutcome:
        """Adopt a running container or replace any other with a fresh one.

        Returns:
            "adopted" if it was already running, "started" if freshly run

        Raises:
            NoToken: No gateway token was loaded during setup
            ContainerRunFailed: docker run exited nonzero
        """
        env = self.ctx.env
        if env is None or not env.configured:
            raise NoToken(self.ctx.state.root)

        state = await self.inspect_state()
        if state == "running":
            self.ctx.steps.done("Container already running")
            return "adopted"

        if state == "stopped":
            # Never restart a possibly misconfigured container in place
            logger.info(f"Removing stopped container {self.name}")
            await self.remove()

        await self.run_fresh()
        return "started"

    async def run_fresh(self) -> None:
        """Create and start the container with the locked-down arguments.

        Raises:
            ContainerRunFailed: docker run exited nonzero
        """
        steps = self.ctx.steps
        steps.running("Starting container (lockdown mode)...")
        result = await self.ctx.executor.run(self.build_run_args())
        if not result.ok:
            raise ContainerRunFailed(result.stderr)
        steps.done("Container started (locked down)")

    async def stop(self) -> bool:
        """Stop the container, best effort.

        Returns:
            True if the engine reported success. Failure ("no such
            container", engine down) means it is already stopped.
        """
        result = await try_run(self.ctx.executor, ["docker", "stop", self.name])
        if not result.ok:
            logger.info(
                f"docker stop {self.name} failed, treating as stopped: "
                f"{result.stderr.strip()[:200]}"
            )
        return result.ok

    async def restart(self) -> None:
        """Restart the container.

        Raises:
            ContainerRestartFailed: docker restart exited nonzero
        """
        result = await try_run(self.ctx.executor, ["docker", "restart", self.name])
        if not result.ok:
            raise ContainerRestartFailed(result.stderr)

    async def logs(self, tail: int = 300) -> str:
        """Recent container output, stderr appended after a separator."""
        result = await try_run(
            self.ctx.executor, ["docker", "logs", "--tail", str(tail), self.name]
        )
        if not result.stdout:
            return result.stderr
        if not result.stderr:
            return result.stdout
        return f"{result.stdout}\n--- stderr ---\n{result.stderr}"
