"""Launch orchestrator state machine.

Sequences first-run setup, the runtime probe, the image manager, the
container supervisor and the gateway monitor into one ordered cycle.
The orchestrator is the single error boundary: every failure becomes an
error step and a settled state, never an exception for the caller.

States:
    idle -> working -> running | error | stopped

``working`` is the only transient state. Only one cycle runs at a time.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
from opentelemetry import trace

from launcher import telemetry
from launcher.config import LauncherConfig
from launcher.container import ContainerSupervisor
from launcher.context import EXPECTED_STEP_COUNT, LaunchContext
from launcher.docker_paths import augmented_environment
from launcher.errors import (
    ContainerRestartFailed,
    LauncherError,
    NoToken,
    OAuthError,
    ShellError,
)
from launcher.gateway import GatewayMonitor, GatewayStatus, HealthWatcher
from launcher.images import ImageManager
from launcher.models import LifecycleState, PKCEPair, Step
from launcher.oauth import (
    build_authorize_url,
    exchange_code,
    load_credentials,
    parse_authorization_code,
    refresh_access_token,
    save_credentials,
)
from launcher.runtime import EngineInstaller, RuntimeProbe
from launcher.shell import ShellExecutor, SubprocessExecutor
from launcher.tokens import generate_pkce, generate_secure_token

logger = logging.getLogger(__name__)

MISSING_CREDENTIALS_WARNING = (
    "No model credentials configured. Run 'launcher auth login' "
    "or set them up later in the Control UI."
)


def build_access_url(port: int, token: str) -> str:
    """Control UI URL that logs the browser in with the gateway token."""
    return f"http://localhost:{port}/openclaw?token={token}"


@dataclass(frozen=True)
class LaunchSnapshot:
    """Read-only view handed to observers."""

    state: LifecycleState
    steps: tuple[Step, ...]
    progress: float
    access_url: str | None
    gateway_healthy: bool


SnapshotListener = Callable[[LaunchSnapshot], None]


class CycleStopped(Exception):
    """A stop arrived while a cycle was in flight."""


class LaunchOrchestrator:
    """Brings up, supervises and tears down the OpenClaw container.

    Usage:
        orchestrator = LaunchOrchestrator(LauncherConfig.load())
        state = await orchestrator.start()
        ...
        await orchestrator.stop_container()
        await orchestrator.aclose()
    """

    def __init__(
        self,
        config: LauncherConfig | None = None,
        executor: ShellExecutor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        installer: EngineInstaller | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Launcher configuration (default: LauncherConfig.load())
            executor: Command executor (default: real subprocess executor
                with engine locations on PATH)
            transport: Optional httpx transport for gateway/OAuth requests
            installer: Optional engine installer override
        """
        config = config or LauncherConfig.load()
        if executor is None:
            executor = SubprocessExecutor(
                env=augmented_environment(config.state_dir / ".docker"),
                timeout=config.command_timeout,
            )

        self.ctx = LaunchContext.create(config, executor, transport)
        self.runtime = RuntimeProbe(self.ctx, installer)
        self.images = ImageManager(self.ctx)
        self.container = ContainerSupervisor(self.ctx)
        self.gateway = GatewayMonitor(self.ctx)

        self._state = LifecycleState.IDLE
        self._cycle_lock = asyncio.Lock()
        self._stop_requested = False
        self._listeners: list[SnapshotListener] = []
        self._watcher: HealthWatcher | None = None
        self._pending_pkce: PKCEPair | None = None
        self._tracer = trace.get_tracer(__name__)

        self.container_started_at: datetime | None = None
        self.gateway_healthy = False
        self.gateway_status: GatewayStatus | None = None
        self.auth_expired_banner: str | None = None

        self.ctx.steps.subscribe(self._on_step)

    # ------------------------------------------------------------------
    # Observer views
    # ------------------------------------------------------------------

    @property
    def config(self) -> LauncherConfig:
        return self.ctx.config

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def steps(self) -> tuple[Step, ...]:
        return self.ctx.steps.snapshot()

    @property
    def gateway_token(self) -> str | None:
        return self.ctx.env.gateway_token if self.ctx.env else None

    @property
    def access_url(self) -> str | None:
        """Control UI URL with the gateway token, once a token is known."""
        token = self.gateway_token
        return build_access_url(self.config.port, token) if token else None

    @property
    def completed_steps_count(self) -> int:
        return self.ctx.steps.completed_count

    @property
    def current_step(self) -> Step | None:
        return self.ctx.steps.current

    @property
    def error_steps(self) -> list[Step]:
        return self.ctx.steps.errors

    @property
    def progress(self) -> float:
        return self.ctx.steps.progress(EXPECTED_STEP_COUNT)

    @property
    def health_watch_active(self) -> bool:
        return self._watcher is not None and self._watcher.active

    def uptime_string(self, now: datetime | None = None) -> str:
        """Elapsed time since the container started, as HH:MM:SS."""
        if self.container_started_at is None:
            return "00:00:00"
        now = now or datetime.now(timezone.utc)
        elapsed = max(int((now - self.container_started_at).total_seconds()), 0)
        hours, rest = divmod(elapsed, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    def snapshot(self) -> LaunchSnapshot:
        return LaunchSnapshot(
            state=self._state,
            steps=self.steps,
            progress=self.progress,
            access_url=self.access_url,
            gateway_healthy=self.gateway_healthy,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Receive a snapshot on every state change and every new step.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed")

    def _on_step(self, step: Step) -> None:
        telemetry.record_step(step.status.value)
        self._notify()

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _set_state(self, state: LifecycleState) -> None:
        if state != LifecycleState.RUNNING:
            self._stop_health_watch()
        if state == self._state:
            return
        logger.info(f"State {self._state.value} -> {state.value}")
        self._state = state
        self._notify()

    def _fail(self, message: str) -> None:
        self.ctx.steps.error(message)
        self._set_state(LifecycleState.ERROR)

    def _mark_stopped(self) -> None:
        self.container_started_at = None
        self.gateway_healthy = False
        self.gateway_status = None
        self._set_state(LifecycleState.STOPPED)

    async def _settle_stop_request(self) -> bool:
        """Leave the container stopped if stop_container() ran mid-cycle.

        Returns:
            True if a pending stop was applied
        """
        if not self._stop_requested:
            return False
        self._stop_requested = False
        logger.info("Stop requested during the cycle, leaving container stopped")
        try:
            await self.container.stop()
        except Exception as e:
            logger.warning(f"Stop failed, treating container as stopped: {e}")
        self._mark_stopped()
        return True

    async def _enter_running(self, started_at: datetime | None = None) -> None:
        if self._stop_requested:
            raise CycleStopped("running")
        self.container_started_at = started_at or datetime.now(timezone.utc)
        self._set_state(LifecycleState.RUNNING)
        self._start_health_watch()

    def _start_health_watch(self) -> None:
        interval = self.config.health_check_interval
        if not interval or interval <= 0:
            return
        if self._watcher is None:
            self._watcher = HealthWatcher(self.gateway, interval, self._on_health)
        self._watcher.start()

    def _stop_health_watch(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()

    def _on_health(self, healthy: bool, status: GatewayStatus | None) -> None:
        self.gateway_healthy = healthy
        self.gateway_status = status
        self._notify()

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        if self._stop_requested:
            raise CycleStopped(name)
        with self._tracer.start_as_current_span(f"launcher.stage.{name}") as span:
            span.set_attribute("launcher.container", self.config.container_name)
            yield

    # ------------------------------------------------------------------
    # Orchestration cycle
    # ------------------------------------------------------------------

    async def start(self) -> LifecycleState:
        """Run one orchestration cycle.

        Allowed from idle, stopped and error. A start() while a cycle is
        in flight, or while running, is rejected and returns the current
        state unchanged.

        Returns:
            Settled state: running, error, stopped if stop_container() arrived
            mid-cycle (or the unchanged state if rejected)
        """
        if self._cycle_lock.locked() or self._state in (
            LifecycleState.WORKING,
            LifecycleState.RUNNING,
        ):
            logger.warning(f"start() ignored while {self._state.value}")
            return self._state

        async with self._cycle_lock:
            self._stop_requested = False
            started = time.monotonic()
            try:
                self.ctx.steps.clear()
                self._set_state(LifecycleState.WORKING)
                await self._run_cycle()
            except CycleStopped as e:
                logger.info(f"Cycle stopped before {e}")
            except LauncherError as e:
                self._fail(e.message)
            except ShellError as e:
                self._fail(f"Could not run a required command: {e}")
            except Exception as e:
                logger.exception("Unexpected failure during launch")
                self._fail(f"Unexpected error: {e}")

            await self._settle_stop_request()
            telemetry.record_cycle(self._state.value, time.monotonic() - started)
            return self._state

    async def _run_cycle(self) -> None:
        with self._stage("setup"):
            self._first_run_setup()

        with self._stage("recovery"):
            if await self._try_recover():
                return

        with self._stage("engine"):
            await self.runtime.ensure_engine()

        with self._stage("auth"):
            await self._refresh_oauth_if_needed()
            if not self.ctx.state.has_credentials():
                self.ctx.steps.warning(MISSING_CREDENTIALS_WARNING)

        with self._stage("image"):
            await self.images.ensure_image()

        with self._stage("container"):
            await self.container.ensure_running()

        with self._stage("gateway"):
            await self.gateway.wait_until_ready()

        await self._enter_running()

    def _first_run_setup(self) -> None:
        state = self.ctx.state
        steps = self.ctx.steps
        state.migrate_legacy()

        if state.env_file.exists():
            env = state.read_env()
            if not env.configured:
                raise NoToken(state.root)
            self.ctx.env = env
            steps.done("Loaded existing configuration")
            return

        steps.running("First-time setup...")
        token = generate_secure_token()
        self.ctx.env = state.initialize(token, self.config.port)
        steps.done("Configuration created")

    async def _try_recover(self) -> bool:
        """Adopt a container left running by a previous launcher session."""
        if not (await self.runtime.info()).ok:
            return False
        if not await self.container.is_running():
            return False

        self.ctx.steps.done("Recovered running container")
        started_at = await self.container.started_at()
        healthy, status = await self.gateway.check_health()
        self._on_health(healthy, status)
        await self._enter_running(started_at)
        return True

    async def _refresh_oauth_if_needed(self) -> None:
        creds = load_credentials(self.ctx.state.oauth_file)
        if creds is None or not creds.is_expired():
            return

        try:
            refreshed = await refresh_access_token(creds.refresh, self.ctx.transport)
            save_credentials(self.ctx.state.oauth_file, refreshed)
        except OAuthError as e:
            logger.warning(f"OAuth refresh failed: {e.reason}")
            self.auth_expired_banner = "Auth expired. Re-authenticate in Control UI"
            self.ctx.steps.warning("OAuth token expired (refresh failed)")
            return

        self.auth_expired_banner = None
        self.ctx.steps.done("OAuth token refreshed")

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def stop_container(self) -> LifecycleState:
        """Stop the container. Always ends in ``stopped``.

        A cycle in flight sees the request at its next stage boundary and
        settles in ``stopped`` instead of running.
        """
        if self._cycle_lock.locked():
            self._stop_requested = True

        steps = self.ctx.steps
        steps.running("Stopping OpenClaw...")
        try:
            await self.container.stop()
        except Exception as e:
            logger.warning(f"Stop failed, treating container as stopped: {e}")
        steps.done("Stopped.")

        self._mark_stopped()
        return self._state

    async def restart_container(self) -> LifecycleState:
        """Restart the container.

        Returns:
            running on success, error if the engine refused, stopped if
            stop_container() arrived meanwhile
        """
        if self._cycle_lock.locked():
            logger.warning("restart_container() ignored while a cycle is running")
            return self._state

        async with self._cycle_lock:
            self._stop_requested = False
            steps = self.ctx.steps
            self._set_state(LifecycleState.WORKING)
            steps.running("Restarting...")
            self.gateway_healthy = False

            try:
                await self.container.restart()
                steps.done("Restarted")
                await self._enter_running()
            except CycleStopped:
                pass
            except LauncherError as e:
                self._fail(e.message)
            except ShellError as e:
                self._fail(ContainerRestartFailed(str(e)).message)

            await self._settle_stop_request()
            return self._state

    async def reset_everything(self) -> LifecycleState:
        """Force-remove the container and delete the whole state directory.

        Destructive and irreversible. Missing container or files are not
        errors. Leaves the orchestrator idle.
        """
        async with self._cycle_lock:
            steps = self.ctx.steps
            self._stop_health_watch()
            steps.running("Stopping container...")
            await self.container.stop()
            await self.container.remove()
            steps.done("Container removed")

            self.ctx.state.remove()
            steps.done("Local config cleaned up")

            self.ctx.env = None
            self._pending_pkce = None
            self.container_started_at = None
            self.gateway_healthy = False
            self.gateway_status = None
            self.auth_expired_banner = None
            self._set_state(LifecycleState.IDLE)
            return self._state

    async def fetch_logs(self, tail: int = 300) -> str:
        return await self.container.logs(tail)

    def submit_api_key(self, key: str) -> Step:
        """Store an Anthropic API key, or record that auth was skipped."""
        key = key.strip()
        if not key:
            return self.ctx.steps.warning(
                "Skipped API key. Set it up later in Control UI"
            )
        self.ctx.state.save_api_key(key)
        return self.ctx.steps.done("API key saved")

    def begin_oauth(self) -> str:
        """Start an OAuth sign-in; returns the URL the user must open."""
        self._pending_pkce = generate_pkce()
        self.ctx.steps.running("Opened browser for Anthropic sign-in")
        return build_authorize_url(self._pending_pkce)

    async def complete_oauth(self, user_input: str) -> bool:
        """Exchange the pasted authorization code and store credentials.

        Returns:
            True if credentials were saved
        """
        pkce = self._pending_pkce
        if pkce is None:
            self.ctx.steps.error("No PKCE session. Try signing in again.")
            return False

        code = parse_authorization_code(user_input)
        self.ctx.steps.running("Exchanging authorization code...")
        try:
            creds = await exchange_code(code, pkce.verifier, self.ctx.transport)
        except OAuthError as e:
            self.ctx.steps.error(f"OAuth exchange failed: {e.reason}")
            return False

        save_credentials(self.ctx.state.oauth_file, creds)
        self._pending_pkce = None
        self.auth_expired_banner = None
        self.ctx.steps.done("Signed in with Claude")
        return True

    async def aclose(self) -> None:
        """Cancel periodic work owned by this orchestrator."""
        self._stop_health_watch()
        await asyncio.sleep(0)
