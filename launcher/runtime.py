"""Container engine probe and installer.

Verifies the engine CLI is discoverable, installs Docker Desktop when
nothing is present (macOS only), and starts the engine daemon when it is
installed but unresponsive.
"""

import logging
import sys
import tempfile
from collections.abc import Callable
from pathlib import Path

import httpx

from launcher.context import LaunchContext
from launcher.docker_paths import find_engine_binary, find_installed_app
from launcher.errors import EngineInstallFailed, EngineNotInstalled, EngineNotRunning
from launcher.models import ShellResult
from launcher.retry import retry_until
from launcher.shell import try_run

logger = logging.getLogger(__name__)

DMG_URLS = {
    "arm64": "https://desktop.docker.com/mac/main/arm64/Docker.dmg",
    "x86_64": "https://desktop.docker.com/mac/main/amd64/Docker.dmg",
}
DOCKER_APP = Path("/Applications/Docker.app")
DMG_VOLUME = Path("/Volumes/Docker")
DOWNLOAD_TIMEOUT = 600.0

# Returns (label, path) of an engine install, or None
EngineLocator = Callable[[], tuple[str, Path] | None]


class EngineInstaller:
    """Downloads and installs Docker Desktop from its DMG.

    Only macOS is supported; on other platforms install() raises
    EngineNotInstalled so the user installs the engine themselves.
    """

    def __init__(
        self,
        ctx: LaunchContext,
        platform: str = sys.platform,
        download_dir: Path | None = None,
        volume_path: Path = DMG_VOLUME,
        target_app: Path = DOCKER_APP,
    ) -> None:
        self.ctx = ctx
        self.platform = platform
        self.download_dir = download_dir
        self.volume_path = volume_path
        self.target_app = target_app

    async def install(self) -> None:
        """Run the full download, mount, copy, detach flow.

        Raises:
            EngineNotInstalled: On unsupported platforms
            EngineInstallFailed: If any step of the flow fails
        """
        if self.platform != "darwin":
            logger.info(f"Automatic engine install not supported on {self.platform}")
            raise EngineNotInstalled()

        steps = self.ctx.steps
        run = self.ctx.executor.run
        steps.running("Docker Desktop not found. Downloading...")

        arch = (await try_run(self.ctx.executor, ["uname", "-m"])).stdout.strip()
        url = DMG_URLS.get(arch, DMG_URLS["x86_64"])

        download_dir = self.download_dir or Path(tempfile.gettempdir())
        dmg_path = download_dir / "Docker.dmg"
        dmg_path.unlink(missing_ok=True)

        steps.running(
            f"Downloading Docker Desktop ({arch or 'unknown'})... "
            "This may take a few minutes."
        )
        await self._download(url, dmg_path)
        steps.done("Download complete")
        steps.running("Installing Docker Desktop...")

        mount = await run(["hdiutil", "attach", "-nobrowse", "-quiet", str(dmg_path)])
        if not mount.ok:
            raise EngineInstallFailed(f"Failed to mount DMG: {mount.stderr}")

        source_app = self.volume_path / "Docker.app"
        try:
            if not source_app.exists():
                raise EngineInstallFailed("Docker.app not found in mounted DMG")

            copy = await run(["/bin/cp", "-R", str(source_app), str(self.target_app)])
            if not copy.ok:
                steps.warning("Requesting administrator permission to install...")
                script = (
                    f"do shell script \"cp -R '{source_app}' '{self.target_app}'\" "
                    "with administrator privileges"
                )
                admin_copy = await run(["osascript", "-e", script])
                if not admin_copy.ok:
                    raise EngineInstallFailed(
                        f"Installation cancelled or failed: {admin_copy.stderr}"
                    )
        finally:
            await try_run(
                self.ctx.executor, ["hdiutil", "detach", str(self.volume_path), "-quiet"]
            )
            dmg_path.unlink(missing_ok=True)

        steps.done("Docker Desktop installed")

    async def _download(self, url: str, dest: Path) -> None:
        logger.info(f"Downloading {url} -> {dest}")
        try:
            async with httpx.AsyncClient(
                timeout=DOWNLOAD_TIMEOUT,
                follow_redirects=True,
                transport=self.ctx.transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(dest, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
        except httpx.HTTPError as e:
            dest.unlink(missing_ok=True)
            raise EngineInstallFailed(f"Download failed: {e}") from e


class RuntimeProbe:
    """Makes sure the container engine is installed and responsive."""

    def __init__(
        self,
        ctx: LaunchContext,
        installer: EngineInstaller | None = None,
        platform: str = sys.platform,
        binary_finder: EngineLocator = find_engine_binary,
        app_finder: EngineLocator = find_installed_app,
    ) -> None:
        """Initialize the probe.

        Args:
            ctx: Launch context
            installer: Engine installer (default: Docker Desktop DMG flow)
            platform: Platform name as reported by sys.platform
            binary_finder: Looks for an engine CLI outside PATH
            app_finder: Looks for an installed engine desktop app
        """
        self.ctx = ctx
        self.platform = platform
        self.installer = installer or EngineInstaller(ctx, platform=platform)
        self.binary_finder = binary_finder
        self.app_finder = app_finder

    async def info(self) -> ShellResult:
        return await try_run(self.ctx.executor, ["docker", "info"])

    async def is_responsive(self) -> bool:
        return (await self.info()).ok

    async def cli_exists(self) -> bool:
        which = await try_run(self.ctx.executor, ["which", "docker"])
        if which.ok:
            return True
        return self.binary_finder() is not None

    async def ensure_engine(self) -> None:
        """Probe, install if absent, start the daemon if unresponsive.

        Raises:
            EngineNotInstalled: Engine missing and cannot be installed here
            EngineInstallFailed: Install flow failed
            EngineNotRunning: Daemon never answered within the retry budget
        """
        steps = self.ctx.steps
        steps.running("Checking Docker...")

        if not await self.cli_exists() and self.app_finder() is None:
            await self.installer.install()

        if await self.is_responsive():
            steps.done("Docker is ready")
            return

        steps.warning("Docker not running. Starting Docker Desktop...")
        await self._launch_daemon()

        outcome = await retry_until(
            self.info,
            self.ctx.config.engine_retry,
            succeeded=lambda r: r.ok,
            label="docker info",
        )
        if not outcome.succeeded:
            raise EngineNotRunning(outcome.value.stderr)

        steps.done("Docker is ready")

    async def _launch_daemon(self) -> None:
        """Best-effort start of the engine's desktop app or service."""
        if self.platform == "darwin":
            app = self.app_finder()
            app_path = app[1] if app else DOCKER_APP
            args = ["open", str(app_path)]
        elif self.platform.startswith("linux"):
            args = ["systemctl", "--user", "start", "docker-desktop"]
        else:
            logger.info(f"Don't know how to start the engine on {self.platform}")
            return

        result = await try_run(self.ctx.executor, args)
        if not result.ok:
            logger.warning(f"Engine launch command failed: {result.stderr.strip()[:200]}")
