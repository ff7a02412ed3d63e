"""Error taxonomy for the launcher.

Every error renders a non-empty, actionable message. Components raise these;
the launch orchestrator converts them into error steps.
"""

from pathlib import Path

# Diagnostic text from external commands is cut to this length in messages
MAX_REASON_LENGTH = 200


def _clip(reason: str) -> str:
    reason = reason.strip()
    return reason[:MAX_REASON_LENGTH] if reason else "unknown error"


class LauncherError(Exception):
    """Base exception for launcher errors.

    Use this for user-facing errors that should have actionable messages.
    """

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__(self.message)

    @property
    def message(self) -> str:
        return "OpenClaw Launcher failed."


class EngineNotInstalled(LauncherError):
    """The container engine binary could not be found."""

    @property
    def message(self) -> str:
        return "Docker Desktop is required. Please install it and try again."


class EngineInstallFailed(LauncherError):
    """The engine install flow itself failed or was cancelled."""

    @property
    def message(self) -> str:
        return f"Docker Desktop installation failed: {_clip(self.reason)}"


class EngineNotRunning(LauncherError):
    """The engine binary exists but the daemon never became responsive."""

    @property
    def message(self) -> str:
        return "Docker Desktop is not running. Please start it and try again."


class ImagePullFailed(LauncherError):
    """The image could not be pulled and no cached copy exists."""

    @property
    def message(self) -> str:
        return f"Failed to pull Docker image: {_clip(self.reason)}"


class ContainerRunFailed(LauncherError):
    """``docker run`` exited nonzero (commonly a port conflict)."""

    @property
    def message(self) -> str:
        return f"Failed to start container: {_clip(self.reason)}"


class ContainerRestartFailed(LauncherError):
    """``docker restart`` exited nonzero."""

    @property
    def message(self) -> str:
        return f"Failed to restart container: {_clip(self.reason)}"


class NoToken(LauncherError):
    """First-run setup never completed or the state directory is corrupted."""

    def __init__(self, state_dir: Path | str = "~/.openclaw-launcher") -> None:
        self.state_dir = str(state_dir)
        super().__init__(self.state_dir)

    @property
    def message(self) -> str:
        return (
            "Gateway token not generated. "
            f"Try resetting: rm -rf {self.state_dir} (or run 'launcher reset')"
        )


class GatewayUnreachable(LauncherError):
    """The gateway did not answer within the readiness budget (non-fatal)."""

    @property
    def message(self) -> str:
        return "Gateway is still starting. Try opening the browser anyway."


class OAuthError(LauncherError):
    """Authorization code exchange or token refresh failed."""

    @property
    def message(self) -> str:
        return f"Anthropic sign-in failed: {_clip(self.reason)}"


class ShellError(Exception):
    """Raised when a command cannot be invoked at all (spawn failure)."""

    pass
