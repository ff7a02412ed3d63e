"""State directory layout and first-run files.

The state directory is the one piece of persistent shared state:

    <root>/.env                                          OPENCLAW_GATEWAY_TOKEN, OPENCLAW_PORT
    <root>/config/openclaw.json                          gateway configuration
    <root>/config/agents/default/agent/auth-profiles.json
    <root>/config/credentials/oauth.json
    <root>/workspace/                                    bind-mounted into the container

It is read once during setup and otherwise only gains new files.
"""

import json
import logging
import os
import shutil
from pathlib import Path

from launcher.models import EnvState

logger = logging.getLogger(__name__)

TOKEN_KEY = "OPENCLAW_GATEWAY_TOKEN"
PORT_KEY = "OPENCLAW_PORT"
SERVICE_CONFIG_NAME = "openclaw.json"
CONTAINER_WORKSPACE = "/home/node/.openclaw/workspace"
DEFAULT_MODEL = "anthropic/claude-opus-4-5"


def parse_env(content: str) -> dict[str, str]:
    """Parse flat KEY=VALUE lines, skipping blanks and comments."""
    env: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, value = line.split("=", 1)
            env[key.strip()] = value.strip()
    return env


def service_config(token: str) -> dict:
    """Gateway configuration written on first run."""
    return {
        "gateway": {
            "mode": "local",
            "bind": "lan",
            "auth": {"mode": "token", "token": token},
            "controlUi": {
                "enabled": True,
                "basePath": "/openclaw",
                "dangerouslyDisableDeviceAuth": True,
            },
        },
        "agents": {
            "defaults": {
                "workspace": CONTAINER_WORKSPACE,
                "model": {"primary": DEFAULT_MODEL},
            }
        },
    }


def _write_private(path: Path, content: str) -> None:
    """Write a file atomically with owner-only permissions."""
    tmp = path.with_name(f".{path.name}.tmp")
    with open(tmp, "w") as f:
        f.write(content)
    os.chmod(tmp, 0o600)
    tmp.replace(path)


class StateDirectory:
    """Paths and file operations under the launcher state directory.

    Attributes:
        root: State directory root
        default_port: Port used when the .env file does not name one
        legacy_root: Older state directory migrated on first access
    """

    def __init__(
        self,
        root: Path,
        default_port: int = 18789,
        legacy_root: Path | None = None,
    ) -> None:
        self.root = root
        self.default_port = default_port
        self.legacy_root = legacy_root

    @property
    def env_file(self) -> Path:
        return self.root / ".env"

    @property
    def config_dir(self) -> Path:
        return self.root / "config"

    @property
    def workspace_dir(self) -> Path:
        return self.root / "workspace"

    @property
    def service_config_file(self) -> Path:
        return self.config_dir / SERVICE_CONFIG_NAME

    @property
    def agent_dir(self) -> Path:
        return self.config_dir / "agents" / "default" / "agent"

    @property
    def sessions_dir(self) -> Path:
        return self.config_dir / "agents" / "default" / "sessions"

    @property
    def auth_profile_file(self) -> Path:
        return self.agent_dir / "auth-profiles.json"

    @property
    def oauth_file(self) -> Path:
        return self.config_dir / "credentials" / "oauth.json"

    @property
    def docker_config_dir(self) -> Path:
        return self.root / ".docker"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    def migrate_legacy(self) -> bool:
        """Move the legacy state directory into place if only it exists.

        Returns:
            True if a migration happened
        """
        if self.legacy_root is None:
            return False
        if self.legacy_root.exists() and not self.root.exists():
            shutil.move(str(self.legacy_root), str(self.root))
            logger.info(f"Migrated {self.legacy_root} -> {self.root}")
            return True
        return False

    def read_env(self) -> EnvState:
        """Read the gateway token and port from .env.

        Returns:
            EnvState; gateway_token is None when the file or key is missing
        """
        if not self.env_file.exists():
            return EnvState(gateway_token=None, port=self.default_port)

        env = parse_env(self.env_file.read_text(encoding="utf-8"))
        token = env.get(TOKEN_KEY) or None
        try:
            port = int(env.get(PORT_KEY, self.default_port))
        except ValueError:
            logger.warning(f"Invalid {PORT_KEY} in {self.env_file}, using default")
            port = self.default_port
        return EnvState(gateway_token=token, port=port)

    def initialize(self, token: str, port: int) -> EnvState:
        """Create first-run layout: directories, .env and service config.

        Args:
            token: Freshly generated gateway token
            port: Host port written to .env

        Returns:
            EnvState for the written files
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.workspace_dir.mkdir(parents=True, exist_ok=True)

        _write_private(self.env_file, f"{TOKEN_KEY}={token}\n{PORT_KEY}={port}\n")
        _write_private(
            self.service_config_file,
            json.dumps(service_config(token), indent=2) + "\n",
        )

        self.agent_dir.mkdir(parents=True, exist_ok=True)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized state directory {self.root}")
        return EnvState(gateway_token=token, port=port)

    def auth_profile_exists(self) -> bool:
        return self.auth_profile_file.exists()

    def oauth_credentials_exist(self) -> bool:
        return self.oauth_file.exists()

    def has_credentials(self) -> bool:
        return self.auth_profile_exists() or self.oauth_credentials_exist()

    def save_api_key(self, key: str) -> Path:
        """Write an Anthropic API key auth profile.

        Returns:
            Path of the auth profile file
        """
        self.agent_dir.mkdir(parents=True, exist_ok=True)
        profile = {
            "version": 1,
            "profiles": {
                "anthropic:default": {
                    "type": "api_key",
                    "provider": "anthropic",
                    "key": key,
                }
            },
        }
        _write_private(self.auth_profile_file, json.dumps(profile, indent=2) + "\n")
        return self.auth_profile_file

    def remove(self) -> bool:
        """Delete the whole state directory.

        Returns:
            True if something was removed, False if it did not exist
        """
        if not self.root.exists():
            return False
        shutil.rmtree(self.root, ignore_errors=True)
        return True
