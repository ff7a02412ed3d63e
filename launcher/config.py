"""Configuration for the launcher.

Provides centralized configuration with sensible defaults, an optional
``settings.json`` in the state directory, and environment variable
overrides.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from launcher.retry import RetryConfig

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".openclaw-launcher"
LEGACY_STATE_DIR = Path.home() / ".openclaw-docker"

# Port the gateway listens on inside the container
CONTAINER_PORT = 18789

# Keys of settings.json that map onto config fields, with accepted JSON types
SETTINGS_TYPES: dict[str, type | tuple[type, ...]] = {
    "image": str,
    "memory_limit": str,
    "cpu_limit": (int, float),
    "port": int,
    "health_check_interval": (int, float, type(None)),
    "open_browser_on_start": bool,
}
SETTINGS_KEYS = tuple(SETTINGS_TYPES)
_FLOAT_SETTINGS = ("cpu_limit", "health_check_interval")


@dataclass
class LauncherConfig:
    """Configuration for one launcher instance.

    All settings have sensible defaults but can be overridden via
    settings.json and environment variables using the load() factory.
    """

    # Workload
    container_name: str = "openclaw"
    image: str = "ghcr.io/openclaw/openclaw:latest"
    port: int = 18789
    memory_limit: str = "2g"
    cpu_limit: float = 2.0
    pids_limit: int = 256

    # State
    state_dir: Path = field(default_factory=lambda: DEFAULT_STATE_DIR)
    legacy_state_dir: Path | None = field(default_factory=lambda: LEGACY_STATE_DIR)

    # Polling budgets
    engine_retry: RetryConfig = field(default_factory=lambda: RetryConfig(45, 2.0))
    gateway_retry: RetryConfig = field(default_factory=lambda: RetryConfig(30, 1.0))
    health_check_interval: float | None = 5.0
    command_timeout: float = 300
    soft_failure_threshold: int = 3

    # Presentation hints
    open_browser_on_start: bool = True

    # Telemetry
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTLP_ENDPOINT", "http://localhost:4317")
    )
    service_name: str = "openclaw-launcher"

    @property
    def settings_path(self) -> Path:
        return self.state_dir / "settings.json"

    @property
    def gateway_url(self) -> str:
        return f"http://localhost:{self.port}/openclaw/"

    @property
    def status_url(self) -> str:
        return f"http://localhost:{self.port}/openclaw/api/status"

    @classmethod
    def from_env(cls, **overrides: Any) -> "LauncherConfig":
        """Load config with environment variable overrides.

        Environment variables:
            LAUNCHER_STATE_DIR: Override state_dir (default: ~/.openclaw-launcher)
            LAUNCHER_IMAGE: Override image
            LAUNCHER_PORT: Override port (default: 18789)
            LAUNCHER_MEMORY_LIMIT: Override memory_limit (default: 2g)
            LAUNCHER_CPU_LIMIT: Override cpu_limit (default: 2.0)
            LAUNCHER_HEALTH_INTERVAL: Override health_check_interval (default: 5)
            OTLP_ENDPOINT: Override otlp_endpoint (default: http://localhost:4317)
        """
        values: dict[str, Any] = {}
        if state_dir := os.getenv("LAUNCHER_STATE_DIR"):
            values["state_dir"] = Path(state_dir).expanduser()
        if image := os.getenv("LAUNCHER_IMAGE"):
            values["image"] = image
        if port := os.getenv("LAUNCHER_PORT"):
            values["port"] = int(port)
        if memory := os.getenv("LAUNCHER_MEMORY_LIMIT"):
            values["memory_limit"] = memory
        if cpus := os.getenv("LAUNCHER_CPU_LIMIT"):
            values["cpu_limit"] = float(cpus)
        if interval := os.getenv("LAUNCHER_HEALTH_INTERVAL"):
            values["health_check_interval"] = float(interval)
        values.update(overrides)
        return cls(**values)

    @classmethod
    def load(cls, **overrides: Any) -> "LauncherConfig":
        """Load settings.json from the state directory, then apply env overrides.

        A missing or corrupt settings file falls back to defaults.
        """
        base = cls.from_env(**overrides)
        settings = read_settings(base.settings_path)
        env_fields = _env_overridden_fields()
        for key, value in settings.items():
            if key in env_fields or key in overrides:
                continue
            setattr(base, key, value)
        return base


def _env_overridden_fields() -> set[str]:
    mapping = {
        "LAUNCHER_IMAGE": "image",
        "LAUNCHER_PORT": "port",
        "LAUNCHER_MEMORY_LIMIT": "memory_limit",
        "LAUNCHER_CPU_LIMIT": "cpu_limit",
        "LAUNCHER_HEALTH_INTERVAL": "health_check_interval",
    }
    return {name for var, name in mapping.items() if os.getenv(var)}


def read_settings(path: Path) -> dict[str, Any]:
    """Read known keys from settings.json.

    Values of the wrong JSON type are logged and dropped so the field
    keeps its default.

    Returns:
        Dict of recognized settings, empty if the file is missing or invalid
    """
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable settings file {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring settings file {path}: expected a JSON object")
        return {}

    settings: dict[str, Any] = {}
    for key in SETTINGS_KEYS:
        if key not in data:
            continue
        value = data[key]
        if not _valid_setting(key, value):
            logger.warning(f"Ignoring setting {key}={value!r} in {path}: wrong type")
            continue
        if key in _FLOAT_SETTINGS and value is not None:
            value = float(value)
        settings[key] = value
    return settings


def _valid_setting(key: str, value: Any) -> bool:
    expected = SETTINGS_TYPES[key]
    # bool is an int subclass; only open_browser_on_start takes one
    if isinstance(value, bool) and expected is not bool:
        return False
    return isinstance(value, expected)


def save_settings(config: LauncherConfig) -> Path:
    """Persist the user-editable subset of the config to settings.json.

    Returns:
        Path of the written file
    """
    path = config.settings_path
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {key: getattr(config, key) for key in SETTINGS_KEYS}
    with open(path, "w") as f:
        json.dump(data, f, indent=2, sort_keys=True)
    return path
