"""Container engine discovery.

A launcher started from a desktop session often inherits a minimal PATH
(``/usr/bin:/bin:/usr/sbin:/sbin``) that misses the engine's install
location. These helpers check known locations directly on the filesystem
and build an augmented environment for spawned commands.
"""

import os
from pathlib import Path

# Known engine CLI locations, ordered by likelihood. First executable match wins.
BINARY_SEARCH_PATHS: list[tuple[str, str]] = [
    ("Docker Desktop", "/usr/local/bin/docker"),
    ("Docker Desktop", "/Applications/Docker.app/Contents/Resources/bin/docker"),
    ("Docker Desktop", "~/.docker/bin/docker"),
    ("OrbStack", "~/.orbstack/bin/docker"),
    ("OrbStack", "/Applications/OrbStack.app/Contents/Resources/bin/docker"),
    ("Homebrew", "/opt/homebrew/bin/docker"),
    ("Colima", "/opt/homebrew/bin/colima"),
    ("Colima", "/usr/local/bin/colima"),
    ("Rancher Desktop", "~/.rd/bin/docker"),
    ("Podman", "/opt/homebrew/bin/podman"),
    ("Podman", "/usr/local/bin/podman"),
    ("Podman", "~/.local/bin/podman"),
    ("Nix", "~/.nix-profile/bin/docker"),
    ("Nix", "/run/current-system/sw/bin/docker"),
    ("MacPorts", "/opt/local/bin/docker"),
    ("Linux", "/usr/bin/docker"),
]

# Desktop application bundles that provide a Docker-compatible engine
APP_BUNDLE_PATHS: list[tuple[str, str]] = [
    ("Docker Desktop", "/Applications/Docker.app"),
    ("OrbStack", "/Applications/OrbStack.app"),
    ("Rancher Desktop", "/Applications/Rancher Desktop.app"),
    ("Podman Desktop", "/Applications/Podman Desktop.app"),
]

EXTRA_PATH_DIRS: list[str] = [
    "/usr/local/bin",
    "/opt/homebrew/bin",
    "/opt/homebrew/sbin",
    "/Applications/Docker.app/Contents/Resources/bin",
    "~/.docker/bin",
    "~/.orbstack/bin",
    "~/.rd/bin",
    "~/.local/bin",
    "~/.nix-profile/bin",
    "/run/current-system/sw/bin",
    "/opt/local/bin",
]

DEFAULT_PATH = "/usr/bin:/bin:/usr/sbin:/sbin"


def find_engine_binary() -> tuple[str, Path] | None:
    """Find the first executable engine binary without consulting PATH.

    Returns:
        Tuple of (backend name, binary path), or None if nothing is installed
    """
    for backend, raw in BINARY_SEARCH_PATHS:
        path = Path(raw).expanduser()
        if path.is_file() and os.access(path, os.X_OK):
            return backend, path
    return None


def find_installed_app() -> tuple[str, Path] | None:
    """Find an installed desktop engine application bundle."""
    for backend, raw in APP_BUNDLE_PATHS:
        path = Path(raw)
        if path.exists():
            return backend, path
    return None


def augmented_environment(docker_config_dir: Path | None = None) -> dict[str, str]:
    """Return a copy of the process environment with engine locations on PATH.

    Args:
        docker_config_dir: If given, exported as DOCKER_CONFIG so the engine
            CLI uses an isolated config (no desktop credential helpers)

    Returns:
        Environment mapping suitable for subprocess calls
    """
    env = dict(os.environ)
    extra = [str(Path(d).expanduser()) for d in EXTRA_PATH_DIRS]
    env["PATH"] = ":".join(extra + [env.get("PATH", DEFAULT_PATH)])
    if docker_config_dir is not None:
        env["DOCKER_CONFIG"] = str(docker_config_dir)
    return env
