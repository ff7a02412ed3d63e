"""Tests for engine discovery."""

import os
from pathlib import Path
from unittest.mock import patch

from launcher import docker_paths
from launcher.docker_paths import (
    augmented_environment,
    find_engine_binary,
    find_installed_app,
)


class TestFindEngineBinary:
    """Tests for find_engine_binary."""

    def test_finds_first_executable(self, tmp_path: Path):
        missing = tmp_path / "missing" / "docker"
        present = tmp_path / "bin" / "docker"
        present.parent.mkdir()
        present.write_text("#!/bin/sh\n")
        present.chmod(0o755)

        paths = [("Missing", str(missing)), ("Found", str(present))]
        with patch.object(docker_paths, "BINARY_SEARCH_PATHS", paths):
            assert find_engine_binary() == ("Found", present)

    def test_skips_non_executable(self, tmp_path: Path):
        plain = tmp_path / "docker"
        plain.write_text("")
        plain.chmod(0o644)

        with patch.object(docker_paths, "BINARY_SEARCH_PATHS", [("X", str(plain))]):
            assert find_engine_binary() is None


class TestFindInstalledApp:
    """Tests for find_installed_app."""

    def test_finds_bundle(self, tmp_path: Path):
        app = tmp_path / "Docker.app"
        app.mkdir()

        with patch.object(docker_paths, "APP_BUNDLE_PATHS", [("Docker Desktop", str(app))]):
            assert find_installed_app() == ("Docker Desktop", app)

    def test_none_when_absent(self, tmp_path: Path):
        bundles = [("Docker Desktop", str(tmp_path / "nope.app"))]
        with patch.object(docker_paths, "APP_BUNDLE_PATHS", bundles):
            assert find_installed_app() is None


class TestAugmentedEnvironment:
    """Tests for augmented_environment."""

    def test_prepends_engine_dirs(self):
        with patch.dict(os.environ, {"PATH": "/usr/bin:/bin"}):
            env = augmented_environment()

        assert env["PATH"].startswith("/usr/local/bin:")
        assert env["PATH"].endswith(":/usr/bin:/bin")

    def test_sets_docker_config(self, tmp_path: Path):
        env = augmented_environment(tmp_path / ".docker")

        assert env["DOCKER_CONFIG"] == str(tmp_path / ".docker")

    def test_does_not_mutate_process_env(self):
        before = os.environ.get("PATH")

        augmented_environment()

        assert os.environ.get("PATH") == before
