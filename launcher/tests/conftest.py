"""Shared fixtures for launcher tests."""

from pathlib import Path

import httpx
import pytest

from launcher.config import LauncherConfig
from launcher.context import LaunchContext
from launcher.retry import RetryConfig
from launcher.shell import ScriptedExecutor

FAST_RETRY = RetryConfig(max_attempts=3, delay=0.0)


def make_config(tmp_path: Path, **overrides) -> LauncherConfig:
    """Config pointed at a temp state directory with instant retries."""
    values = dict(
        state_dir=tmp_path / "state",
        legacy_state_dir=tmp_path / "legacy",
        engine_retry=FAST_RETRY,
        gateway_retry=FAST_RETRY,
        health_check_interval=None,
    )
    values.update(overrides)
    return LauncherConfig(**values)


def gateway_transport(status_code: int = 200, json_body: dict | None = None):
    """MockTransport answering every request with the same response."""

    def handler(request: httpx.Request) -> httpx.Response:
        if json_body is not None:
            return httpx.Response(status_code, json=json_body)
        return httpx.Response(status_code, text="ok")

    return httpx.MockTransport(handler)


def unreachable_transport():
    """MockTransport that fails every request with a connection error."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


def healthy_engine(executor: ScriptedExecutor, container_running: bool = False) -> None:
    """Script an engine where every command succeeds.

    The container is listed as running only if ``container_running``.
    """
    executor.on("which", ScriptedExecutor.ok("/usr/local/bin/docker\n"))
    if not container_running:
        executor.on(
            lambda a: a[:2] == ["docker", "ps"], ScriptedExecutor.ok("")
        )
    else:
        executor.on(
            lambda a: a[:2] == ["docker", "ps"], ScriptedExecutor.ok("openclaw\n")
        )
    executor.on(
        lambda a: a[:3] == ["docker", "inspect", "--format"],
        ScriptedExecutor.ok("2025-01-15T14:23:00.123456789Z\n"),
    )
    executor.on("docker", ScriptedExecutor.ok())


@pytest.fixture
def config(tmp_path: Path) -> LauncherConfig:
    return make_config(tmp_path)


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def ctx(config: LauncherConfig, executor: ScriptedExecutor) -> LaunchContext:
    return LaunchContext.create(config, executor, gateway_transport())
