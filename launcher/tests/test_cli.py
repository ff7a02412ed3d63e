"""Tests for CLI module.

These tests drive the click commands against a scripted engine and a
mocked gateway; nothing touches a real Docker installation.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from click.testing import CliRunner

from launcher.cli import _print_step, cli
from launcher.lifecycle import LaunchOrchestrator
from launcher.shell import ScriptedExecutor
from launcher.state_dir import StateDirectory

from launcher.tests.conftest import gateway_transport, healthy_engine, make_config


def token_transport(status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, json={"error": "invalid_grant"})
        return httpx.Response(
            200,
            json={
                "access_token": "cli-access",
                "refresh_token": "cli-refresh",
                "expires_in": 3600,
            },
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def env(tmp_path):
    """Patch config loading and orchestrator construction for CLI runs."""
    config = make_config(tmp_path)
    env = SimpleNamespace(
        config=config,
        executor=ScriptedExecutor(),
        transport=gateway_transport(),
        state=StateDirectory(config.state_dir, default_port=config.port),
    )

    def make_orchestrator(cfg):
        orchestrator = LaunchOrchestrator(
            cfg, env.executor, env.transport, installer=AsyncMock()
        )
        orchestrator.ctx.steps.subscribe(_print_step)
        return orchestrator

    with (
        patch("launcher.cli.LauncherConfig.load", return_value=config),
        patch("launcher.cli._make_orchestrator", side_effect=make_orchestrator),
        patch("launcher.cli.configure_logging"),
    ):
        yield env


class TestCLIGroup:
    """Test the top-level command group."""

    def test_help_lists_commands(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("up", "down", "restart", "reset", "status", "logs", "url", "auth"):
            assert command in result.output

    def test_auth_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["auth", "--help"])

        assert result.exit_code == 0
        assert "login" in result.output
        assert "api-key" in result.output


class TestUpCommand:
    """Test the up command."""

    def test_up_reaches_running(self, env):
        healthy_engine(env.executor)

        result = CliRunner().invoke(cli, ["up", "--no-open"])

        assert result.exit_code == 0, result.output
        assert "Gateway is ready!" in result.output
        assert "OpenClaw is running" in result.output
        assert env.state.read_env().configured

    def test_up_opens_browser(self, env):
        healthy_engine(env.executor)

        with patch("launcher.cli.click.launch") as mock_launch:
            result = CliRunner().invoke(cli, ["up", "--open"])

        assert result.exit_code == 0, result.output
        url = mock_launch.call_args[0][0]
        assert url.startswith("http://localhost:18789/openclaw?token=")
        assert url.endswith(env.state.read_env().gateway_token)

    def test_up_failure_exits_nonzero(self, env):
        env.executor.on("which", ScriptedExecutor.ok("/usr/local/bin/docker"))
        env.executor.on(
            lambda a: a == ["docker", "info"], ScriptedExecutor.fail("daemon down")
        )

        with patch("launcher.cli.click.launch") as mock_launch:
            result = CliRunner().invoke(cli, ["up"])

        assert result.exit_code == 1
        assert "not running" in result.output
        mock_launch.assert_not_called()

    def test_up_refuses_when_locked(self, env):
        env.config.state_dir.mkdir(parents=True)
        # PID 1 always exists
        (env.config.state_dir / "launcher.lock").write_text("1")

        result = CliRunner().invoke(cli, ["up", "--no-open"])

        assert result.exit_code == 1
        assert "Another launcher is running" in result.output
        assert env.executor.command_log == []


class TestContainerCommands:
    """Test down, restart, logs and reset."""

    def test_down(self, env):
        healthy_engine(env.executor)

        result = CliRunner().invoke(cli, ["down"])

        assert result.exit_code == 0
        assert "Stopped." in result.output

    def test_restart_failure(self, env):
        env.executor.on(
            ["docker", "restart"], ScriptedExecutor.fail("No such container")
        )

        result = CliRunner().invoke(cli, ["restart"])

        assert result.exit_code == 1
        assert "Failed to restart container" in result.output

    def test_logs(self, env):
        env.executor.on(["docker", "logs"], ScriptedExecutor.ok("gateway listening"))

        result = CliRunner().invoke(cli, ["logs", "-n", "50"])

        assert result.exit_code == 0
        assert "gateway listening" in result.output
        assert env.executor.calls(lambda a: a[:2] == ["docker", "logs"]) == [
            ["docker", "logs", "--tail", "50", "openclaw"]
        ]

    def test_reset_with_yes(self, env):
        healthy_engine(env.executor)
        env.state.initialize("abc123", 18789)

        result = CliRunner().invoke(cli, ["reset", "--yes"])

        assert result.exit_code == 0
        assert "Local config cleaned up" in result.output
        assert not env.state.env_file.exists()

    def test_reset_aborted(self, env):
        env.state.initialize("abc123", 18789)

        result = CliRunner().invoke(cli, ["reset"], input="n\n")

        assert "Aborted." in result.output
        assert env.state.env_file.exists()
        assert env.executor.command_log == []


class TestStatusCommand:
    """Test the status command."""

    def test_healthy_report(self, env):
        healthy_engine(env.executor, container_running=True)
        env.state.save_api_key("sk-ant-x")

        result = CliRunner().invoke(cli, ["status"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "healthy"
        assert set(data["checks"]) == {"engine", "container", "gateway", "credentials"}

    def test_single_check_failure(self, env):
        env.executor.on(
            lambda a: a == ["docker", "info"], ScriptedExecutor.fail("daemon down")
        )

        result = CliRunner().invoke(cli, ["status", "--check", "engine"])

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert list(data["checks"]) == ["engine"]
        assert data["checks"]["engine"]["status"] == "failed"


class TestUrlCommand:
    """Test the url command."""

    def test_prints_access_url(self, env):
        env.state.initialize("abc123", 18789)

        result = CliRunner().invoke(cli, ["url"])

        assert result.exit_code == 0
        assert result.output.strip() == "http://localhost:18789/openclaw?token=abc123"

    def test_missing_token(self, env):
        result = CliRunner().invoke(cli, ["url"])

        assert result.exit_code == 1


class TestAuthCommands:
    """Test auth login and auth api-key."""

    def test_api_key_saved(self, env):
        result = CliRunner().invoke(cli, ["auth", "api-key", "--key", "sk-ant-test"])

        assert result.exit_code == 0
        assert "API key saved" in result.output
        profile = json.loads(env.state.auth_profile_file.read_text())
        assert profile["profiles"]["anthropic:default"]["key"] == "sk-ant-test"

    def test_api_key_prompt_blank_skips(self, env):
        result = CliRunner().invoke(cli, ["auth", "api-key"], input="\n")

        assert result.exit_code == 0
        assert "Skipped API key" in result.output
        assert not env.state.auth_profile_exists()

    def test_login_saves_credentials(self, env):
        env.transport = token_transport()

        with (
            patch("launcher.cli.Prompt.ask", return_value="the-code#state"),
            patch("launcher.cli.click.launch") as mock_launch,
        ):
            result = CliRunner().invoke(cli, ["auth", "login"])

        assert result.exit_code == 0, result.output
        assert "Signed in with Claude" in result.output
        assert mock_launch.call_args[0][0].startswith("https://claude.ai/oauth/authorize?")
        assert env.state.oauth_credentials_exist()

    def test_login_no_browser(self, env):
        env.transport = token_transport()

        with (
            patch("launcher.cli.Prompt.ask", return_value="the-code"),
            patch("launcher.cli.click.launch") as mock_launch,
        ):
            result = CliRunner().invoke(cli, ["auth", "login", "--no-browser"])

        assert result.exit_code == 0
        mock_launch.assert_not_called()

    def test_login_failure(self, env):
        env.transport = token_transport(status_code=400)

        with patch("launcher.cli.Prompt.ask", return_value="bad-code"):
            result = CliRunner().invoke(cli, ["auth", "login", "--no-browser"])

        assert result.exit_code == 1
        assert "OAuth exchange failed" in result.output
        assert not env.state.oauth_credentials_exist()
