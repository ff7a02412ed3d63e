"""CLI for the OpenClaw launcher.

Provides commands to bring the sandboxed OpenClaw container up and down,
inspect it, and configure model credentials.
"""

import asyncio
import json
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt

from launcher.config import LauncherConfig
from launcher.errors import NoToken
from launcher.health import CHECK_ORDER, get_health
from launcher.lifecycle import LaunchOrchestrator, build_access_url
from launcher.lock import LaunchLock
from launcher.log import configure_logging
from launcher.models import LifecycleState, Step, StepStatus
from launcher.state_dir import StateDirectory
from launcher.telemetry import create_metrics, setup_telemetry

console = Console()

STEP_ICONS = {
    StepStatus.PENDING: "[dim]·[/dim]",
    StepStatus.RUNNING: "[cyan]…[/cyan]",
    StepStatus.DONE: "[green]✓[/green]",
    StepStatus.WARNING: "[yellow]![/yellow]",
    StepStatus.ERROR: "[red]✗[/red]",
}


def _print_step(step: Step) -> None:
    console.print(f"{STEP_ICONS[step.status]} {escape(step.message)}", highlight=False)


def _prepare() -> LauncherConfig:
    """Load config, migrate legacy state and set up logging and telemetry."""
    obj = click.get_current_context().obj or {}
    config = LauncherConfig.load()

    # Must run before anything creates files under the new state directory
    StateDirectory(config.state_dir, legacy_root=config.legacy_state_dir).migrate_legacy()

    configure_logging(verbose=obj.get("verbose", False), log_dir=config.state_dir / "logs")
    _, meter = setup_telemetry(config)
    create_metrics(meter)
    return config


def _make_orchestrator(config: LauncherConfig) -> LaunchOrchestrator:
    orchestrator = LaunchOrchestrator(config)
    orchestrator.ctx.steps.subscribe(_print_step)
    return orchestrator


def _exit_for(state: LifecycleState) -> None:
    sys.exit(1 if state == LifecycleState.ERROR else 0)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging on stderr")
@click.version_option(package_name="openclaw-launcher")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """OpenClaw Launcher - run OpenClaw in a locked-down container."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option(
    "--open/--no-open",
    "open_browser",
    default=None,
    help="Open the Control UI when ready (default: from settings)",
)
def up(open_browser: bool | None) -> None:
    """Start OpenClaw: set up, pull, run and wait for the gateway."""
    config = _prepare()
    if open_browser is None:
        open_browser = config.open_browser_on_start

    try:
        with LaunchLock(config.state_dir, command="up"):
            state = asyncio.run(_up(config, open_browser))
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    _exit_for(state)


async def _up(config: LauncherConfig, open_browser: bool) -> LifecycleState:
    orchestrator = _make_orchestrator(config)
    try:
        state = await orchestrator.start()
    finally:
        await orchestrator.aclose()

    if state == LifecycleState.RUNNING:
        url = orchestrator.access_url
        console.print(f"\n[bold green]OpenClaw is running[/bold green] at {url}")
        if orchestrator.auth_expired_banner:
            console.print(f"[yellow]{orchestrator.auth_expired_banner}[/yellow]")
        if open_browser and url:
            click.launch(url)
    return state


@cli.command()
def down() -> None:
    """Stop the OpenClaw container."""
    config = _prepare()
    orchestrator = _make_orchestrator(config)
    state = asyncio.run(orchestrator.stop_container())
    _exit_for(state)


@cli.command()
def restart() -> None:
    """Restart the OpenClaw container."""
    config = _prepare()
    try:
        with LaunchLock(config.state_dir, command="restart"):
            orchestrator = _make_orchestrator(config)
            state = asyncio.run(_restart(orchestrator))
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    _exit_for(state)


async def _restart(orchestrator: LaunchOrchestrator) -> LifecycleState:
    try:
        return await orchestrator.restart_container()
    finally:
        await orchestrator.aclose()


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def reset(yes: bool) -> None:
    """Remove the container and delete all local launcher state."""
    config = _prepare()
    if not yes and not click.confirm(
        f"This deletes the container and everything in {config.state_dir}. Continue?",
        default=False,
    ):
        console.print("Aborted.")
        return

    try:
        with LaunchLock(config.state_dir, command="reset"):
            orchestrator = _make_orchestrator(config)
            asyncio.run(orchestrator.reset_everything())
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@cli.command()
@click.option("--check", type=click.Choice(CHECK_ORDER), help="Run single check")
def status(check: str | None) -> None:
    """Report engine, container, gateway and credential status as JSON."""
    config = _prepare()
    orchestrator = _make_orchestrator(config)
    checks = [check] if check else None
    report = asyncio.run(get_health(orchestrator.ctx, checks=checks))
    click.echo(json.dumps(report.to_dict(), indent=2))
    sys.exit(0 if report.status == "healthy" else 1)


@cli.command()
@click.option("--tail", "-n", default=300, show_default=True, help="Lines to show")
def logs(tail: int) -> None:
    """Show recent container output."""
    config = _prepare()
    orchestrator = _make_orchestrator(config)
    output = asyncio.run(orchestrator.fetch_logs(tail))
    click.echo(output)


@cli.command()
def url() -> None:
    """Print the Control UI URL including the gateway token."""
    config = _prepare()
    env = StateDirectory(config.state_dir, default_port=config.port).read_env()
    if not env.configured:
        console.print(f"[red]{NoToken(config.state_dir).message}[/red]")
        sys.exit(1)
    click.echo(build_access_url(config.port, env.gateway_token))


@cli.group()
def auth() -> None:
    """Configure model credentials for the gateway."""
    pass


@auth.command()
@click.option("--no-browser", is_flag=True, help="Only print the sign-in URL")
def login(no_browser: bool) -> None:
    """Sign in with a Claude account (OAuth)."""
    config = _prepare()
    orchestrator = _make_orchestrator(config)

    authorize_url = orchestrator.begin_oauth()
    console.print(f"Open this URL to sign in:\n{authorize_url}\n", soft_wrap=True)
    if not no_browser:
        click.launch(authorize_url)

    code = Prompt.ask("Paste the authorization code")
    if not asyncio.run(orchestrator.complete_oauth(code)):
        sys.exit(1)


@auth.command("api-key")
@click.option(
    "--key",
    prompt="Anthropic API key (leave blank to skip)",
    hide_input=True,
    default="",
    show_default=False,
    help="Anthropic API key",
)
def api_key(key: str) -> None:
    """Store an Anthropic API key for the gateway."""
    config = _prepare()
    orchestrator = _make_orchestrator(config)
    orchestrator.submit_api_key(key)


def main() -> None:
    """Main entry point for the launcher CLI."""
    cli()


if __name__ == "__main__":
    main()
