"""`launcher status` report.

Four checks: the container engine, the workload container, the gateway
and model credentials. A check whose prerequisite failed is reported as
skipped instead of being run. Each check is traced and counted.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from opentelemetry import metrics, trace

from launcher.container import ContainerSupervisor
from launcher.context import LaunchContext
from launcher.gateway import GatewayMonitor
from launcher.oauth import load_credentials
from launcher.shell import NOT_FOUND_EXIT_CODE, try_run

CheckStatus = Literal["ok", "failed", "skipped"]

_tracer = trace.get_tracer("launcher.health")
_checks_counter: metrics.Counter | None = None


def _counter() -> metrics.Counter:
    # Created lazily so it binds to the provider installed by setup_telemetry()
    global _checks_counter
    if _checks_counter is None:
        _checks_counter = metrics.get_meter("launcher.health").create_counter(
            "launcher_health_checks_total",
            description="Status checks run, by check and outcome",
        )
    return _checks_counter


@dataclass
class CheckResult:
    """Outcome of one check; ``message`` tells the user what to do next."""

    status: CheckStatus
    message: str
    check_name: str

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status, "message": self.message}


@dataclass
class HealthReport:
    """All check outcomes, keyed by check name in run order."""

    status: Literal["healthy", "unhealthy"]
    timestamp: datetime
    checks: dict[str, CheckResult] = field(default_factory=dict)

    @classmethod
    def from_results(cls, results: dict[str, CheckResult]) -> "HealthReport":
        failed = any(r.status == "failed" for r in results.values())
        return cls(
            status="unhealthy" if failed else "healthy",
            timestamp=datetime.now(timezone.utc),
            checks=results,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form printed by ``launcher status``."""
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "checks": {name: r.to_dict() for name, r in self.checks.items()},
        }


# Prerequisites of each check
CHECK_DEPENDENCIES: dict[str, list[str]] = {
    "engine": [],
    "container": ["engine"],
    "gateway": ["container"],
    "credentials": [],
}

CHECK_ORDER: list[str] = ["engine", "container", "gateway", "credentials"]


async def check_engine(ctx: LaunchContext) -> CheckResult:
    result = await try_run(ctx.executor, ["docker", "info"])
    if result.ok:
        return CheckResult("ok", "docker is responsive", "engine")
    if result.exit_code == NOT_FOUND_EXIT_CODE:
        return CheckResult("failed", "docker not available", "engine")
    return CheckResult(
        "failed", "docker not running - start Docker Desktop", "engine"
    )


async def check_container(ctx: LaunchContext) -> CheckResult:
    state = await ContainerSupervisor(ctx).inspect_state()
    if state == "running":
        return CheckResult("ok", "container running", "container")
    if state == "stopped":
        return CheckResult(
            "failed", "container stopped - run 'launcher up'", "container"
        )
    return CheckResult("failed", "container not found - run 'launcher up'", "container")


async def check_gateway(ctx: LaunchContext) -> CheckResult:
    healthy, status = await GatewayMonitor(ctx).check_health()
    if not healthy:
        return CheckResult("failed", "gateway not responding", "gateway")
    if status is not None and status.uptime is not None:
        return CheckResult("ok", f"gateway up for {status.uptime}s", "gateway")
    return CheckResult("ok", "gateway responding", "gateway")


async def check_credentials(ctx: LaunchContext) -> CheckResult:
    """Check that the gateway has model credentials to work with.

    An API key profile wins over OAuth; expired OAuth credentials fail
    because the gateway cannot refresh them on its own.
    """
    if ctx.state.auth_profile_exists():
        return CheckResult("ok", "API key configured", "credentials")

    creds = load_credentials(ctx.state.oauth_file)
    if creds is None:
        return CheckResult(
            "failed", "no credentials - run 'launcher auth login'", "credentials"
        )
    if creds.is_expired():
        return CheckResult(
            "failed",
            "OAuth token expired - run 'launcher up' or 'launcher auth login'",
            "credentials",
        )
    return CheckResult("ok", "signed in with Claude", "credentials")


CHECKS: dict[str, Callable[[LaunchContext], Awaitable[CheckResult]]] = {
    "engine": check_engine,
    "container": check_container,
    "gateway": check_gateway,
    "credentials": check_credentials,
}


async def _run_check_with_telemetry(
    check_name: str, ctx: LaunchContext
) -> CheckResult:
    with _tracer.start_as_current_span(f"launcher.health.{check_name}") as span:
        result = await CHECKS[check_name](ctx)
        span.set_attribute("check.status", result.status)
        span.set_attribute("check.message", result.message)
    _counter().add(1, {"check": check_name, "status": result.status})
    return result


async def get_health(
    ctx: LaunchContext,
    checks: list[str] | None = None,
) -> HealthReport:
    """Run the requested checks in dependency order.

    Args:
        ctx: Launch context (config, executor, state directory, transport)
        checks: Names to run; all of CHECK_ORDER when None

    Returns:
        HealthReport; "unhealthy" if any check that ran failed

    Raises:
        ValueError: If a requested check name is unknown
    """
    requested = CHECK_ORDER if checks is None else checks
    for name in requested:
        if name not in CHECKS:
            raise ValueError(f"Unknown check: {name}")

    results: dict[str, CheckResult] = {}
    for name in (n for n in CHECK_ORDER if n in requested):
        missing = [
            dep
            for dep in CHECK_DEPENDENCIES[name]
            if dep in results and results[dep].status != "ok"
        ]
        if missing:
            results[name] = CheckResult("skipped", f"{missing[0]} not available", name)
        else:
            results[name] = await _run_check_with_telemetry(name, ctx)

    return HealthReport.from_results(results)
