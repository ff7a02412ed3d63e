"""Gateway readiness and health monitoring.

Readiness after launch is a bounded poll of the gateway's root endpoint;
any HTTP response counts as reachable. Once running, a cancellable
periodic watcher keeps refreshing health and the decoded /status payload.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from launcher.context import LaunchContext
from launcher.errors import GatewayUnreachable
from launcher.retry import retry_until

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 2.0


@dataclass(frozen=True)
class GatewayStatus:
    """Decoded /status payload. Unknown fields are ignored."""

    uptime: int | None = None

    @classmethod
    def from_json(cls, data: Any) -> "GatewayStatus":
        if not isinstance(data, dict):
            return cls()
        uptime = data.get("uptime")
        # bool is an int subclass; reject it along with floats and strings
        if isinstance(uptime, bool) or not isinstance(uptime, int):
            uptime = None
        return cls(uptime=uptime)


class GatewayMonitor:
    """HTTP probes against the gateway running in the container."""

    def __init__(self, ctx: LaunchContext) -> None:
        self.ctx = ctx

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=PROBE_TIMEOUT, transport=self.ctx.transport)

    async def probe(self) -> bool:
        """True if the gateway answered with any HTTP response."""
        try:
            async with self._client() as client:
                response = await client.get(self.ctx.config.gateway_url)
        except httpx.HTTPError as e:
            logger.debug(f"Gateway probe failed: {e}")
            return False
        logger.debug(f"Gateway answered HTTP {response.status_code}")
        return True

    async def wait_until_ready(self) -> bool:
        """Poll until the gateway answers or the retry budget is spent.

        Exhausting the budget is not fatal: the container process is alive,
        only the readiness probe timed out.

        Returns:
            True if the gateway answered
        """
        steps = self.ctx.steps
        steps.running("Waiting for Gateway to be ready...")

        outcome = await retry_until(
            self.probe, self.ctx.config.gateway_retry, label="gateway probe"
        )
        if outcome.succeeded:
            self.ctx.soft_failures.record_success("gateway")
            steps.done("Gateway is ready!")
            return True

        message = GatewayUnreachable().message
        steps.warning(self.ctx.soft_failures.annotate("gateway", message))
        return False

    async def fetch_status(self) -> GatewayStatus | None:
        """GET /status and decode it.

        Returns:
            GatewayStatus on HTTP 200 with a JSON body, None otherwise
        """
        try:
            async with self._client() as client:
                response = await client.get(self.ctx.config.status_url)
        except httpx.HTTPError as e:
            logger.debug(f"Gateway status request failed: {e}")
            return None

        if response.status_code != 200:
            return None
        try:
            return GatewayStatus.from_json(response.json())
        except ValueError:
            logger.debug("Gateway status body is not JSON")
            return None

    async def check_health(self) -> tuple[bool, GatewayStatus | None]:
        """Status endpoint first, falling back to a root probe.

        Returns:
            Tuple of (healthy, decoded status or None)
        """
        status = await self.fetch_status()
        if status is not None:
            return True, status
        return await self.probe(), None


HealthCallback = Callable[[bool, GatewayStatus | None], None]


class HealthWatcher:
    """Periodic health refresh bound to the running state's lifetime.

    Only reads gateway health; never touches container or image state.
    The owner must call stop() when leaving the running state.
    """

    def __init__(
        self,
        monitor: GatewayMonitor,
        interval: float,
        on_update: HealthCallback,
    ) -> None:
        self.monitor = monitor
        self.interval = interval
        self.on_update = on_update
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling (restarts if already active)."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="gateway-health-watcher"
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            healthy, status = await self.monitor.check_health()
            try:
                self.on_update(healthy, status)
            except Exception:
                logger.exception("Health update callback failed")
            await asyncio.sleep(self.interval)
