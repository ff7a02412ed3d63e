"""Workload image management.

Pulls the image and falls back to a cached local copy when the pull fails,
favoring availability over freshness.
"""

import logging
from typing import Literal

from launcher.context import LaunchContext
from launcher.errors import ImagePullFailed
from launcher.shell import try_run

logger = logging.getLogger(__name__)

ImageOutcome = Literal["pulled", "cached"]

CACHED_IMAGE_WARNING = "Couldn't check for updates (offline?). Using cached image."


class ImageManager:
    """Ensures the workload image is present locally."""

    def __init__(self, ctx: LaunchContext) -> None:
        self.ctx = ctx

    @property
    def image(self) -> str:
        return self.ctx.config.image

    async def image_exists(self) -> bool:
        inspect = await try_run(
            self.ctx.executor, ["docker", "image", "inspect", self.image]
        )
        return inspect.ok

    async def ensure_image(self) -> ImageOutcome:
        """Pull the image, or fall back to the cached copy.

        Returns:
            "pulled" if the pull succeeded, "cached" if a local copy is used

        Raises:
            ImagePullFailed: Pull failed and no local copy exists
        """
        steps = self.ctx.steps
        steps.running("Pulling image...")

        pull = await try_run(self.ctx.executor, ["docker", "pull", self.image])
        if pull.ok:
            self.ctx.soft_failures.record_success("image")
            steps.done("Docker image up to date")
            return "pulled"

        logger.info(f"Pull of {self.image} failed: {pull.stderr.strip()[:200]}")
        if await self.image_exists():
            steps.warning(self.ctx.soft_failures.annotate("image", CACHED_IMAGE_WARNING))
            return "cached"

        raise ImagePullFailed(pull.stderr or "Image pull failed")
