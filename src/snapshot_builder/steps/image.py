"""Resolve the image the server boots from."""

from __future__ import annotations

import logging

from ..cloud.client import CloudClient
from ..config import BuilderConfig
from ..errors import AmbiguousImageError, NoMatchingImageError
from ..state import BuildState
from .base import Step, StepOutcome

logger = logging.getLogger(__name__)


class ResolveImage(Step):
    """Pass a configured image through, or pick one with the image filter."""

    name = "resolve_image"
    writes = ("image",)

    def __init__(self, client: CloudClient, config: BuilderConfig) -> None:
        self.client = client
        self.config = config

    def run(self, state: BuildState) -> StepOutcome:
        if self.config.image:
            state.set("image", self.config.image)
            logger.info("🖼️  Using image %s", self.config.image)
            return StepOutcome.CONTINUE

        image_filter = self.config.image_filter
        assert image_filter is not None
        selector = image_filter.label_selector
        logger.info("🔍 Looking up image with selector: %s", selector)

        images = self.client.list_images(selector)
        if not images:
            raise NoMatchingImageError(selector)
        if len(images) > 1 and not image_filter.most_recent:
            raise AmbiguousImageError(selector, len(images))

        chosen = max(images, key=lambda img: img.created.timestamp() if img.created else 0.0)
        state.set("image", str(chosen.id))
        logger.info(
            "   Found %d image(s), using %s (%s)",
            len(images),
            chosen.id,
            chosen.description or chosen.name or "unnamed",
        )
        return StepOutcome.CONTINUE
