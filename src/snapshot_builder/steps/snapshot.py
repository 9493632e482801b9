"""Stop the server and capture it as a snapshot image."""

from __future__ import annotations

import logging

from ..cloud.client import CloudClient
from ..config import BuilderConfig
from ..polling import ActionPoller
from ..state import BuildState
from .base import Step, StepOutcome
from .power import stop_server

logger = logging.getLogger(__name__)


class ShutdownServer(Step):
    name = "shutdown_server"
    reads = ("server",)
    writes = ("server",)

    def __init__(self, client: CloudClient, poller: ActionPoller) -> None:
        self.client = client
        self.poller = poller

    def run(self, state: BuildState) -> StepOutcome:
        server = state.get("server")
        deadline = self.poller.deadline(state.get_optional("deadline"))
        logger.info("⏻  Shutting down server %s...", server.id)
        server = stop_server(self.client, self.poller, server.id, deadline)
        state.set("server", server)
        return StepOutcome.CONTINUE


class CreateSnapshot(Step):
    name = "create_snapshot"
    reads = ("server",)
    writes = ("snapshot",)

    def __init__(self, client: CloudClient, poller: ActionPoller, config: BuilderConfig) -> None:
        self.client = client
        self.poller = poller
        self.config = config

    def run(self, state: BuildState) -> StepOutcome:
        server = state.get("server")
        description = self.config.snapshot_name or ""
        deadline = self.poller.deadline(state.get_optional("deadline"))

        logger.info("📸 Creating snapshot '%s' of server %s...", description, server.id)
        image, action = self.client.create_image(server.id, description, self.config.snapshot_labels)
        self.poller.wait(action, "snapshot creation", deadline)
        state.set("snapshot", image)
        logger.info("   Snapshot %s created", image.id)
        return StepOutcome.CONTINUE
