"""Temporarily run the build on a larger server type."""

from __future__ import annotations

import logging

from ..cloud.client import CloudClient
from ..config import BuilderConfig
from ..models import ServerStatus
from ..polling import ActionPoller
from ..state import BuildState
from .base import Step, StepOutcome
from .power import start_server, stop_server

logger = logging.getLogger(__name__)


class UpgradeServerType(Step):
    """Switch to ``upgrade_server_type`` without growing the disk.

    Keeping the disk size lets the snapshot stay usable on the original,
    smaller type; DowngradeServerType switches back before the snapshot.
    """

    name = "upgrade_server_type"
    reads = ("server",)
    writes = ("server",)

    def __init__(self, client: CloudClient, poller: ActionPoller, config: BuilderConfig) -> None:
        self.client = client
        self.poller = poller
        self.config = config

    def run(self, state: BuildState) -> StepOutcome:
        server = state.get("server")
        target = self.config.upgrade_server_type
        assert target
        deadline = self.poller.deadline(state.get_optional("deadline"))

        logger.info("⬆️  Upgrading server %s to %s...", server.id, target)
        stop_server(self.client, self.poller, server.id, deadline)
        action = self.client.change_type(server.id, target, upgrade_disk=False)
        self.poller.wait(action, f"server type change to {target}", deadline)
        server = start_server(self.client, self.poller, server.id, deadline)
        state.set("server", server)
        return StepOutcome.CONTINUE


class DowngradeServerType(Step):
    """Return a stopped server to the configured ``server_type``."""

    name = "downgrade_server_type"
    reads = ("server",)
    writes = ("server",)

    def __init__(self, client: CloudClient, poller: ActionPoller, config: BuilderConfig) -> None:
        self.client = client
        self.poller = poller
        self.config = config

    def run(self, state: BuildState) -> StepOutcome:
        server = state.get("server")
        target = self.config.server_type or ""
        if server.status is not ServerStatus.STOPPED:
            logger.warning("   Server %s is not stopped, leaving it on %s", server.id, server.server_type)
            return StepOutcome.CONTINUE

        deadline = self.poller.deadline(state.get_optional("deadline"))
        logger.info("⬇️  Downgrading server %s back to %s...", server.id, target)
        action = self.client.change_type(server.id, target, upgrade_disk=False)
        self.poller.wait(action, f"server type change to {target}", deadline)
        server.server_type = target
        state.set("server", server)
        return StepOutcome.CONTINUE
