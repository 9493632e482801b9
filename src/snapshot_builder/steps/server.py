"""Create the temporary server and wait for it to boot."""

from __future__ import annotations

import logging

from ..cloud.client import CloudClient
from ..config import BuilderConfig
from ..errors import ActionFailedError
from ..models import ServerRequest, ServerStatus
from ..polling import ActionPoller
from ..state import BuildState
from .base import Step, StepOutcome
from .power import wait_for_status

logger = logging.getLogger(__name__)


class CreateServer(Step):
    """Submit the create-server request; cleanup deletes the server.

    The server survives cleanup only when ``keep_server`` is set.
    Networks, firewalls, volumes and primary IPs are attached by id and
    never deleted here.
    """

    name = "create_server"
    reads = ("image", "ssh_key_ids")
    writes = ("server", "create_action")

    def __init__(self, client: CloudClient, config: BuilderConfig) -> None:
        self.client = client
        self.config = config

    def build_request(self, state: BuildState) -> ServerRequest:
        config = self.config
        return ServerRequest(
            name=config.server_name or "",
            server_type=config.server_type or "",
            location=config.location or "",
            image=state.get("image"),
            labels=dict(config.server_labels),
            user_data=config.user_data,
            ssh_keys=list(state.get_optional("ssh_key_ids") or []),
            networks=list(config.networks),
            firewalls=list(config.firewalls),
            volumes=list(config.volumes),
            enable_ipv4=not config.public_ipv4_disabled,
            enable_ipv6=not config.public_ipv6_disabled,
            ipv4=config.public_ipv4,
            ipv6=config.public_ipv6,
        )

    def run(self, state: BuildState) -> StepOutcome:
        request = self.build_request(state)
        logger.info(
            "🖥️  Creating server %s (%s in %s)...",
            request.name,
            request.server_type,
            request.location,
        )
        server, action = self.client.create_server(request)
        state.set("server", server)
        state.set("create_action", action)
        logger.info("   Server id: %s", server.id)
        return StepOutcome.CONTINUE

    def cleanup(self, state: BuildState) -> None:
        server = state.get_optional("server")
        if server is None or server.status is ServerStatus.DELETED:
            return
        if self.config.keep_server:
            logger.info("📌 Keeping server %s (%s) as requested", server.name, server.id)
            return
        logger.info("🧹 Deleting server %s (%s)", server.name, server.id)
        self.client.delete_server(server.id)
        server.status = ServerStatus.DELETED


class WaitForServer(Step):
    """Poll the create action, then the server, until it is running."""

    name = "wait_for_server"
    reads = ("server", "create_action")
    writes = ("server", "boot_deadline")

    def __init__(self, client: CloudClient, poller: ActionPoller) -> None:
        self.client = client
        self.poller = poller

    def run(self, state: BuildState) -> StepOutcome:
        server = state.get("server")
        action = state.get("create_action")
        deadline = self.poller.deadline(state.get_optional("deadline"))
        state.set("boot_deadline", deadline)

        logger.info("⏳ Waiting for server %s to start...", server.id)
        try:
            self.poller.wait(action, "server creation", deadline)
        except ActionFailedError:
            # 创建操作失败说明服务器从未建成，清理时无需删除
            state.discard("server")
            state.discard("create_action")
            raise

        server = wait_for_status(self.client, self.poller, server.id, ServerStatus.RUNNING, deadline)
        state.set("server", server)
        logger.info("   Server running at %s", server.address or "no public address")
        return StepOutcome.CONTINUE
