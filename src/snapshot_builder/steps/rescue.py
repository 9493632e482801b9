"""Boot the server into the provider's rescue system."""

from __future__ import annotations

import logging

from ..cloud.client import CloudClient
from ..config import BuilderConfig
from ..models import ServerStatus
from ..polling import ActionPoller
from ..state import BuildState
from .base import Step, StepOutcome
from .power import wait_for_status

logger = logging.getLogger(__name__)


class EnableRescue(Step):
    """Enable rescue mode and reset the server into it.

    With ``rescue_fresh_deadline`` the reboot gets a new action timeout;
    otherwise it has to finish within the deadline the initial boot used.
    """

    name = "enable_rescue"
    reads = ("server", "ssh_key_ids", "boot_deadline")
    writes = ("server", "rescue_password")

    def __init__(self, client: CloudClient, poller: ActionPoller, config: BuilderConfig) -> None:
        self.client = client
        self.poller = poller
        self.config = config

    def run(self, state: BuildState) -> StepOutcome:
        server = state.get("server")
        mode = self.config.rescue
        assert mode
        if self.config.rescue_fresh_deadline:
            deadline = self.poller.deadline(state.get_optional("deadline"))
        else:
            deadline = state.get("boot_deadline")

        logger.info("🛟 Enabling rescue mode '%s' on server %s...", mode, server.id)
        password, action = self.client.enable_rescue(
            server.id, mode, state.get_optional("ssh_key_ids") or []
        )
        self.poller.wait(action, "enable rescue", deadline)

        action = self.client.reboot(server.id)
        self.poller.wait(action, "reboot into rescue", deadline)

        # 救援系统的地址可能变化，重新读取
        server = wait_for_status(self.client, self.poller, server.id, ServerStatus.RUNNING, deadline)
        state.set("server", server)
        if password:
            state.set("rescue_password", password)
        logger.info("   Rescue system up at %s", server.address or "no public address")
        return StepOutcome.CONTINUE
