"""Hand the server's address and credentials to the transport."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import BuilderConfig
from ..errors import ConnectivityTimeoutError, PollTimeoutError
from ..models import ConnectionInfo
from ..polling import ActionPoller
from ..ssh.probe import ConnectivityProbe
from ..state import BuildState
from .base import Step, StepOutcome

logger = logging.getLogger(__name__)


class WaitForConnectivity(Step):
    """Publish ConnectionInfo and wait until the probe can reach the server.

    The step never drives the session itself. Without a probe (communicator
    ``none``) it only publishes the address.
    """

    name = "wait_for_connectivity"
    reads = ("server",)
    writes = ("connection",)

    def __init__(
        self,
        config: BuilderConfig,
        poller: ActionPoller,
        probe: Optional[ConnectivityProbe],
    ) -> None:
        self.config = config
        self.poller = poller
        self.probe = probe
        self.last_error: Optional[str] = None

    def connection_info(self, state: BuildState) -> ConnectionInfo:
        comm = self.config.communicator
        server = state.get("server")
        if not server.address:
            raise ConnectivityTimeoutError("<unassigned>", comm.resolved_port(), 0.0, "server has no address")

        keypair = state.get_optional("keypair")
        password = state.get_optional("rescue_password") or comm.password
        private_key = keypair.private_key if keypair and comm.type == "ssh" else None
        return ConnectionInfo(
            host=server.address,
            port=comm.resolved_port(),
            username=comm.username,
            communicator=comm.type,
            private_key=private_key,
            password=password,
        )

    def run(self, state: BuildState) -> StepOutcome:
        info = self.connection_info(state)
        state.set("connection", info)
        if self.probe is None:
            logger.info("🔌 Server address %s (not waiting for connectivity)", info.host)
            return StepOutcome.CONTINUE

        logger.info("🔌 Waiting for %s on %s:%s...", info.communicator, info.host, info.port)
        deadline = self.poller.deadline(
            state.get_optional("deadline"),
            timeout=self.config.communicator.timeout,
        )
        started = self.poller.clock()
        self.last_error = None
        try:
            self.poller.wait_until(
                lambda: self._attempt(info, deadline),
                lambda reachable: reachable,
                f"{info.communicator} on {info.host}:{info.port}",
                deadline,
            )
        except PollTimeoutError as exc:
            raise ConnectivityTimeoutError(
                info.host, info.port, self.poller.clock() - started, self.last_error
            ) from exc
        logger.info("   Connected to %s", info.host)
        return StepOutcome.CONTINUE

    def _attempt(self, info: ConnectionInfo, deadline: float) -> bool:
        assert self.probe is not None
        remaining = deadline - self.poller.clock()
        # 每次尝试不超过剩余时间
        if remaining <= 0:
            return False
        try:
            self.probe.check(info, timeout=remaining)
        except Exception as exc:
            self.last_error = str(exc)
            logger.debug("   Not reachable yet: %s", exc)
            return False
        return True
