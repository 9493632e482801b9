"""Power-state helpers shared by the shutdown, resize and rescue steps."""

from __future__ import annotations

import logging

from ..cloud.client import CloudClient
from ..errors import PollTimeoutError
from ..models import ServerRecord, ServerStatus
from ..polling import ActionPoller

logger = logging.getLogger(__name__)

# 优雅关机最多等待的时间，超时后强制断电
GRACEFUL_SHUTDOWN_TIMEOUT = 120.0


def wait_for_status(
    client: CloudClient,
    poller: ActionPoller,
    server_id: int,
    status: ServerStatus,
    deadline: float,
) -> ServerRecord:
    return poller.wait_until(
        lambda: client.get_server(server_id),
        lambda server: server.status is status,
        f"server {server_id} to be {status.value}",
        deadline,
    )


def stop_server(
    client: CloudClient,
    poller: ActionPoller,
    server_id: int,
    deadline: float,
    graceful_timeout: float = GRACEFUL_SHUTDOWN_TIMEOUT,
) -> ServerRecord:
    """Shut the server down gracefully, cutting power if it does not comply."""
    graceful_deadline = min(deadline, poller.clock() + graceful_timeout)
    action = client.shutdown(server_id)
    try:
        poller.wait(action, "shutdown request", graceful_deadline)
        return wait_for_status(client, poller, server_id, ServerStatus.STOPPED, graceful_deadline)
    except PollTimeoutError:
        if poller.clock() >= deadline:
            raise
        logger.warning("   Graceful shutdown timed out, powering off server %s", server_id)

    action = client.power_off(server_id)
    poller.wait(action, "power off", deadline)
    return wait_for_status(client, poller, server_id, ServerStatus.STOPPED, deadline)


def start_server(
    client: CloudClient,
    poller: ActionPoller,
    server_id: int,
    deadline: float,
) -> ServerRecord:
    action = client.power_on(server_id)
    poller.wait(action, "power on", deadline)
    return wait_for_status(client, poller, server_id, ServerStatus.RUNNING, deadline)
