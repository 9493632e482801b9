"""Connectivity probes run while waiting for the server to come up."""

from __future__ import annotations

import socket
from typing import Callable, Optional

import paramiko

from ..models import ConnectionInfo
from .credentials import SSHCredentials
from .session import SSHSession


class ConnectivityProbe:
    """Checks once whether the server accepts connections.

    ``check`` returns None on success and raises on failure; the caller
    decides how often to retry. ``timeout``, when given, caps the attempt.
    """

    def check(self, info: ConnectionInfo, timeout: Optional[float] = None) -> None:
        raise NotImplementedError


class SSHProbe(ConnectivityProbe):
    """Logs in over SSH and runs a no-op command."""

    def __init__(
        self,
        *,
        connect_timeout: int = 10,
        client_factory: Optional[Callable[[], paramiko.SSHClient]] = None,
    ) -> None:
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory

    def check(self, info: ConnectionInfo, timeout: Optional[float] = None) -> None:
        limit = _attempt_timeout(self.connect_timeout, timeout)
        credentials = SSHCredentials.from_connection(info, timeout=limit)
        credentials.validate()
        with SSHSession(credentials, client_factory=self._client_factory) as session:
            result = session.run("true", timeout=limit)
            # cloud-init 尚未完成时登录可能被拒绝，按失败重试
            if not result.ok:
                raise ConnectionError(
                    f"probe command exited with {result.exit_status}: {result.stderr}"
                )


class TCPProbe(ConnectivityProbe):
    """Only checks that the port accepts TCP connections (used for WinRM)."""

    def __init__(self, *, connect_timeout: float = 5.0) -> None:
        self.connect_timeout = connect_timeout

    def check(self, info: ConnectionInfo, timeout: Optional[float] = None) -> None:
        limit = _attempt_timeout(self.connect_timeout, timeout)
        with socket.create_connection((info.host, info.port), timeout=limit):
            pass


def _attempt_timeout(connect_timeout: float, remaining: Optional[float]) -> float:
    if remaining is None:
        return connect_timeout
    return min(connect_timeout, remaining)


def probe_for(communicator: str) -> Optional[ConnectivityProbe]:
    """Default probe for a communicator type; None means don't wait."""
    if communicator == "ssh":
        return SSHProbe()
    if communicator == "winrm":
        return TCPProbe()
    return None
