"""SSH utilities for the snapshot builder."""

from .credentials import SSHCredentials
from .keys import GeneratedKey, generate_keypair, public_key_for
from .probe import ConnectivityProbe, SSHProbe, TCPProbe, probe_for
from .session import SSHCommandResult, SSHConnectionError, SSHSession, load_private_key

__all__ = [
    "SSHCredentials",
    "SSHCommandResult",
    "SSHConnectionError",
    "SSHSession",
    "load_private_key",
    "GeneratedKey",
    "generate_keypair",
    "public_key_for",
    "ConnectivityProbe",
    "SSHProbe",
    "TCPProbe",
    "probe_for",
]
