"""SSH credential helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..models import ConnectionInfo


@dataclass
class SSHCredentials:
    """Normalized credential payload for a paramiko connection."""

    host: str
    username: str
    port: int = 22
    auth_method: str = "key"
    password: Optional[str] = None
    private_key: Optional[str] = None
    timeout: float = 20

    def validate(self) -> None:
        if self.auth_method == "password" and not self.password:
            raise ValueError("Password authentication selected but no password provided")
        if self.auth_method == "key" and not self.private_key:
            raise ValueError("Key authentication selected but no private key provided")

    @classmethod
    def from_connection(cls, info: ConnectionInfo, timeout: float = 20) -> "SSHCredentials":
        return cls(
            host=info.host,
            username=info.username,
            port=info.port,
            auth_method="key" if info.private_key else "password",
            password=info.password,
            private_key=info.private_key,
            timeout=timeout,
        )
