"""Data models shared by the cloud client, the steps and the builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ServerStatus(Enum):
    """服务器生命周期状态"""
    CREATING = "creating"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DELETING = "deleting"
    DELETED = "deleted"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, value: Optional[str]) -> "ServerStatus":
        return _PROVIDER_SERVER_STATUS.get(value or "", cls.UNKNOWN)


_PROVIDER_SERVER_STATUS = {
    "initializing": ServerStatus.CREATING,
    "starting": ServerStatus.CREATING,
    "running": ServerStatus.RUNNING,
    "stopping": ServerStatus.STOPPING,
    "off": ServerStatus.STOPPED,
    "deleting": ServerStatus.DELETING,
}


class ActionStatus(Enum):
    """异步操作状态"""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self is not ActionStatus.RUNNING


@dataclass
class ActionHandle:
    """A provider-side asynchronous operation."""

    id: int
    command: str = ""
    status: ActionStatus = ActionStatus.RUNNING
    progress: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionHandle":
        error = data.get("error") or {}
        return cls(
            id=data["id"],
            command=data.get("command", ""),
            status=ActionStatus(data.get("status", "running")),
            progress=data.get("progress", 0) or 0,
            error_code=error.get("code"),
            error_message=error.get("message"),
        )


@dataclass
class ServerRecord:
    """The temporary server this build works on."""

    id: int
    name: str
    status: ServerStatus = ServerStatus.CREATING
    public_ipv4: Optional[str] = None
    public_ipv6: Optional[str] = None
    private_ipv4: Optional[str] = None
    server_type: Optional[str] = None

    @property
    def address(self) -> Optional[str]:
        """Best address to reach the server at: IPv4, then IPv6, then private."""
        return self.public_ipv4 or self.public_ipv6 or self.private_ipv4

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerRecord":
        public_net = data.get("public_net") or {}
        ipv4 = public_net.get("ipv4") or {}
        ipv6 = public_net.get("ipv6") or {}
        private_net = data.get("private_net") or []
        ipv6_ip = ipv6.get("ip")
        # IPv6 返回的是网段 (2001:db8::/64)，主机地址取 ::1
        if ipv6_ip and ipv6_ip.endswith("::/64"):
            ipv6_ip = ipv6_ip[: -len("/64")] + "1"
        server_type = data.get("server_type") or {}
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            status=ServerStatus.from_provider(data.get("status")),
            public_ipv4=ipv4.get("ip"),
            public_ipv6=ipv6_ip,
            private_ipv4=private_net[0].get("ip") if private_net else None,
            server_type=server_type.get("name") if isinstance(server_type, dict) else server_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "public_ipv4": self.public_ipv4,
            "public_ipv6": self.public_ipv6,
            "private_ipv4": self.private_ipv4,
            "server_type": self.server_type,
        }


@dataclass
class Keypair:
    """SSH key registered with the provider for this build.

    ``generated`` is True only when the build created the key itself; such
    keys are deleted during cleanup.
    """

    id: int
    name: str
    public_key: str = ""
    private_key: Optional[str] = None
    generated: bool = False


@dataclass
class ImageRecord:
    id: int
    name: Optional[str] = None
    description: str = ""
    created: Optional[datetime] = None
    labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageRecord":
        created = data.get("created")
        return cls(
            id=data["id"],
            name=data.get("name"),
            description=data.get("description") or "",
            created=_parse_timestamp(created) if created else None,
            labels=dict(data.get("labels") or {}),
        )


@dataclass
class ServerRequest:
    """Everything needed to submit a create-server call."""

    name: str
    server_type: str
    location: str
    image: str
    labels: Dict[str, str] = field(default_factory=dict)
    user_data: Optional[str] = None
    ssh_keys: List[Union[int, str]] = field(default_factory=list)
    networks: List[int] = field(default_factory=list)
    firewalls: List[int] = field(default_factory=list)
    volumes: List[int] = field(default_factory=list)
    enable_ipv4: bool = True
    enable_ipv6: bool = True
    ipv4: Optional[int] = None
    ipv6: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "server_type": self.server_type,
            "location": self.location,
            "image": self.image,
            "start_after_create": True,
            "ssh_keys": list(self.ssh_keys),
            "public_net": {
                "enable_ipv4": self.enable_ipv4,
                "enable_ipv6": self.enable_ipv6,
            },
        }
        if self.ipv4 is not None:
            payload["public_net"]["ipv4"] = self.ipv4
        if self.ipv6 is not None:
            payload["public_net"]["ipv6"] = self.ipv6
        if self.labels:
            payload["labels"] = dict(self.labels)
        if self.user_data:
            payload["user_data"] = self.user_data
        if self.networks:
            payload["networks"] = list(self.networks)
        if self.firewalls:
            payload["firewalls"] = [{"firewall": fw} for fw in self.firewalls]
        if self.volumes:
            payload["volumes"] = list(self.volumes)
        return payload


@dataclass
class ConnectionInfo:
    """What the remote-session transport needs to reach the server."""

    host: str
    port: int
    username: str
    communicator: str = "ssh"
    private_key: Optional[str] = None
    password: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        # 不输出私钥和密码
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "communicator": self.communicator,
            "auth": "key" if self.private_key else ("password" if self.password else "none"),
        }


@dataclass
class Artifact:
    """Result of a successful build.

    ``image_id`` is None when the snapshot was skipped on purpose.
    """

    image_id: Optional[int] = None
    image_name: Optional[str] = None
    server: Optional[ServerRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_id": self.image_id,
            "image_name": self.image_name,
            "server": self.server.to_dict() if self.server else None,
        }


def _parse_timestamp(value: str) -> datetime:
    # Python 3.10 及以下的 fromisoformat 不认识 "Z"
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)
