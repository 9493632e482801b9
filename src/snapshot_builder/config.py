"""Configuration loading utilities for the snapshot builder."""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv

from .errors import ValidationError
from .paths import DEFAULT_CONFIG_PATH

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_PATH

DEFAULT_ENDPOINT = "https://api.hetzner.cloud/v1"
DEFAULT_POLL_INTERVAL = 0.5

# 通信方式默认端口
COMMUNICATOR_DEFAULT_PORTS = {
    "ssh": 22,
    "winrm": 5985,
    "none": 0,
}


@dataclass
class ImageFilter:
    """Select an image by label selectors instead of by name or id."""

    with_selector: List[str] = field(default_factory=list)
    most_recent: bool = False

    @property
    def label_selector(self) -> str:
        return ",".join(self.with_selector)


@dataclass
class CommunicatorConfig:
    """How the provisioning phase will reach the server."""

    type: str = "ssh"                     # "ssh" | "winrm" | "none"
    username: str = "root"
    port: Optional[int] = None
    timeout: float = 300.0                # 等待连通的时间窗口（秒）
    # 用户自带的密钥：ssh_key_id 是已在云端注册的密钥
    ssh_key_id: Optional[int] = None
    ssh_private_key_file: Optional[str] = None
    ssh_private_key: Optional[str] = None
    password: Optional[str] = None

    def resolved_port(self) -> int:
        if self.port:
            return self.port
        return COMMUNICATOR_DEFAULT_PORTS.get(self.type, 22)


@dataclass
class BuilderConfig:
    """Validated settings for one build."""

    token: Optional[str] = None
    endpoint: str = DEFAULT_ENDPOINT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    action_timeout: float = 600.0         # 单个异步操作的超时（秒）
    build_timeout: Optional[float] = None  # 整个构建的超时，None 表示不限

    server_name: Optional[str] = None
    location: Optional[str] = None
    server_type: Optional[str] = None
    upgrade_server_type: Optional[str] = None
    server_labels: Dict[str, str] = field(default_factory=dict)
    image: Optional[str] = None
    image_filter: Optional[ImageFilter] = None

    snapshot_name: Optional[str] = None
    snapshot_labels: Dict[str, str] = field(default_factory=dict)
    user_data: Optional[str] = None
    user_data_file: Optional[str] = None
    ssh_keys: List[Union[int, str]] = field(default_factory=list)
    ssh_keys_labels: Dict[str, str] = field(default_factory=dict)

    networks: List[int] = field(default_factory=list)
    firewalls: List[int] = field(default_factory=list)
    volumes: List[int] = field(default_factory=list)
    public_ipv4: Optional[int] = None
    public_ipv4_disabled: bool = False
    public_ipv6: Optional[int] = None
    public_ipv6_disabled: bool = False

    rescue: Optional[str] = None
    # 救援模式重启时使用新的超时预算，而不是沿用剩余时间
    rescue_fresh_deadline: bool = True

    keep_server: bool = False
    skip_snapshot: bool = False

    communicator: CommunicatorConfig = field(default_factory=CommunicatorConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BuilderConfig":
        # 过滤掉以下划线开头的注释字段
        payload = {k: v for k, v in (payload or {}).items() if not k.startswith("_")}

        communicator_payload = payload.pop("communicator", {}) or {}
        communicator_payload = {
            k: v for k, v in communicator_payload.items() if not k.startswith("_")
        }
        filter_payload = payload.pop("image_filter", None)
        if filter_payload is not None:
            filter_payload = {k: v for k, v in filter_payload.items() if not k.startswith("_")}

        errors = _unknown_options(payload, cls)
        errors += _unknown_options(communicator_payload, CommunicatorConfig, "communicator.")
        if filter_payload is not None:
            errors += _unknown_options(filter_payload, ImageFilter, "image_filter.")
        if errors:
            raise ValidationError(errors)

        return cls(
            **payload,
            image_filter=ImageFilter(**filter_payload) if filter_payload is not None else None,
            communicator=CommunicatorConfig(
                **{**CommunicatorConfig().__dict__, **communicator_payload}
            ),
        )

    def apply_defaults(self) -> None:
        """Fill in generated names and environment-provided credentials."""
        if not self.token:
            self.token = os.getenv("HCLOUD_TOKEN")
        env_endpoint = os.getenv("HCLOUD_ENDPOINT")
        if env_endpoint and self.endpoint == DEFAULT_ENDPOINT:
            self.endpoint = env_endpoint
        if not self.poll_interval:
            self.poll_interval = DEFAULT_POLL_INTERVAL
        if not self.snapshot_name:
            self.snapshot_name = f"snapshot-{int(time.time())}"
        if not self.server_name:
            self.server_name = f"builder-{uuid.uuid4()}"

    def validate(self) -> None:
        """Raise ValidationError listing every problem found."""
        errors: List[str] = []
        if not self.token:
            errors.append("token is missing, set 'token' or HCLOUD_TOKEN")
        if not self.location:
            errors.append("location is required")
        if not self.server_type:
            errors.append("server_type is required")
        if not self.image and self.image_filter is None:
            errors.append("image or image_filter is required")
        if self.image_filter is not None:
            if not self.image_filter.with_selector:
                errors.append("image_filter.with_selector is required when specifying filter")
            elif self.image:
                errors.append("only one of image or image_filter can be specified")

        if self.user_data and self.user_data_file:
            errors.append("only one of user_data or user_data_file can be specified")
        elif self.user_data_file and not Path(self.user_data_file).is_file():
            errors.append(f"user_data_file not found: {self.user_data_file}")

        if self.poll_interval is not None and self.poll_interval <= 0:
            errors.append("poll_interval must be positive")
        if self.action_timeout <= 0:
            errors.append("action_timeout must be positive")
        if self.build_timeout is not None and self.build_timeout <= 0:
            errors.append("build_timeout must be positive")
        if self.public_ipv4_disabled and self.public_ipv4 is not None:
            errors.append("public_ipv4 cannot be set when public_ipv4_disabled is true")
        if self.public_ipv6_disabled and self.public_ipv6 is not None:
            errors.append("public_ipv6 cannot be set when public_ipv6_disabled is true")

        comm = self.communicator
        if comm.type not in COMMUNICATOR_DEFAULT_PORTS:
            errors.append(f"unsupported communicator type: {comm.type}")
        if comm.ssh_key_id is not None and not (comm.ssh_private_key or comm.ssh_private_key_file):
            errors.append("communicator.ssh_key_id requires ssh_private_key_file")
        if comm.ssh_private_key_file and not Path(comm.ssh_private_key_file).is_file():
            errors.append(f"ssh_private_key_file not found: {comm.ssh_private_key_file}")
        if comm.type == "winrm" and not comm.password:
            errors.append("communicator.password is required for winrm")

        if errors:
            raise ValidationError(errors)

    def resolve_files(self) -> None:
        """Read user_data_file and ssh_private_key_file into memory."""
        if self.user_data_file:
            self.user_data = Path(self.user_data_file).read_text(encoding="utf-8")
        comm = self.communicator
        if comm.ssh_private_key_file and not comm.ssh_private_key:
            comm.ssh_private_key = Path(comm.ssh_private_key_file).read_text(encoding="utf-8")

    def secrets(self) -> List[str]:
        """Values that must never reach the logs."""
        return [
            value
            for value in (self.token, self.communicator.password)
            if value
        ]

    def to_payload(self) -> Dict[str, Any]:
        """Non-secret summary for the build log."""
        return {
            "server_name": self.server_name,
            "location": self.location,
            "server_type": self.server_type,
            "upgrade_server_type": self.upgrade_server_type,
            "image": self.image,
            "image_filter": self.image_filter.__dict__ if self.image_filter else None,
            "snapshot_name": self.snapshot_name,
            "rescue": self.rescue,
            "keep_server": self.keep_server,
            "skip_snapshot": self.skip_snapshot,
            "poll_interval": self.poll_interval,
            "communicator": self.communicator.type,
        }


def _unknown_options(payload: Dict[str, Any], target: type, prefix: str = "") -> List[str]:
    unknown = sorted(set(payload) - set(target.__dataclass_fields__))
    return [f"unknown option '{prefix}{key}'" for key in unknown]


def load_config(path: Optional[str] = None) -> BuilderConfig:
    """Load, complete and validate the build configuration.

    Environment variables (higher priority than config file defaults):
    - HCLOUD_TOKEN: API token, used when the file has no token
    - HCLOUD_ENDPOINT: API endpoint override
    """

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(_DEFAULT_CONFIG_PATH)

    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            config = BuilderConfig.from_dict(data)
            config.apply_defaults()
            config.validate()
            config.resolve_files()
            return config

    raise FileNotFoundError(
        f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
    )
