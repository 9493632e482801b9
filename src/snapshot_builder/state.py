"""Typed per-build context shared by the steps."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from .errors import MissingStateError
from .models import ActionHandle, ConnectionInfo, ImageRecord, Keypair, ServerRecord

if TYPE_CHECKING:
    from .steps.base import Step


@dataclass
class BuildState:
    """Values produced by one step and consumed by later ones.

    Fields start unset (None) and are filled in as the pipeline advances.
    Steps run one at a time, so there is no locking here.
    """

    keypair: Optional[Keypair] = None
    ssh_key_ids: Optional[List[int]] = None
    image: Optional[str] = None
    server: Optional[ServerRecord] = None
    create_action: Optional[ActionHandle] = None
    rescue_password: Optional[str] = None
    connection: Optional[ConnectionInfo] = None
    snapshot: Optional[ImageRecord] = None
    # 整个构建的截止时间 (monotonic 秒)
    deadline: Optional[float] = None
    # 等待服务器启动时使用的截止时间
    boot_deadline: Optional[float] = None

    def set(self, key: str, value: Any) -> None:
        expected = _FIELD_TYPES.get(key)
        if expected is None:
            raise KeyError(f"unknown build state field '{key}'")
        if value is not None and not isinstance(value, expected):
            raise TypeError(
                f"build state field '{key}' expects {expected.__name__}, "
                f"got {type(value).__name__}"
            )
        setattr(self, key, value)

    def get(self, key: str) -> Any:
        value = self.get_optional(key)
        if value is None:
            raise MissingStateError(key)
        return value

    def get_optional(self, key: str) -> Any:
        if key not in _FIELD_TYPES:
            raise KeyError(f"unknown build state field '{key}'")
        return getattr(self, key)

    def discard(self, key: str) -> None:
        self.set(key, None)

    def to_payload(self) -> Dict[str, Any]:
        """Non-secret summary for the build log."""
        payload: Dict[str, Any] = {
            "image": self.image,
            "ssh_key_ids": self.ssh_key_ids,
            "server": self.server.to_dict() if self.server else None,
            "connection": self.connection.to_payload() if self.connection else None,
            "snapshot_id": self.snapshot.id if self.snapshot else None,
        }
        if self.keypair:
            payload["keypair"] = {
                "id": self.keypair.id,
                "name": self.keypair.name,
                "generated": self.keypair.generated,
            }
        return payload


_FIELD_TYPES: Dict[str, Type] = {
    "keypair": Keypair,
    "ssh_key_ids": list,
    "image": str,
    "server": ServerRecord,
    "create_action": ActionHandle,
    "rescue_password": str,
    "connection": ConnectionInfo,
    "snapshot": ImageRecord,
    "deadline": float,
    "boot_deadline": float,
}


def check_step_order(steps: Sequence["Step"], provided: Iterable[str] = ("deadline",)) -> List[Tuple[str, str]]:
    """Return ``(step, field)`` pairs read before any earlier step writes them.

    An empty list means every step's inputs are produced upstream.
    """
    known = {f.name for f in fields(BuildState)}
    available = set(provided)
    problems: List[Tuple[str, str]] = []
    for step in steps:
        for key in step.reads:
            if key not in known or key not in available:
                problems.append((step.name, key))
        available.update(step.writes)
    return problems
