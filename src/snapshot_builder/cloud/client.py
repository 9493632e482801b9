"""Abstract control-plane client used by the build steps."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..models import ActionHandle, ImageRecord, Keypair, ServerRecord, ServerRequest


class CloudClient(ABC):
    """Operations the builder needs from a cloud provider.

    Implementations must not keep per-build state: one client may serve
    several builds at once. Request rejections are raised as
    ProviderRequestError.
    """

    @abstractmethod
    def create_ssh_key(self, name: str, public_key: str, labels: Optional[Dict[str, str]] = None) -> Keypair:
        pass

    @abstractmethod
    def delete_ssh_key(self, key_id: int) -> None:
        pass

    @abstractmethod
    def list_images(self, label_selector: str) -> List[ImageRecord]:
        pass

    @abstractmethod
    def create_server(self, request: ServerRequest) -> Tuple[ServerRecord, ActionHandle]:
        pass

    @abstractmethod
    def get_server(self, server_id: int) -> ServerRecord:
        pass

    @abstractmethod
    def delete_server(self, server_id: int) -> Optional[ActionHandle]:
        pass

    @abstractmethod
    def shutdown(self, server_id: int) -> ActionHandle:
        """Request a graceful (ACPI) shutdown."""

    @abstractmethod
    def power_off(self, server_id: int) -> ActionHandle:
        """Cut power immediately."""

    @abstractmethod
    def power_on(self, server_id: int) -> ActionHandle:
        pass

    @abstractmethod
    def reboot(self, server_id: int) -> ActionHandle:
        """Hard reset, used to boot into a freshly enabled rescue system."""

    @abstractmethod
    def enable_rescue(
        self,
        server_id: int,
        mode: str,
        ssh_key_ids: Sequence[Union[int, str]] = (),
    ) -> Tuple[Optional[str], ActionHandle]:
        """Enable rescue mode; returns the rescue root password and the action."""

    @abstractmethod
    def change_type(self, server_id: int, server_type: str, upgrade_disk: bool = False) -> ActionHandle:
        pass

    @abstractmethod
    def create_image(
        self,
        server_id: int,
        description: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> Tuple[ImageRecord, ActionHandle]:
        pass

    @abstractmethod
    def get_action(self, action_id: int) -> ActionHandle:
        pass
