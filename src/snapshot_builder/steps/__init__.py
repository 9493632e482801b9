"""Build pipeline steps, in the order the builder runs them."""

from .base import Step, StepOutcome
from .ssh_key import CreateSSHKey
from .image import ResolveImage
from .server import CreateServer, WaitForServer
from .server_type import DowngradeServerType, UpgradeServerType
from .rescue import EnableRescue
from .connectivity import WaitForConnectivity
from .provision import Provision, Provisioner
from .snapshot import CreateSnapshot, ShutdownServer

__all__ = [
    "Step",
    "StepOutcome",
    "CreateSSHKey",
    "ResolveImage",
    "CreateServer",
    "WaitForServer",
    "UpgradeServerType",
    "DowngradeServerType",
    "EnableRescue",
    "WaitForConnectivity",
    "Provision",
    "Provisioner",
    "ShutdownServer",
    "CreateSnapshot",
]
