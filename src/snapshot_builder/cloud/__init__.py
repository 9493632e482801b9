"""Cloud control-plane clients."""

from .client import CloudClient
from .hcloud import HCloudClient

__all__ = ["CloudClient", "HCloudClient"]
