"""Build Hetzner Cloud snapshot images from a temporary server."""

from .builder import Builder
from .config import BuilderConfig, CommunicatorConfig, ImageFilter, load_config
from .errors import BuildError
from .models import Artifact

__all__ = [
    "Artifact",
    "Builder",
    "BuilderConfig",
    "BuildError",
    "CommunicatorConfig",
    "ImageFilter",
    "load_config",
]

__version__ = "0.1.0"
