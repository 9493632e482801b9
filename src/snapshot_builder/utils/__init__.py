"""Shared helpers."""

from .logging import RedactingFilter, configure_logging, get_logger

__all__ = ["RedactingFilter", "configure_logging", "get_logger"]
