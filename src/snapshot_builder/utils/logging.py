"""Logging helpers."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

_LOGGING_CONFIGURED = False

_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"

REDACTED = "<sensitive>"


class RedactingFilter(logging.Filter):
    """Scrubs the given secret values out of every record it sees.

    The filter is handed an explicit list of secrets (API token, passwords)
    by whoever sets up logging, and attached to the handlers that write
    records out.
    """

    def __init__(self, secrets: Iterable[Optional[str]] = ()) -> None:
        super().__init__()
        self.secrets: List[str] = []
        for secret in secrets:
            self.add(secret)

    def add(self, secret: Optional[str]) -> None:
        # 太短的值会误伤正常日志
        if secret and len(secret) >= 4 and secret not in self.secrets:
            self.secrets.append(secret)

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(level=logging.INFO, format=_LOG_FORMAT)
        _LOGGING_CONFIGURED = True
    return logging.getLogger(name)


def configure_logging(
    level: int = logging.INFO,
    redaction: Optional[RedactingFilter] = None,
) -> None:
    """Configure root logging and attach ``redaction`` to its handlers."""
    global _LOGGING_CONFIGURED
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    _LOGGING_CONFIGURED = True
    root = logging.getLogger()
    root.setLevel(level)
    if redaction is not None:
        for handler in root.handlers:
            if redaction not in handler.filters:
                handler.addFilter(redaction)
