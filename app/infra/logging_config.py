"""Process-wide logging setup shared by the API, the inbox consumers and the poller."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

from app.config import get_settings

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")


class LoggingConfig:
    """Configure the root logger once per process."""

    _configured = False

    def __init__(self, level: Optional[str] = None, fmt: Optional[str] = None) -> None:
        if LoggingConfig._configured:
            return
        settings = get_settings()
        self.level = (level or settings.log_level or "INFO").upper()
        self.fmt = (fmt or settings.log_format or "text").lower()
        self._configure()
        LoggingConfig._configured = True

    def _configure(self) -> None:
        root = logging.getLogger()
        root.setLevel(self.level)
        root.handlers = []

        handler = logging.StreamHandler(sys.stdout)
        if self.fmt == "json":
            handler.setFormatter(
                jsonlogger.JsonFormatter(JSON_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
            )
        else:
            handler.setFormatter(logging.Formatter(TEXT_FORMAT))
        root.addHandler(handler)

        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "wacrm_bridge") -> logging.Logger:
    return logging.getLogger(name)
