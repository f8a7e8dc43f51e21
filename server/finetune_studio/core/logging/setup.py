from __future__ import annotations

import json
import logging
import os
import socket
import sys
import time
from typing import Final, TextIO

from .types import LoggingExtra

_LEVELS: Final[dict[str, int]] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _instance_id() -> str:
    override = os.getenv("APP_INSTANCE_ID", "").strip()
    if override:
        return override
    return f"{socket.gethostname().split('.')[0]}-{os.getpid()}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; structured ``extra`` fields become top-level keys."""

    def __init__(self: JsonFormatter, *, static_fields: dict[str, str] | None = None) -> None:
        super().__init__()
        self._instance = _instance_id()
        self._static = dict(static_fields or {})

    def format(self: JsonFormatter, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "instance": self._instance,
            **self._static,
        }
        for field_name in LoggingExtra.__annotations__:
            if hasattr(record, field_name) and field_name not in self._static:
                payload[field_name] = getattr(record, field_name)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def setup_logging(level: str = "INFO", *, stream: TextIO | None = None) -> None:
    """Route every logger to a single JSON handler on stdout (or ``stream``)."""
    lvl = _LEVELS.get(level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(lvl)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    # The package logger carries the run-log file handlers; keep it in step
    logging.getLogger("finetune_studio").setLevel(lvl)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
