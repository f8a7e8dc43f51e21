from __future__ import annotations

import logging
import os
import threading
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from logging import Handler, Logger, LoggerAdapter
from pathlib import Path

from .setup import JsonFormatter


class _RunFilter(logging.Filter):
    """Only lets through records tagged with the handler's run id."""

    def __init__(self: _RunFilter, run_id: str) -> None:
        super().__init__()
        self._run_id = run_id

    def filter(self: _RunFilter, record: logging.LogRecord) -> bool:
        return getattr(record, "run_id", None) == self._run_id


class _MergingAdapter(LoggerAdapter[Logger]):
    """Adapter whose per-call ``extra`` is merged over the bound fields instead of dropped."""

    def process(
        self: _MergingAdapter, msg: object, kwargs: MutableMapping[str, object]
    ) -> tuple[object, MutableMapping[str, object]]:
        merged: dict[str, object] = dict(self.extra or {})
        call_extra = kwargs.get("extra")
        if isinstance(call_extra, Mapping):
            merged.update(call_extra)
        kwargs["extra"] = merged
        return msg, kwargs


_HANDLERS: dict[str, Handler] = {}
_HANDLERS_LOCK = threading.Lock()


@dataclass
class LoggingService:
    base_logger: Logger

    @classmethod
    def create(cls: type[LoggingService]) -> LoggingService:
        base = logging.getLogger("finetune_studio")
        if base.level == logging.NOTSET:
            base.setLevel(logging.INFO)
        return cls(base_logger=base)

    def adapter(
        self: LoggingService,
        *,
        category: str,
        service: str,
        run_id: str | None = None,
        model_id: str | None = None,
    ) -> LoggerAdapter[Logger]:
        extra: dict[str, str] = {"category": category, "service": service}
        if run_id is not None:
            extra["run_id"] = run_id
        if model_id is not None:
            extra["model_id"] = model_id
        return _MergingAdapter(self.base_logger, extra)

    def attach_run_file(
        self: LoggingService,
        *,
        path: str,
        category: str,
        service: str,
        run_id: str | None = None,
    ) -> LoggerAdapter[Logger]:
        os.makedirs(Path(path).parent, exist_ok=True)
        abs_path = str(Path(path).resolve())
        with _HANDLERS_LOCK:
            handler = _HANDLERS.get(abs_path)
            if handler is None:
                handler = logging.FileHandler(abs_path, encoding="utf-8")
                handler.setFormatter(
                    JsonFormatter(static_fields={"category": category, "service": service})
                )
                if run_id is not None:
                    handler.addFilter(_RunFilter(run_id))
                self.base_logger.addHandler(handler)
                _HANDLERS[abs_path] = handler
        return self.adapter(category=category, service=service, run_id=run_id)

    def close_run_file(self: LoggingService, *, path: str) -> None:
        abs_path = str(Path(path).resolve())
        with _HANDLERS_LOCK:
            handler = _HANDLERS.pop(abs_path, None)
        if handler is not None:
            try:
                self.base_logger.removeHandler(handler)
            finally:
                handler.close()
