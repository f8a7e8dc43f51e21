from __future__ import annotations

import os
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from ...core.contracts.training import TrainingConfiguration
from ...core.errors.base import NotFoundError, StorageError
from ...core.logging.service import LoggingService
from ..persistence.models import RunManifest, current_system

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _slug(model_id: str) -> str:
    return _SLUG_RE.sub("-", model_id.lower()).strip("-") or "run"


@dataclass
class RunStore:
    runs_root: str
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def run_dir(self: RunStore, run_id: str) -> Path:
        return Path(self.runs_root).expanduser() / run_id

    def create_run(
        self: RunStore,
        cfg: TrainingConfiguration,
        *,
        backend: str,
        data_file: str,
    ) -> RunManifest:
        ts = int(time.time())
        run_id = f"{_slug(cfg.model_id)}-{ts}-{uuid.uuid4().hex[:6]}"
        rdir = self.run_dir(run_id)
        try:
            rdir.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise StorageError(f"cannot create run directory {rdir}: {e}") from e
        manifest = RunManifest(
            run_id=run_id,
            created_at=ts,
            model_id=cfg.model_id,
            backend=backend,
            data_file=data_file,
            config=cfg,
            logs_path=str(rdir / "logs.jsonl"),
            system=current_system(int(os.cpu_count() or 1)),
        )
        self._write(manifest)
        return manifest

    def load(self: RunStore, run_id: str) -> RunManifest:
        path = self.run_dir(run_id) / "manifest.json"
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError(f"run not found: {run_id}") from None
        except OSError as e:
            raise StorageError(f"cannot read {path}: {e}") from e
        try:
            return RunManifest.model_validate_json(text)
        except ValueError as e:
            raise StorageError(f"corrupt manifest {path}: {e}") from e

    def save(self: RunStore, manifest: RunManifest) -> None:
        """Best-effort rewrite; manifest bookkeeping must never fail a run."""
        try:
            self._write(manifest)
        except StorageError as e:
            LoggingService.create().adapter(category="storage", service="runs").warning(
                "Failed to write run manifest",
                extra={
                    "event": "manifest_write_failed",
                    "run_id": manifest.run_id,
                    "reason": e.message,
                },
            )

    def _write(self: RunStore, manifest: RunManifest) -> None:
        path = self.run_dir(manifest.run_id) / "manifest.json"
        tmp = path.with_suffix(".json.tmp")
        with self._lock:
            try:
                tmp.write_text(manifest.model_dump_json(), encoding="utf-8")
                os.replace(tmp, path)
            except OSError as e:
                raise StorageError(f"cannot write {path}: {e}") from e
