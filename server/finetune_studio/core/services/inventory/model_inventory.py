from __future__ import annotations

import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Final

from ...contracts.inventory import ModelArtifact, display_name_for, repo_id_from_dir
from ...errors.base import DuplicateError, NotFoundError, StorageError
from ...logging.service import LoggingService

_logger: Final[logging.Logger] = logging.getLogger(__name__)


def _dir_size(root: Path) -> int:
    # Hub snapshots are symlinks into blobs/, so only regular files are counted.
    total = 0
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            p = Path(dirpath) / name
            if p.is_symlink():
                continue
            try:
                total += p.stat().st_size
            except OSError as e:
                _logger.debug("size check skipped for %s: %s", p, e)
    return total


def _snapshot_dir(repo_dir: Path, revision: str) -> Path | None:
    snapshots = repo_dir / "snapshots"
    if not snapshots.is_dir():
        return None
    ref = repo_dir / "refs" / revision
    if ref.is_file():
        pinned = snapshots / ref.read_text(encoding="utf-8").strip()
        if pinned.is_dir():
            return pinned
    candidates = [p for p in snapshots.iterdir() if p.is_dir() and any(p.iterdir())]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def _has_incomplete_blobs(repo_dir: Path) -> bool:
    blobs = repo_dir / "blobs"
    if not blobs.is_dir():
        return False
    return any(p.name.endswith(".incomplete") for p in blobs.iterdir())


def artifact_from_repo_dir(repo_dir: Path, *, revision: str = "main") -> ModelArtifact | None:
    model_id = repo_id_from_dir(repo_dir.name)
    if model_id is None or not repo_dir.is_dir():
        return None
    snapshot = _snapshot_dir(repo_dir, revision)
    downloaded = snapshot is not None and not _has_incomplete_blobs(repo_dir)
    return ModelArtifact(
        id=model_id,
        display_name=display_name_for(model_id),
        size_bytes=_dir_size(repo_dir),
        storage_path=str(repo_dir.resolve()),
        downloaded=downloaded,
        snapshot_path=str(snapshot.resolve()) if snapshot is not None else None,
    )


class ModelInventory:
    """Locally available model artifacts plus the current selection.

    All mutations go through one lock, so a concurrent delete and select on the
    same id cannot leave the selection pointing at a missing artifact.
    """

    def __init__(self: ModelInventory, *, revision: str = "main") -> None:
        self._lock = threading.RLock()
        self._items: dict[str, ModelArtifact] = {}
        self._selected: str | None = None
        self._revision = revision
        self._logger = LoggingService.create().adapter(category="inventory", service="models")

    def scan(self: ModelInventory, cache_directory: str | Path) -> list[ModelArtifact]:
        root = Path(cache_directory).expanduser()
        if not root.is_dir():
            raise StorageError(f"cache directory not found: {root}")
        try:
            entries = sorted(root.iterdir())
        except OSError as e:
            raise StorageError(f"cannot read cache directory {root}: {e}") from e
        found: list[ModelArtifact] = []
        for entry in entries:
            try:
                art = artifact_from_repo_dir(entry, revision=self._revision)
            except OSError as e:
                self._logger.warning(
                    "Skipping unreadable model directory",
                    extra={"event": "scan_skip", "path": str(entry), "reason": str(e)},
                )
                continue
            if art is not None:
                found.append(art)
        with self._lock:
            self._items = {a.id: a for a in found}
            if self._selected is not None and self._selected not in self._items:
                self._selected = None
        self._logger.info(
            "Cache scanned", extra={"event": "scan", "path": str(root), "count": len(found)}
        )
        return list(found)

    def list(self: ModelInventory) -> list[ModelArtifact]:
        with self._lock:
            return list(self._items.values())

    def get(self: ModelInventory, model_id: str) -> ModelArtifact:
        with self._lock:
            art = self._items.get(model_id)
        if art is None:
            raise NotFoundError(f"model not found: {model_id}")
        return art

    def contains(self: ModelInventory, model_id: str) -> bool:
        with self._lock:
            return model_id in self._items

    def selected(self: ModelInventory) -> ModelArtifact | None:
        with self._lock:
            if self._selected is None:
                return None
            return self._items.get(self._selected)

    def select(self: ModelInventory, model_id: str) -> ModelArtifact:
        with self._lock:
            art = self._items.get(model_id)
            if art is None:
                raise NotFoundError(f"model not found: {model_id}")
            self._selected = model_id
        self._logger.info("Model selected", extra={"event": "select", "model_id": model_id})
        return art

    def deselect(self: ModelInventory) -> None:
        with self._lock:
            self._selected = None

    def delete(self: ModelInventory, model_id: str, *, purge: bool = False) -> bool:
        """Remove an artifact record; unknown ids are a no-op.

        With ``purge`` the artifact's storage directory is removed from disk as well.
        Returns whether a record was removed.
        """
        with self._lock:
            art = self._items.pop(model_id, None)
            if art is None:
                return False
            if self._selected == model_id:
                self._selected = None
        if purge:
            try:
                shutil.rmtree(art.storage_path)
            except FileNotFoundError:
                self._logger.info(
                    "Model files already removed",
                    extra={"event": "delete_missing", "model_id": model_id},
                )
            except OSError as e:
                raise StorageError(f"failed to remove {art.storage_path}: {e}") from e
        self._logger.info(
            "Model deleted",
            extra={"event": "delete", "model_id": model_id, "path": art.storage_path},
        )
        return True

    def register(self: ModelInventory, artifact: ModelArtifact) -> ModelArtifact:
        with self._lock:
            if artifact.id in self._items:
                raise DuplicateError(f"model already registered: {artifact.id}")
            self._items[artifact.id] = artifact
        self._logger.info(
            "Model registered",
            extra={"event": "register", "model_id": artifact.id, "size": artifact.size_bytes},
        )
        return artifact

    def replace(self: ModelInventory, artifact: ModelArtifact) -> ModelArtifact:
        """Swap in a new record for an existing id; the selection is kept."""
        with self._lock:
            if artifact.id not in self._items:
                raise NotFoundError(f"model not found: {artifact.id}")
            self._items[artifact.id] = artifact
        self._logger.info(
            "Model replaced",
            extra={"event": "replace", "model_id": artifact.id, "size": artifact.size_bytes},
        )
        return artifact
