from __future__ import annotations

import fnmatch
import re
import shutil
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Final, Literal

from pydantic import BaseModel

from ...contracts.inventory import ModelArtifact, repo_dir_name
from ...errors.base import DownloadError, DuplicateError
from ...logging.service import LoggingService
from ..inventory.model_inventory import ModelInventory, artifact_from_repo_dir
from .hub_client import HubClientError, HubSource

_REPO_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][\w.-]*/[A-Za-z0-9][\w.-]*$")

DownloadStatus = Literal["running", "completed", "failed", "cancelled"]


class DownloadState(BaseModel):
    model_id: str
    status: DownloadStatus
    bytes_done: int = 0
    files_done: int = 0
    files_total: int = 0
    error: str | None = None
    artifact: ModelArtifact | None = None

    model_config = {"extra": "forbid", "validate_assignment": True}


class _DownloadFuture(Future[ModelArtifact]):
    """Future whose ``cancel`` also aborts a download that has already started.

    A running download cannot be marked cancelled, so ``cancel`` returns False for
    it; the future then fails with ``DownloadError`` and nothing is registered.
    """

    def __init__(self: _DownloadFuture, cancel_event: threading.Event) -> None:
        super().__init__()
        self._cancel_event = cancel_event

    def cancel(self: _DownloadFuture) -> bool:
        self._cancel_event.set()
        return super().cancel()


class _Job:
    def __init__(self: _Job, model_id: str) -> None:
        self.cancel_event = threading.Event()
        self.state = DownloadState(model_id=model_id, status="running")
        self.future = _DownloadFuture(self.cancel_event)


class _RepoCheckpoint:
    """What a repo directory held before a download, so a failed one can be undone."""

    def __init__(self: _RepoCheckpoint, repo_dir: Path, revision: str) -> None:
        self.repo_dir = repo_dir
        self.existed = repo_dir.exists()
        self.paths: set[Path] = set(repo_dir.rglob("*")) if self.existed else set()
        self.ref = repo_dir / "refs" / revision
        self.ref_text = self.ref.read_text(encoding="utf-8") if self.ref.is_file() else None

    def restore(self: _RepoCheckpoint) -> None:
        if not self.existed:
            shutil.rmtree(self.repo_dir, ignore_errors=True)
            return
        added = [p for p in self.repo_dir.rglob("*") if p not in self.paths]
        for p in sorted(added, key=lambda p: len(p.parts), reverse=True):
            if p.is_dir() and not p.is_symlink():
                shutil.rmtree(p, ignore_errors=True)
            else:
                p.unlink(missing_ok=True)
        if self.ref_text is not None:
            self.ref.write_text(self.ref_text, encoding="utf-8")


class ModelDownloader:
    """Fetches hub repositories into the cache directory and registers them.

    At most one download per model id is in flight; concurrent callers share the
    same future. A download either registers a complete artifact or leaves the
    cache and the inventory as they were.
    """

    def __init__(
        self: ModelDownloader,
        *,
        inventory: ModelInventory,
        cache_dir: Callable[[], str],
        hub: HubSource,
        revision: str = "main",
        allow_patterns: Sequence[str] = (),
        max_workers: int = 2,
    ) -> None:
        self._inventory = inventory
        self._cache_dir = cache_dir
        self._hub = hub
        self._revision = revision
        self._patterns = list(allow_patterns)
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="download")
        self._lock = threading.Lock()
        self._inflight: dict[str, _Job] = {}
        self._finished: dict[str, DownloadState] = {}
        self._logger = LoggingService.create().adapter(category="downloads", service="hub")

    def download(self: ModelDownloader, model_id: str) -> Future[ModelArtifact]:
        model_id = model_id.strip()
        with self._lock:
            job = self._inflight.get(model_id)
            if job is not None:
                return job.future
            job = _Job(model_id)
            self._inflight[model_id] = job
        self._logger.info(
            "Download requested", extra={"event": "download_requested", "model_id": model_id}
        )
        self._pool.submit(self._run, job)
        return job.future

    def cancel(self: ModelDownloader, model_id: str) -> bool:
        with self._lock:
            job = self._inflight.get(model_id)
        if job is None:
            return False
        job.future.cancel()
        return True

    def state(self: ModelDownloader, model_id: str) -> DownloadState | None:
        with self._lock:
            job = self._inflight.get(model_id)
            if job is not None:
                return job.state.model_copy()
            return self._finished.get(model_id)

    def shutdown(self: ModelDownloader) -> None:
        with self._lock:
            jobs = list(self._inflight.values())
        for job in jobs:
            job.future.cancel()
        self._pool.shutdown(wait=True)

    def _run(self: ModelDownloader, job: _Job) -> None:
        model_id = job.state.model_id
        if not job.future.set_running_or_notify_cancel():
            job.state.status = "cancelled"
            job.state.error = "download cancelled"
            self._logger.info(
                "Download cancelled before start",
                extra={"event": "download_cancelled", "model_id": model_id},
            )
            self._finish(job)
            return
        try:
            artifact = self._fetch(job)
        except DownloadError as e:
            status: DownloadStatus = "cancelled" if job.cancel_event.is_set() else "failed"
            job.state.status = status
            job.state.error = e.message
            self._logger.warning(
                "Download failed",
                extra={"event": "download_failed", "model_id": model_id, "reason": e.message},
            )
            self._finish(job)
            job.future.set_exception(e)
        except Exception as e:
            job.state.status = "failed"
            job.state.error = str(e)
            self._logger.exception(
                "Download crashed", extra={"event": "download_failed", "model_id": model_id}
            )
            self._finish(job)
            job.future.set_exception(DownloadError(f"unexpected error: {e}"))
            raise
        else:
            job.state.status = "completed"
            job.state.artifact = artifact
            self._finish(job)
            job.future.set_result(artifact)

    def _finish(self: ModelDownloader, job: _Job) -> None:
        with self._lock:
            self._inflight.pop(job.state.model_id, None)
            self._finished[job.state.model_id] = job.state.model_copy()

    def _wanted(self: ModelDownloader, filename: str) -> bool:
        if not self._patterns:
            return True
        base = filename.rsplit("/", 1)[-1]
        return any(fnmatch.fnmatch(base, pat) for pat in self._patterns)

    @staticmethod
    def _check_cancelled(job: _Job) -> None:
        if job.cancel_event.is_set():
            raise DownloadError("download cancelled")

    def _fetch(self: ModelDownloader, job: _Job) -> ModelArtifact:
        model_id = job.state.model_id
        if not _REPO_ID_RE.match(model_id):
            raise DownloadError(f"invalid model id '{model_id}', expected 'org/name'")
        previous = self._inventory.get(model_id) if self._inventory.contains(model_id) else None
        if previous is not None and previous.downloaded:
            return previous
        cache_raw = self._cache_dir()
        if cache_raw.strip() == "":
            raise DownloadError("cache directory is not resolved")
        cache = Path(cache_raw)
        repo_dir = cache / repo_dir_name(model_id)
        checkpoint = _RepoCheckpoint(repo_dir, self._revision)
        start = time.time()
        try:
            info = self._hub.model_info(model_id, revision=self._revision)
            files = [f for f in info.files if self._wanted(f.filename)]
            if not files:
                raise DownloadError(f"repository {model_id} has no downloadable model files")
            job.state.files_total = len(files)
            for rf in files:
                self._check_cancelled(job)
                path = self._hub.fetch(
                    model_id, rf.filename, revision=self._revision, cache_dir=cache
                )
                job.state.bytes_done += path.stat().st_size
                job.state.files_done += 1
            # Last point at which a cancel still leaves no trace
            self._check_cancelled(job)
            for stale in (repo_dir / "blobs").glob("*.incomplete"):
                stale.unlink()
            artifact = artifact_from_repo_dir(repo_dir, revision=self._revision)
            if artifact is None or not artifact.downloaded:
                raise DownloadError(f"{model_id}: downloaded files not found in cache")
        except HubClientError as e:
            checkpoint.restore()
            raise DownloadError(f"{model_id}: {e}") from e
        except OSError as e:
            checkpoint.restore()
            raise DownloadError(f"{model_id}: storage error: {e}") from e
        except DownloadError:
            checkpoint.restore()
            raise

        if previous is not None:
            self._inventory.replace(artifact)
        else:
            try:
                self._inventory.register(artifact)
            except DuplicateError:
                # Registered by a concurrent scan in the meantime; keep that record.
                self._logger.info(
                    "Download already registered",
                    extra={"event": "download_duplicate", "model_id": model_id},
                )
                return self._inventory.get(model_id)
        self._logger.info(
            "Download completed",
            extra={
                "event": "download_completed",
                "model_id": model_id,
                "size": artifact.size_bytes,
                "count": len(files),
                "elapsed_seconds": round(time.time() - start, 2),
            },
        )
        return artifact
