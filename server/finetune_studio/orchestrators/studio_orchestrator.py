from __future__ import annotations

import threading
from collections.abc import Mapping
from concurrent.futures import Future
from pathlib import Path

from ..core.contracts.environment import EnvironmentStatus
from ..core.contracts.inventory import ModelArtifact
from ..core.contracts.studio import StudioView
from ..core.contracts.training import RunSnapshot
from ..core.errors.base import DataFileError, StorageError
from ..core.logging.service import LoggingService
from ..core.services.data.model_downloader import DownloadState, ModelDownloader
from ..core.services.environment.prober import EnvironmentProber
from ..core.services.inventory.model_inventory import ModelInventory
from .training_orchestrator import TrainingOrchestrator


class StudioOrchestrator:
    """Command interface of the studio: the one place the presentation layer calls.

    Holds the last probe result and the picked data file; run state lives in the
    training orchestrator and artifacts in the inventory.
    """

    def __init__(
        self: StudioOrchestrator,
        *,
        prober: EnvironmentProber,
        inventory: ModelInventory,
        downloader: ModelDownloader,
        training: TrainingOrchestrator,
    ) -> None:
        self._prober = prober
        self._inventory = inventory
        self._downloader = downloader
        self._training = training
        self._lock = threading.Lock()
        self._env: EnvironmentStatus | None = None
        self._data_file: str | None = None
        self._logger = LoggingService.create().adapter(category="orchestrator", service="studio")

    # Environment

    def probe(self: StudioOrchestrator) -> EnvironmentStatus:
        status = self._prober.probe()
        with self._lock:
            self._env = status
        if status.cache_directory:
            try:
                self._inventory.scan(status.cache_directory)
            except StorageError as e:
                self._logger.warning(
                    "Inventory scan failed after probe",
                    extra={"event": "scan_failed", "reason": e.message},
                )
        return status

    def environment(self: StudioOrchestrator) -> EnvironmentStatus | None:
        with self._lock:
            return self._env

    def cache_directory(self: StudioOrchestrator) -> str:
        env = self.environment()
        return env.cache_directory if env is not None else ""

    # Models

    def scan_models(self: StudioOrchestrator) -> list[ModelArtifact]:
        cache = self.cache_directory()
        if cache == "":
            raise StorageError("cache directory is not resolved; probe the environment first")
        return self._inventory.scan(cache)

    def select_model(self: StudioOrchestrator, model_id: str) -> ModelArtifact:
        return self._inventory.select(model_id)

    def deselect_model(self: StudioOrchestrator) -> None:
        self._inventory.deselect()

    def delete_model(self: StudioOrchestrator, model_id: str, *, purge: bool = False) -> bool:
        return self._inventory.delete(model_id, purge=purge)

    def download_model(self: StudioOrchestrator, model_id: str) -> Future[ModelArtifact]:
        return self._downloader.download(model_id)

    def cancel_download(self: StudioOrchestrator, model_id: str) -> bool:
        return self._downloader.cancel(model_id)

    def download_state(self: StudioOrchestrator, model_id: str) -> DownloadState | None:
        return self._downloader.state(model_id)

    # Runs

    def pick_data_file(self: StudioOrchestrator, path: str) -> str:
        p = Path(path).expanduser()
        if not p.is_file():
            raise DataFileError(f"data file not found: {path}")
        resolved = str(p.resolve())
        with self._lock:
            self._data_file = resolved
        self._logger.info("Data file picked", extra={"event": "data_file", "path": resolved})
        return resolved

    def data_file(self: StudioOrchestrator) -> str | None:
        with self._lock:
            return self._data_file

    def start_run(
        self: StudioOrchestrator, overrides: Mapping[str, object] | None = None
    ) -> RunSnapshot:
        """Start a run on the selected model and picked data file.

        ``overrides`` may set any configuration field; ``model_id`` defaults to the
        selected model.
        """
        data_file = self.data_file()
        if data_file is None:
            raise DataFileError("no data file selected")
        raw: dict[str, object] = dict(overrides or {})
        selected = self._inventory.selected()
        if "model_id" not in raw and selected is not None:
            raw["model_id"] = selected.id
        return self._training.start(raw, data_file)

    def stop_run(self: StudioOrchestrator) -> RunSnapshot:
        return self._training.stop()

    def dismiss_run(self: StudioOrchestrator) -> RunSnapshot:
        return self._training.dismiss()

    def test_model(self: StudioOrchestrator, prompt: str | None = None) -> Future[str]:
        return self._training.test_model(prompt)

    def run(self: StudioOrchestrator) -> RunSnapshot:
        return self._training.snapshot()

    def view(self: StudioOrchestrator) -> StudioView:
        env = self.environment()
        return StudioView(
            readiness=env.readiness if env is not None else "not_ready",
            environment=env,
            models=self._inventory.list(),
            selected_model=self._inventory.selected(),
            data_file=self.data_file(),
            run=self._training.snapshot(),
        )
