from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path

from ..core.config.settings import Settings
from ..core.contracts.environment import EnvironmentStatus
from ..core.contracts.trainer import DatasetPlan, TrainerBackend
from ..core.contracts.training import (
    ACTIVE_STATUSES,
    STARTABLE_STATUSES,
    LogLevel,
    RunSnapshot,
    RunStatus,
    TrainingConfiguration,
    build_configuration,
)
from ..core.errors.base import (
    AlreadyRunningError,
    AppError,
    ConfigurationError,
    DataFileError,
    MissingArtifactError,
    NotFoundError,
)
from ..core.infra.paths import output_dir, run_data_dir
from ..core.logging.service import LoggingService
from ..core.services.inventory.model_inventory import ModelInventory
from ..core.services.registries import TrainerRegistry
from ..core.services.training.process_runner import ManagedProcess, run_bounded
from ..core.services.training.run_log import RunLog
from ..events.publisher import EventPublisher, Subscriber
from ..infra.persistence.models import RunManifest
from ..infra.storage.run_store import RunStore
from ..worker.training_worker import RunCancelled, RunContext, TrainingJob

class TrainingOrchestrator:
    """Owns the single fine-tuning run and its state machine.

    ``start`` validates synchronously and hands the stages to a background worker.
    Run state is only mutated here, under one lock; readers get frozen snapshots.
    Each run carries a token, and callbacks from a worker whose token is no longer
    current are rejected, so nothing is written after a stop has been recorded.
    """

    def __init__(
        self: TrainingOrchestrator,
        *,
        settings: Settings,
        inventory: ModelInventory,
        registry: TrainerRegistry,
        publisher: EventPublisher,
        environment: Callable[[], EnvironmentStatus | None] | None = None,
        store: RunStore | None = None,
    ) -> None:
        self._settings = settings
        self._inventory = inventory
        self._registry = registry
        self._publisher = publisher
        self._environment = environment
        self._store = store or RunStore(settings.app.runs_root)
        self._logsvc = LoggingService.create()
        self._logger = self._logsvc.adapter(category="orchestrator", service="training")
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="run")
        self._stage_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="stage")
        self._aux_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="generate")

        self._lock = threading.RLock()
        self._token = 0
        self._status: RunStatus = "idle"
        self._run_id: str | None = None
        self._epoch = 0
        self._total_epochs = 0
        self._loss: float | None = None
        self._progress = 0.0
        self._log = RunLog(settings.app.log_capacity)
        self._error: str | None = None
        self._config: TrainingConfiguration | None = None
        self._data_file: str | None = None
        self._output_path: str | None = None
        self._started_at: float | None = None
        self._finished_at: float | None = None
        self._has_trained_model = False
        self._manifest: RunManifest | None = None
        self._process: ManagedProcess | None = None
        self._future: Future[None] | None = None
        self._backend: TrainerBackend | None = None
        self._model_path: str | None = None
        self._run_log_path: str | None = None

    # Read side

    def snapshot(self: TrainingOrchestrator) -> RunSnapshot:
        with self._lock:
            return RunSnapshot(
                run_id=self._run_id,
                status=self._status,
                current_epoch=self._epoch,
                total_epochs=self._total_epochs,
                current_loss=self._loss,
                progress=self._progress,
                log=self._log.snapshot(),
                error=self._error,
                config=self._config,
                data_file=self._data_file,
                output_path=self._output_path,
                started_at=self._started_at,
                finished_at=self._finished_at,
                has_trained_model=self._has_trained_model,
            )

    def subscribe(self: TrainingOrchestrator, fn: Subscriber) -> Callable[[], None]:
        return self._publisher.subscribe(fn)

    def wait(self: TrainingOrchestrator, timeout: float | None = None) -> RunSnapshot:
        """Block until the current run's worker has finished, or the timeout elapses."""
        with self._lock:
            fut = self._future
        if fut is not None:
            wait([fut], timeout=timeout)
        return self.snapshot()

    # Commands

    def start(
        self: TrainingOrchestrator,
        config: TrainingConfiguration | Mapping[str, object],
        data_file: str,
    ) -> RunSnapshot:
        with self._lock:
            if self._status not in STARTABLE_STATUSES:
                raise AlreadyRunningError(f"a run is already {self._status}")
            cfg = build_configuration(config)
            try:
                artifact = self._inventory.get(cfg.model_id)
            except NotFoundError:
                raise MissingArtifactError(
                    f"model is not in the inventory: {cfg.model_id}"
                ) from None
            if not artifact.downloaded:
                raise MissingArtifactError(f"model is not fully downloaded: {cfg.model_id}")
            data_path = Path(data_file).expanduser()
            if not data_path.is_file():
                raise DataFileError(f"data file not found: {data_file}")
            try:
                backend = self._registry.get(self._settings.app.trainer_backend)
            except KeyError as e:
                raise ConfigurationError(str(e.args[0])) from None

            manifest = self._store.create_run(
                cfg, backend=backend.name(), data_file=str(data_path.resolve())
            )
            run_id = manifest.run_id
            self._token += 1
            token = self._token
            self._status = "loading"
            self._run_id = run_id
            self._epoch = 0
            self._total_epochs = cfg.epochs
            self._loss = None
            self._progress = 0.0
            self._log.clear()
            self._error = None
            self._config = cfg
            self._data_file = str(data_path.resolve())
            self._output_path = None
            self._started_at = time.time()
            self._finished_at = None
            self._has_trained_model = False
            self._manifest = manifest
            self._process = None
            self._backend = backend
            self._model_path = artifact.weights_path
            self._run_log_path = manifest.logs_path
            self._logsvc.attach_run_file(
                path=manifest.logs_path, category="training", service="orchestrator", run_id=run_id
            )
            env = self._environment() if self._environment is not None else None
            if env is not None and env.readiness != "ready":
                self._append(
                    f"Environment is {env.readiness.replace('_', ' ')}; training may fail",
                    "warning",
                )
            self._append(f"Loading model {artifact.display_name}")
            ctx = RunContext(
                run_id=run_id,
                config=cfg,
                data_file=data_path,
                model_path=artifact.weights_path,
                data_dir=run_data_dir(self._settings, run_id),
                adapter_dir=output_dir(self._settings, cfg.output_directory),
                backend=backend,
                stage_timeout_sec=self._settings.app.stage_timeout_sec,
                run_deadline=time.monotonic() + self._settings.app.run_timeout_sec,
                stop_grace_sec=self._settings.app.stop_grace_sec,
                holdout_fraction=self._settings.app.holdout_fraction,
                seed=self._settings.app.seed,
            )
            job = TrainingJob(ctx, _Control(self, token), self._stage_pool)
            self._future = self._executor.submit(job.run)
            snap = self.snapshot()

        self._logger.info(
            "Run started",
            extra={
                "event": "run_started",
                "run_id": run_id,
                "model_id": cfg.model_id,
                "total_epochs": cfg.epochs,
                "path": str(data_path),
            },
        )
        self._publisher.publish(
            {
                "type": "trainer.run.started.v1",
                "run_id": run_id,
                "model_id": cfg.model_id,
                "total_epochs": cfg.epochs,
                "data_file": str(data_path),
                "backend": backend.name(),
                "batch_size": cfg.batch_size,
                "learning_rate": cfg.learning_rate,
                "max_sequence_length": cfg.max_sequence_length,
            }
        )
        self._publisher.publish(
            {"type": "trainer.run.stage.v1", "run_id": run_id, "status": "loading"}
        )
        return snap

    def stop(self: TrainingOrchestrator) -> RunSnapshot:
        with self._lock:
            if self._status not in ACTIVE_STATUSES:
                return self.snapshot()
            self._token += 1
            prior = self._status
            run_id = self._run_id or ""
            self._status = "stopped"
            self._finished_at = time.time()
            self._append(f"Training stopped by user during {prior}", "warning")
            self._update_manifest(status="stopped", finished_at=self._finished_at)
            proc = self._process
            self._process = None
            snap = self.snapshot()
        if proc is not None:
            proc.terminate(self._settings.app.stop_grace_sec)
        self._logger.info(
            "Run stopped", extra={"event": "run_stopped", "run_id": run_id, "stage": prior}
        )
        self._publisher.publish(
            {
                "type": "trainer.run.failed.v1",
                "run_id": run_id,
                "message": "stopped by user",
                "status": "stopped",
            }
        )
        self._close_run_log()
        return snap

    def dismiss(self: TrainingOrchestrator) -> RunSnapshot:
        """Clear a finished run and return to idle."""
        with self._lock:
            if self._status in ACTIVE_STATUSES:
                raise AlreadyRunningError(f"cannot dismiss a run that is {self._status}")
            if self._status == "idle":
                return self.snapshot()
            self._token += 1
            self._status = "idle"
            self._run_id = None
            self._epoch = 0
            self._total_epochs = 0
            self._loss = None
            self._progress = 0.0
            self._log.clear()
            self._error = None
            self._config = None
            self._data_file = None
            self._output_path = None
            self._started_at = None
            self._finished_at = None
            self._has_trained_model = False
            self._manifest = None
            self._backend = None
            self._model_path = None
            return self.snapshot()

    def test_model(self: TrainingOrchestrator, prompt: str | None = None) -> Future[str]:
        """Generate a reply with the trained adapter; prompt and reply go to the run log."""
        with self._lock:
            if self._status != "completed" or not self._has_trained_model:
                raise MissingArtifactError("no trained model available; complete a run first")
            backend = self._backend
            model_path = self._model_path
            out = self._output_path
            token = self._token
            if backend is None or model_path is None or out is None:
                raise MissingArtifactError("no trained model available; complete a run first")
            text = prompt if prompt and prompt.strip() else self._settings.app.test_prompt
            self._append(f"Testing model with prompt: {text}")
        argv = backend.generate_command(
            model_path=model_path,
            adapter_dir=Path(out),
            prompt=text,
            max_tokens=self._settings.app.test_max_tokens,
        )
        return self._aux_pool.submit(self._generate, backend, argv, token)

    def shutdown(self: TrainingOrchestrator) -> None:
        self.stop()
        self._executor.shutdown(wait=True)
        self._aux_pool.shutdown(wait=True)
        self._stage_pool.shutdown(wait=False, cancel_futures=True)

    # Internals; callers hold the lock where noted

    def _generate(
        self: TrainingOrchestrator, backend: TrainerBackend, argv: list[str], token: int
    ) -> str:
        try:
            output = run_bounded(argv, timeout=self._settings.app.test_timeout_sec)
        except AppError as e:
            with self._lock:
                if token == self._token:
                    self._append(f"Model test failed: {e.message}", "error")
            raise
        reply = backend.parse_generation(output)
        with self._lock:
            if token == self._token:
                self._append(f"Model response: {reply}")
        return reply

    def _append(self: TrainingOrchestrator, message: str, level: LogLevel = "info") -> None:
        # Caller holds the lock
        self._log.append(message, level)
        log_fn = {
            "info": self._logger.info,
            "warning": self._logger.warning,
            "error": self._logger.error,
        }[level]
        log_fn(
            message,
            extra={"event": "run_log", "run_id": self._run_id or "", "status": self._status},
        )

    def _update_manifest(self: TrainingOrchestrator, **fields: object) -> None:
        # Caller holds the lock
        if self._manifest is None:
            return
        self._manifest = self._manifest.model_copy(update=fields)
        self._store.save(self._manifest)

    def _close_run_log(self: TrainingOrchestrator) -> None:
        with self._lock:
            path = self._run_log_path
            self._run_log_path = None
        if path is not None:
            self._logsvc.close_run_file(path=path)

    def _check(self: TrainingOrchestrator, token: int) -> None:
        # Caller holds the lock
        if token != self._token:
            raise RunCancelled()

    def _cb_transition(
        self: TrainingOrchestrator, token: int, status: RunStatus, message: str
    ) -> None:
        with self._lock:
            self._check(token)
            self._status = status
            self._append(message)
            self._update_manifest(status=status)
            run_id = self._run_id or ""
        self._publisher.publish(
            {"type": "trainer.run.stage.v1", "run_id": run_id, "status": status}
        )

    def _cb_log(self: TrainingOrchestrator, token: int, message: str, level: LogLevel) -> None:
        with self._lock:
            self._check(token)
            self._append(message, level)

    def _cb_epoch(
        self: TrainingOrchestrator, token: int, epoch: int, loss: float, step: int
    ) -> None:
        with self._lock:
            self._check(token)
            total = self._total_epochs
            self._epoch = epoch
            self._loss = loss
            self._progress = max(self._progress, min(1.0, epoch / total))
            progress = self._progress
            run_id = self._run_id or ""
            self._log.append(f"Epoch {epoch}/{total} complete, loss {loss:.4f}")
        self._logger.info(
            "Epoch complete",
            extra={
                "event": "epoch",
                "run_id": run_id,
                "epoch": epoch,
                "total_epochs": total,
                "loss": loss,
                "progress": progress,
                "steps": step,
            },
        )
        self._publisher.publish(
            {
                "type": "trainer.run.progress.v1",
                "run_id": run_id,
                "epoch": epoch,
                "total_epochs": total,
                "loss": loss,
                "progress": progress,
                "step": step,
            }
        )

    def _cb_attach(self: TrainingOrchestrator, token: int, proc: ManagedProcess) -> None:
        with self._lock:
            self._check(token)
            self._process = proc

    def _cb_dataset(self: TrainingOrchestrator, token: int, plan: DatasetPlan) -> None:
        with self._lock:
            self._check(token)
            self._update_manifest(
                train_count=plan.train_count, valid_count=plan.valid_count, steps=plan.total_steps
            )

    def _cb_complete(
        self: TrainingOrchestrator, token: int, output_path: str, files: list[Path]
    ) -> None:
        with self._lock:
            self._check(token)
            self._status = "completed"
            self._progress = 1.0
            self._output_path = output_path
            self._has_trained_model = True
            self._finished_at = time.time()
            self._process = None
            self._append(f"Training complete. Adapter saved to {output_path}")
            self._update_manifest(
                status="completed",
                output_path=output_path,
                final_loss=self._loss,
                finished_at=self._finished_at,
            )
            run_id = self._run_id or ""
            loss = self._loss
        self._logger.info(
            "Run completed",
            extra={
                "event": "run_completed",
                "run_id": run_id,
                "path": output_path,
                "count": len(files),
            },
        )
        self._publisher.publish(
            {
                "type": "trainer.run.completed.v1",
                "run_id": run_id,
                "loss": loss,
                "output_path": output_path,
            }
        )
        self._close_run_log()

    def _cb_fail(self: TrainingOrchestrator, token: int, error: AppError) -> None:
        with self._lock:
            self._check(token)
            self._status = "failed"
            self._error = error.message
            self._finished_at = time.time()
            self._process = None
            self._append(f"Training failed: {error.message}", "error")
            self._update_manifest(
                status="failed", error=error.message, finished_at=self._finished_at
            )
            run_id = self._run_id or ""
        self._logger.warning(
            "Run failed",
            extra={"event": "run_failed", "run_id": run_id, "error_code": error.code.value},
        )
        self._publisher.publish(
            {
                "type": "trainer.run.failed.v1",
                "run_id": run_id,
                "message": error.message,
                "status": "failed",
                "error_code": error.code.value,
            }
        )
        self._close_run_log()


class _Control:
    """RunControl bound to one run token."""

    def __init__(self: _Control, orch: TrainingOrchestrator, token: int) -> None:
        self._orch = orch
        self._token = token

    def cancelled(self: _Control) -> bool:
        with self._orch._lock:
            return self._token != self._orch._token

    def transition(self: _Control, status: RunStatus, message: str) -> None:
        self._orch._cb_transition(self._token, status, message)

    def log(self: _Control, message: str, level: LogLevel = "info") -> None:
        self._orch._cb_log(self._token, message, level)

    def epoch_tick(self: _Control, epoch: int, loss: float, step: int) -> None:
        self._orch._cb_epoch(self._token, epoch, loss, step)

    def attach_process(self: _Control, proc: ManagedProcess) -> None:
        self._orch._cb_attach(self._token, proc)

    def dataset_ready(self: _Control, plan: DatasetPlan) -> None:
        self._orch._cb_dataset(self._token, plan)

    def complete(self: _Control, output_path: str, files: list[Path]) -> None:
        self._orch._cb_complete(self._token, output_path, files)

    def fail(self: _Control, error: AppError) -> None:
        self._orch._cb_fail(self._token, error)
