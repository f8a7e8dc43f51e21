from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Protocol, TypeVar

from ..core.contracts.trainer import DatasetPlan, TrainerBackend
from ..core.contracts.training import LogLevel, RunStatus, TrainingConfiguration
from ..core.errors.base import AppError, ErrorCode, ProcessError, StorageError
from ..core.services.dataset.instruction_dataset import Record, load_records, prepare_dataset
from ..core.services.training.process_runner import ManagedProcess

T = TypeVar("T")

_logger: Final[logging.Logger] = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class RunCancelled(Exception):
    """Raised inside the worker once the run it belongs to is no longer current."""


class RunControl(Protocol):
    """Narrow view of the orchestrator a job may mutate the run through.

    Every call raises RunCancelled when the job's run has been stopped or replaced,
    so a stage can never write state after the stop was recorded.
    """

    def cancelled(self: RunControl) -> bool: ...
    def transition(self: RunControl, status: RunStatus, message: str) -> None: ...
    def log(self: RunControl, message: str, level: LogLevel = "info") -> None: ...
    def epoch_tick(self: RunControl, epoch: int, loss: float, step: int) -> None: ...
    def attach_process(self: RunControl, proc: ManagedProcess) -> None: ...
    def dataset_ready(self: RunControl, plan: DatasetPlan) -> None: ...
    def complete(self: RunControl, output_path: str, files: list[Path]) -> None: ...
    def fail(self: RunControl, error: AppError) -> None: ...


@dataclass
class RunContext:
    run_id: str
    config: TrainingConfiguration
    data_file: Path
    model_path: str
    data_dir: Path
    adapter_dir: Path
    backend: TrainerBackend
    stage_timeout_sec: float
    run_deadline: float
    stop_grace_sec: float
    holdout_fraction: float
    seed: int


class TrainingJob:
    """Runs the stages of one run: load, tokenize, train, save.

    Preparatory stages execute on ``stage_pool`` and are awaited with a bound so
    that a stop or a timeout unblocks the job even if the stage itself hangs.
    """

    def __init__(
        self: TrainingJob,
        ctx: RunContext,
        ctl: RunControl,
        stage_pool: ThreadPoolExecutor,
    ) -> None:
        self._ctx = ctx
        self._ctl = ctl
        self._pool = stage_pool

    def run(self: TrainingJob) -> None:
        try:
            records = self._bounded("loading", self._load)
            self._ctl.transition("tokenizing", "Tokenizing dataset")
            plan = self._bounded("tokenizing", lambda: self._tokenize(records))
            self._ctl.dataset_ready(plan)
            self._ctl.transition(
                "training", f"Starting training for {self._ctx.config.epochs} epochs"
            )
            self._train(plan)
            self._ctl.transition("saving", f"Saving adapter to {self._ctx.adapter_dir}")
            files = self._bounded("saving", self._save)
            self._ctl.complete(str(self._ctx.adapter_dir), files)
        except RunCancelled:
            _logger.info(
                "Run superseded, worker exiting",
                extra={"event": "worker_cancelled", "run_id": self._ctx.run_id},
            )
        except AppError as e:
            _logger.info(
                "Run stage failed",
                extra={
                    "event": "worker_failed",
                    "run_id": self._ctx.run_id,
                    "error_code": e.code.value,
                },
            )
            self._fail(e)
        except Exception as e:
            _logger.exception(
                "Run worker crashed", extra={"event": "worker_crashed", "run_id": self._ctx.run_id}
            )
            self._fail(AppError(ErrorCode.INTERNAL, f"unexpected error: {e}"))
            raise

    def _fail(self: TrainingJob, error: AppError) -> None:
        try:
            self._ctl.fail(error)
        except RunCancelled:
            _logger.info(
                "Run already stopped, failure not recorded",
                extra={"event": "worker_cancelled", "run_id": self._ctx.run_id},
            )

    def _bounded(self: TrainingJob, stage: str, fn: Callable[[], T]) -> T:
        deadline = min(time.monotonic() + self._ctx.stage_timeout_sec, self._ctx.run_deadline)
        fut = self._pool.submit(fn)
        while True:
            done, _ = wait([fut], timeout=_POLL_INTERVAL)
            if done:
                return fut.result()
            if self._ctl.cancelled():
                fut.cancel()
                raise RunCancelled()
            if time.monotonic() >= deadline:
                fut.cancel()
                raise ProcessError(f"{stage} stage timed out")

    def _load(self: TrainingJob) -> list[Record]:
        records = load_records(self._ctx.data_file)
        self._ctl.log(f"Loaded {len(records)} records from {self._ctx.data_file.name}")
        try:
            self._ctx.adapter_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"cannot create output directory {self._ctx.adapter_dir}: {e}"
            ) from e
        return records

    def _tokenize(self: TrainingJob, records: list[Record]) -> DatasetPlan:
        cfg = self._ctx.config
        plan = prepare_dataset(
            records,
            self._ctx.data_dir,
            batch_size=cfg.batch_size,
            epochs=cfg.epochs,
            holdout_fraction=self._ctx.holdout_fraction,
            seed=self._ctx.seed,
        )
        self._ctl.log(
            f"Prepared {plan.train_count} training and {plan.valid_count} validation "
            f"examples ({plan.steps_per_epoch} steps per epoch)"
        )
        return plan

    def _train(self: TrainingJob, plan: DatasetPlan) -> None:
        ctx = self._ctx
        epochs = ctx.config.epochs
        argv = ctx.backend.train_command(
            ctx.config,
            model_path=ctx.model_path,
            plan=plan,
            adapter_dir=ctx.adapter_dir,
            seed=ctx.seed,
        )
        proc = ManagedProcess(argv)
        self._ctl.attach_process(proc)
        proc.start()
        epoch = 0
        last_step = 0
        try:
            if self._ctl.cancelled():
                raise RunCancelled()
            for line in proc.lines(should_stop=self._ctl.cancelled, deadline=ctx.run_deadline):
                if ctx.config.verbose_logging and line.strip():
                    self._ctl.log(line)
                report = ctx.backend.parse_progress(line)
                if report is None or report.step <= last_step:
                    continue
                last_step = report.step
                reached = min(epochs, report.step // plan.steps_per_epoch)
                while epoch < reached:
                    epoch += 1
                    self._ctl.epoch_tick(epoch, report.loss, report.step)
            if self._ctl.cancelled():
                raise RunCancelled()
            code = proc.wait(timeout=ctx.stop_grace_sec)
        finally:
            if proc.running():
                proc.terminate(ctx.stop_grace_sec)
        if code != 0:
            tail = proc.tail
            detail = f": {tail[-1]}" if tail else ""
            raise ProcessError(f"training process exited with code {code}{detail}")
        if epoch < epochs:
            raise ProcessError(
                f"training process exited after epoch {epoch} of {epochs} without finishing"
            )

    def _save(self: TrainingJob) -> list[Path]:
        files = self._ctx.backend.saved_files(self._ctx.adapter_dir)
        if not files:
            raise ProcessError(f"trainer did not write adapter weights to {self._ctx.adapter_dir}")
        return files
