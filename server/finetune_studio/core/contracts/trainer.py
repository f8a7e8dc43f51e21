from __future__ import annotations

from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from .training import TrainingConfiguration


class DatasetPlan(BaseModel):
    data_dir: str
    train_count: int
    valid_count: int
    steps_per_epoch: int
    total_steps: int

    model_config = {"extra": "forbid", "frozen": True}


class StepReport(BaseModel):
    """One training-loss report parsed from the trainer's output stream."""

    step: int
    loss: float

    model_config = {"extra": "forbid", "frozen": True}


class TrainerBackend(Protocol):
    def name(self: TrainerBackend) -> str: ...
    def train_command(
        self: TrainerBackend,
        cfg: TrainingConfiguration,
        *,
        model_path: str,
        plan: DatasetPlan,
        adapter_dir: Path,
        seed: int,
    ) -> list[str]: ...
    def parse_progress(self: TrainerBackend, line: str) -> StepReport | None: ...
    def saved_files(self: TrainerBackend, adapter_dir: Path) -> list[Path]: ...
    def generate_command(
        self: TrainerBackend,
        *,
        model_path: str,
        adapter_dir: Path,
        prompt: str,
        max_tokens: int,
    ) -> list[str]: ...
    def parse_generation(self: TrainerBackend, output: str) -> str: ...
