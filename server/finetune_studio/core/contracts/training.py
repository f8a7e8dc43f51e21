from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Final, Literal

from pydantic import BaseModel, Field, ValidationError

from ..errors.base import ConfigurationError

RunStatus = Literal[
    "idle",
    "loading",
    "tokenizing",
    "training",
    "saving",
    "completed",
    "stopped",
    "failed",
]

ACTIVE_STATUSES: Final[frozenset[RunStatus]] = frozenset(
    {"loading", "tokenizing", "training", "saving"}
)
STARTABLE_STATUSES: Final[frozenset[RunStatus]] = frozenset(
    {"idle", "completed", "stopped", "failed"}
)

LogLevel = Literal["info", "warning", "error"]


class TrainingConfiguration(BaseModel):
    model_id: Annotated[str, Field(default="mistralai/Mistral-7B-Instruct-v0.1", min_length=1)]
    output_directory: Annotated[str, Field(default="finetuned-model", min_length=1)]
    epochs: Annotated[int, Field(default=5, gt=0)]
    learning_rate: Annotated[float, Field(default=1e-5, gt=0)]
    batch_size: Annotated[int, Field(default=8, gt=0)]
    max_sequence_length: Annotated[int, Field(default=512, gt=0)]
    verbose_logging: bool = False
    save_checkpoints: bool = False

    model_config = {"extra": "forbid", "frozen": True}


def build_configuration(raw: TrainingConfiguration | Mapping[str, object]) -> TrainingConfiguration:
    """Validate a configuration, raising ConfigurationError instead of ValidationError.

    Instances are re-validated too, since ``model_construct`` skips validation.
    """
    data: Mapping[str, object]
    data = raw.model_dump() if isinstance(raw, TrainingConfiguration) else raw
    try:
        return TrainingConfiguration.model_validate(dict(data))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"invalid training configuration: {problems}") from None


class LogEntry(BaseModel):
    ts: float
    message: str
    level: LogLevel = "info"

    model_config = {"extra": "forbid", "frozen": True}


class RunSnapshot(BaseModel):
    run_id: str | None = None
    status: RunStatus = "idle"
    current_epoch: int = 0
    total_epochs: int = 0
    current_loss: float | None = None
    progress: float = 0.0
    log: tuple[LogEntry, ...] = ()
    error: str | None = None
    config: TrainingConfiguration | None = None
    data_file: str | None = None
    output_path: str | None = None
    started_at: float | None = None
    finished_at: float | None = None
    has_trained_model: bool = False

    model_config = {"extra": "forbid", "frozen": True}

    @property
    def is_active(self: RunSnapshot) -> bool:
        return self.status in ACTIVE_STATUSES
