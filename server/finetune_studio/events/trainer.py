from __future__ import annotations

import json
from typing import Literal, NotRequired, TypedDict

from ..core.contracts.training import RunStatus


class StartedV1(TypedDict):
    type: Literal["trainer.run.started.v1"]
    run_id: str
    model_id: str
    total_epochs: int
    data_file: str
    backend: str
    batch_size: NotRequired[int]
    learning_rate: NotRequired[float]
    max_sequence_length: NotRequired[int]


class StageV1(TypedDict):
    type: Literal["trainer.run.stage.v1"]
    run_id: str
    status: RunStatus


class ProgressV1(TypedDict):
    type: Literal["trainer.run.progress.v1"]
    run_id: str
    epoch: int
    total_epochs: int
    loss: float
    progress: float
    step: NotRequired[int]


class CompletedV1(TypedDict):
    type: Literal["trainer.run.completed.v1"]
    run_id: str
    loss: float | None
    output_path: str


class FailedV1(TypedDict):
    type: Literal["trainer.run.failed.v1"]
    run_id: str
    message: str
    status: Literal["failed", "stopped"]
    error_code: NotRequired[str]


Event = StartedV1 | StageV1 | ProgressV1 | CompletedV1 | FailedV1


def encode_event(ev: Event) -> str:
    return json.dumps(ev, separators=(",", ":"))
