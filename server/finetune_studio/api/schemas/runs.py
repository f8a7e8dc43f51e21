from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

from ...core.contracts.training import LogEntry


class DataFileRequest(BaseModel):
    path: Annotated[
        str, Field(min_length=1, description="JSONL file with instruction/input/output")
    ]

    model_config = {"extra": "forbid", "validate_assignment": True}


class DataFileResponse(BaseModel):
    path: str

    model_config = {"extra": "forbid", "validate_assignment": True}


class StartRunRequest(BaseModel):
    # Bounds are enforced by the orchestrator so that violations surface as
    # CONFIG_INVALID rather than request validation errors.
    model_id: str | None = None
    output_directory: str | None = None
    epochs: int | None = None
    learning_rate: float | None = None
    batch_size: int | None = None
    max_sequence_length: int | None = None
    verbose_logging: bool | None = None
    save_checkpoints: bool | None = None

    model_config = {"extra": "forbid", "validate_assignment": True}


class RunLogResponse(BaseModel):
    run_id: str | None
    entries: list[LogEntry]

    model_config = {"extra": "forbid", "validate_assignment": True}


class ModelTestRequest(BaseModel):
    prompt: str | None = None

    model_config = {"extra": "forbid", "validate_assignment": True}


class ModelTestResponse(BaseModel):
    prompt: str
    response: str

    model_config = {"extra": "forbid", "validate_assignment": True}
