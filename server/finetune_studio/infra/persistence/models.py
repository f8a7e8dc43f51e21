from __future__ import annotations

import platform

from pydantic import BaseModel

from ...core.contracts.training import RunStatus, TrainingConfiguration


class ManifestSystem(BaseModel):
    cpu_count: int
    platform: str
    platform_release: str
    machine: str

    model_config = {"extra": "forbid", "frozen": True}


def current_system(cpu_count: int) -> ManifestSystem:
    return ManifestSystem(
        cpu_count=cpu_count,
        platform=platform.system(),
        platform_release=platform.release(),
        machine=platform.machine(),
    )


class RunManifest(BaseModel):
    run_id: str
    created_at: int
    model_id: str
    backend: str
    data_file: str
    config: TrainingConfiguration
    status: RunStatus = "loading"
    output_path: str | None = None
    logs_path: str
    train_count: int | None = None
    valid_count: int | None = None
    steps: int | None = None
    final_loss: float | None = None
    error: str | None = None
    finished_at: float | None = None
    system: ManifestSystem | None = None

    model_config = {"extra": "forbid", "validate_assignment": True}
