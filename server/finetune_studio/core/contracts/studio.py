from __future__ import annotations

from pydantic import BaseModel

from .environment import EnvironmentStatus, Readiness
from .inventory import ModelArtifact
from .training import RunSnapshot


class StudioView(BaseModel):
    """Everything the presentation layer renders, captured at one instant."""

    readiness: Readiness
    environment: EnvironmentStatus | None
    models: list[ModelArtifact]
    selected_model: ModelArtifact | None
    data_file: str | None
    run: RunSnapshot

    model_config = {"extra": "forbid", "frozen": True}
