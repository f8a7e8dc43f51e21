from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

from ...core.contracts.inventory import ModelArtifact


class ModelOut(BaseModel):
    id: str
    display_name: str
    size_bytes: int
    size: str
    storage_path: str
    downloaded: bool
    selected: bool = False

    model_config = {"extra": "forbid", "validate_assignment": True}

    @classmethod
    def from_artifact(
        cls: type[ModelOut], a: ModelArtifact, *, selected_id: str | None
    ) -> ModelOut:
        return cls(
            id=a.id,
            display_name=a.display_name,
            size_bytes=a.size_bytes,
            size=a.size,
            storage_path=a.storage_path,
            downloaded=a.downloaded,
            selected=a.id == selected_id,
        )


class ModelListResponse(BaseModel):
    models: list[ModelOut]
    selected_id: str | None = None

    model_config = {"extra": "forbid", "validate_assignment": True}


class SelectModelRequest(BaseModel):
    model_id: Annotated[str, Field(min_length=1)]

    model_config = {"extra": "forbid", "validate_assignment": True}


class DeleteModelResponse(BaseModel):
    model_id: str
    deleted: bool
    purged: bool

    model_config = {"extra": "forbid", "validate_assignment": True}
