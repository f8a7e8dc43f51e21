from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field


class DownloadRequest(BaseModel):
    model_id: Annotated[str, Field(min_length=1, description="Hub repository id, e.g. org/name")]

    model_config = {"extra": "forbid", "validate_assignment": True}


class CancelDownloadResponse(BaseModel):
    model_id: str
    cancelled: bool

    model_config = {"extra": "forbid", "validate_assignment": True}
