from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

Readiness = Literal["ready", "degraded", "not_ready"]


class ProbeResult(BaseModel):
    command: str
    ok: bool
    output: str = ""
    reason: str | None = None

    model_config = {"extra": "forbid", "frozen": True}


class EnvironmentStatus(BaseModel):
    interpreter_available: bool = False
    interpreter_version: str = ""
    ml_runtime_available: bool = False
    ml_runtime_version: str = ""
    cache_directory: str = ""
    cache_error: str | None = None
    total_memory_bytes: int | None = None

    model_config = {"extra": "forbid", "frozen": True}

    @property
    def readiness(self: EnvironmentStatus) -> Readiness:
        if self.interpreter_available and self.ml_runtime_available:
            return "ready" if self.cache_directory != "" else "degraded"
        return "not_ready"
