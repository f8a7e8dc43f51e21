from __future__ import annotations

from pydantic import BaseModel

from ...core.contracts.environment import EnvironmentStatus, Readiness
from ...core.contracts.inventory import human_size


class EnvironmentResponse(BaseModel):
    readiness: Readiness
    interpreter_available: bool
    interpreter_version: str
    ml_runtime_available: bool
    ml_runtime_version: str
    cache_directory: str
    cache_error: str | None = None
    total_memory_bytes: int | None = None
    total_memory: str | None = None

    model_config = {"extra": "forbid", "validate_assignment": True}

    @classmethod
    def from_status(cls: type[EnvironmentResponse], s: EnvironmentStatus) -> EnvironmentResponse:
        mem = s.total_memory_bytes
        return cls(
            readiness=s.readiness,
            interpreter_available=s.interpreter_available,
            interpreter_version=s.interpreter_version,
            ml_runtime_available=s.ml_runtime_available,
            ml_runtime_version=s.ml_runtime_version,
            cache_directory=s.cache_directory,
            cache_error=s.cache_error,
            total_memory_bytes=mem,
            total_memory=human_size(mem) if mem is not None else None,
        )
