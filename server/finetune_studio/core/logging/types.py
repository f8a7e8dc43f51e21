from __future__ import annotations

from typing import TypedDict


class LoggingExtra(TypedDict, total=False):
    # Core logging context
    category: str
    service: str
    event: str
    run_id: str
    model_id: str
    error_code: str
    # Orchestrator and worker fields
    status: str
    stage: str
    epoch: int
    total_epochs: int
    loss: float
    progress: float
    steps: int
    count: int
    path: str
    reason: str
    returncode: int
    pid: int
    # Environment probe fields
    command: str
    version: str
    readiness: str
    # Hub download fields
    url: str
    filename: str
    size: int
    elapsed_seconds: float
    # API fields
    tail: int
    method: str
    request_id: str
