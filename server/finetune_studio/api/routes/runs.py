from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeout

from fastapi import APIRouter, Depends, Query
from fastapi.params import Depends as DependsParamType

from ...core.contracts.training import RunSnapshot
from ...core.errors.base import ProcessError
from ...core.logging.types import LoggingExtra
from ...core.services.container import ServiceContainer
from ..middleware import api_key_dependency
from ..schemas.runs import (
    DataFileRequest,
    DataFileResponse,
    ModelTestRequest,
    ModelTestResponse,
    RunLogResponse,
    StartRunRequest,
)


class _RunsRoutes:
    c: ServiceContainer

    def __init__(self: _RunsRoutes, container: ServiceContainer) -> None:
        self.c = container

    def pick_data_file(self: _RunsRoutes, req: DataFileRequest) -> DataFileResponse:
        return DataFileResponse(path=self.c.studio.pick_data_file(req.path))

    def start_run(self: _RunsRoutes, req: StartRunRequest) -> RunSnapshot:
        overrides = req.model_dump(exclude_none=True)
        snap = self.c.studio.start_run(overrides)
        extra: LoggingExtra = {"event": "runs_start", "status": snap.status}
        self.c.logging.adapter(category="api", service="runs", run_id=snap.run_id).info(
            "runs start", extra=extra
        )
        return snap

    def stop_run(self: _RunsRoutes) -> RunSnapshot:
        snap = self.c.studio.stop_run()
        extra: LoggingExtra = {"event": "runs_stop", "status": snap.status}
        self.c.logging.adapter(category="api", service="runs").info("runs stop", extra=extra)
        return snap

    def current(self: _RunsRoutes) -> RunSnapshot:
        return self.c.studio.run()

    def logs(self: _RunsRoutes, tail: int = Query(20, ge=1)) -> RunLogResponse:
        snap = self.c.studio.run()
        entries = list(snap.log)[-tail:]
        return RunLogResponse(run_id=snap.run_id, entries=entries)

    def dismiss(self: _RunsRoutes) -> RunSnapshot:
        return self.c.studio.dismiss_run()

    def test_model(self: _RunsRoutes, req: ModelTestRequest) -> ModelTestResponse:
        default_prompt = self.c.settings.app.test_prompt
        prompt = req.prompt if req.prompt and req.prompt.strip() else default_prompt
        fut = self.c.studio.test_model(prompt)
        try:
            reply = fut.result(timeout=self.c.settings.app.test_timeout_sec + 5.0)
        except FutureTimeout:
            raise ProcessError("model test did not finish in time") from None
        return ModelTestResponse(prompt=prompt, response=reply)


def build_router(container: ServiceContainer) -> APIRouter:
    # Require API key for all routes under /runs
    api_dep: DependsParamType = Depends(api_key_dependency(container.settings))
    router = APIRouter(dependencies=[api_dep])
    h = _RunsRoutes(container)
    router.add_api_route(
        "/data-file", h.pick_data_file, methods=["POST"], response_model=DataFileResponse
    )
    router.add_api_route("/start", h.start_run, methods=["POST"], response_model=RunSnapshot)
    router.add_api_route("/stop", h.stop_run, methods=["POST"], response_model=RunSnapshot)
    router.add_api_route("/current", h.current, methods=["GET"], response_model=RunSnapshot)
    router.add_api_route(
        "/current/logs", h.logs, methods=["GET"], response_model=RunLogResponse
    )
    router.add_api_route("/dismiss", h.dismiss, methods=["POST"], response_model=RunSnapshot)
    router.add_api_route("/test", h.test_model, methods=["POST"], response_model=ModelTestResponse)
    return router
