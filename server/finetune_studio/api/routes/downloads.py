from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.params import Depends as DependsParamType

from ...core.errors.base import NotFoundError
from ...core.services.container import ServiceContainer
from ...core.services.data.model_downloader import DownloadState
from ..middleware import api_key_dependency
from ..schemas.downloads import CancelDownloadResponse, DownloadRequest


class _DownloadRoutes:
    def __init__(self: _DownloadRoutes, container: ServiceContainer) -> None:
        self.c = container

    def _state(self: _DownloadRoutes, model_id: str) -> DownloadState:
        st = self.c.studio.download_state(model_id)
        if st is None:
            raise NotFoundError(f"no download for {model_id}")
        return st

    def start(self: _DownloadRoutes, req: DownloadRequest) -> DownloadState:
        model_id = req.model_id.strip()
        self.c.studio.download_model(model_id)
        self.c.logging.adapter(category="api", service="downloads", model_id=model_id).info(
            "download start", extra={"event": "downloads_start"}
        )
        return self._state(model_id)

    def status(self: _DownloadRoutes, model_id: str = Query(..., min_length=1)) -> DownloadState:
        return self._state(model_id)

    def cancel(self: _DownloadRoutes, req: DownloadRequest) -> CancelDownloadResponse:
        return CancelDownloadResponse(
            model_id=req.model_id, cancelled=self.c.studio.cancel_download(req.model_id)
        )


def build_router(container: ServiceContainer) -> APIRouter:
    api_dep: DependsParamType = Depends(api_key_dependency(container.settings))
    router = APIRouter(dependencies=[api_dep])
    h = _DownloadRoutes(container)
    router.add_api_route(
        "", h.start, methods=["POST"], response_model=DownloadState, status_code=202
    )
    router.add_api_route("", h.status, methods=["GET"], response_model=DownloadState)
    router.add_api_route(
        "/cancel", h.cancel, methods=["POST"], response_model=CancelDownloadResponse
    )
    return router
