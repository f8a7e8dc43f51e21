from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.params import Depends as DependsParamType

from ...core.services.container import ServiceContainer
from ..middleware import api_key_dependency
from ..schemas.models import DeleteModelResponse, ModelListResponse, ModelOut, SelectModelRequest


class _ModelRoutes:
    def __init__(self: _ModelRoutes, container: ServiceContainer) -> None:
        self.c = container

    def _listing(self: _ModelRoutes) -> ModelListResponse:
        selected = self.c.inventory.selected()
        sid = selected.id if selected is not None else None
        return ModelListResponse(
            models=[ModelOut.from_artifact(a, selected_id=sid) for a in self.c.inventory.list()],
            selected_id=sid,
        )

    def list_models(self: _ModelRoutes) -> ModelListResponse:
        return self._listing()

    def scan(self: _ModelRoutes) -> ModelListResponse:
        self.c.studio.scan_models()
        return self._listing()

    def select(self: _ModelRoutes, req: SelectModelRequest) -> ModelListResponse:
        self.c.studio.select_model(req.model_id)
        return self._listing()

    def deselect(self: _ModelRoutes) -> ModelListResponse:
        self.c.studio.deselect_model()
        return self._listing()

    def delete(
        self: _ModelRoutes,
        model_id: str = Query(..., min_length=1),
        purge: bool = Query(False),
    ) -> DeleteModelResponse:
        deleted = self.c.studio.delete_model(model_id, purge=purge)
        self.c.logging.adapter(category="api", service="models", model_id=model_id).info(
            "model delete", extra={"event": "models_delete", "status": str(deleted)}
        )
        return DeleteModelResponse(model_id=model_id, deleted=deleted, purged=deleted and purge)


def build_router(container: ServiceContainer) -> APIRouter:
    api_dep: DependsParamType = Depends(api_key_dependency(container.settings))
    router = APIRouter(dependencies=[api_dep])
    h = _ModelRoutes(container)
    router.add_api_route("", h.list_models, methods=["GET"], response_model=ModelListResponse)
    router.add_api_route("", h.delete, methods=["DELETE"], response_model=DeleteModelResponse)
    router.add_api_route("/scan", h.scan, methods=["POST"], response_model=ModelListResponse)
    router.add_api_route("/select", h.select, methods=["POST"], response_model=ModelListResponse)
    router.add_api_route(
        "/deselect", h.deselect, methods=["POST"], response_model=ModelListResponse
    )
    return router
