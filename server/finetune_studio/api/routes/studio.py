from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.params import Depends as DependsParamType

from ...core.contracts.studio import StudioView
from ...core.services.container import ServiceContainer
from ..middleware import api_key_dependency


def build_router(container: ServiceContainer) -> APIRouter:
    api_dep: DependsParamType = Depends(api_key_dependency(container.settings))
    router = APIRouter(dependencies=[api_dep])

    def view() -> StudioView:
        return container.studio.view()

    router.add_api_route("/studio", view, methods=["GET"], response_model=StudioView)
    return router
