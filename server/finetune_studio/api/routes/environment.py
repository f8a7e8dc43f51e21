from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.params import Depends as DependsParamType

from ...core.services.container import ServiceContainer
from ..middleware import api_key_dependency
from ..schemas.environment import EnvironmentResponse


def build_router(container: ServiceContainer) -> APIRouter:
    api_dep: DependsParamType = Depends(api_key_dependency(container.settings))
    router = APIRouter(dependencies=[api_dep])

    def current() -> EnvironmentResponse:
        env = container.studio.environment()
        if env is None:
            env = container.studio.probe()
        return EnvironmentResponse.from_status(env)

    def probe() -> EnvironmentResponse:
        env = container.studio.probe()
        container.logging.adapter(category="api", service="environment").info(
            "environment probed", extra={"event": "env_probe", "readiness": env.readiness}
        )
        return EnvironmentResponse.from_status(env)

    router.add_api_route("", current, methods=["GET"], response_model=EnvironmentResponse)
    router.add_api_route("/probe", probe, methods=["POST"], response_model=EnvironmentResponse)
    return router
