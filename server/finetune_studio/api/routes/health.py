from __future__ import annotations

import redis as _redis
from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError

from ...core.services.container import ServiceContainer
from ..schemas.health import HealthzResponse, ReadyzResponse


def build_router(container: ServiceContainer) -> APIRouter:
    router = APIRouter()

    def healthz() -> HealthzResponse:
        container.logging.adapter(category="api", service="health").info(
            "healthz", extra={"event": "healthz"}
        )
        return HealthzResponse(status="ok")

    def readyz(response: Response) -> ReadyzResponse:
        log = container.logging.adapter(category="api", service="health")
        env = container.studio.environment()
        if env is None:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            log.info("readyz not ready", extra={"event": "readyz", "reason": "not-probed"})
            return ReadyzResponse(status="not_ready", reason="not-probed")
        if env.readiness == "not_ready":
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            log.info("readyz not ready", extra={"event": "readyz", "reason": "environment"})
            return ReadyzResponse(status="not_ready", reason="environment")
        client: _redis.Redis[str] | None = container.redis
        if client is not None:
            try:
                if not client.ping():
                    log.info(
                        "readyz degraded", extra={"event": "readyz", "reason": "redis no-pong"}
                    )
                    return ReadyzResponse(status="degraded", reason="redis no-pong")
            except RedisError:
                log.info("readyz degraded", extra={"event": "readyz", "reason": "redis error"})
                return ReadyzResponse(status="degraded", reason="redis error")
        if env.readiness == "degraded":
            log.info("readyz degraded", extra={"event": "readyz", "reason": "environment"})
            return ReadyzResponse(status="degraded", reason="environment")
        log.info("readyz", extra={"event": "readyz", "status": "ready"})
        return ReadyzResponse(status="ready")

    router.add_api_route("/healthz", healthz, methods=["GET"], response_model=HealthzResponse)
    router.add_api_route("/readyz", readyz, methods=["GET"], response_model=ReadyzResponse)
    return router
