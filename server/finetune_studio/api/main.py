from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from ..core.config.settings import Settings
from ..core.errors.handlers import install_exception_handlers
from ..core.logging.setup import setup_logging
from ..core.services.container import ServiceContainer
from .middleware import RequestIdMiddleware, api_key_dependency
from .routes import downloads, environment, health, models, runs, studio


def create_app(
    settings: Settings | None = None, *, container: ServiceContainer | None = None
) -> FastAPI:
    cfg = settings or Settings()
    setup_logging(cfg.logging.level)
    c = container or ServiceContainer.from_settings(cfg)

    @asynccontextmanager
    async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
        # Probe once so readiness and the model list are populated on startup
        await run_in_threadpool(c.studio.probe)
        yield
        await run_in_threadpool(c.shutdown)

    app = FastAPI(title="Finetune Studio API", version="0.1.0", lifespan=_lifespan)
    # Expose container for testability and tooling
    app.state.container = c

    app.add_middleware(RequestIdMiddleware)
    app.state.api_key_dep = api_key_dependency(cfg)

    # Routers (container captured in closures)
    app.include_router(health.build_router(c), prefix="")
    app.include_router(environment.build_router(c), prefix="/environment", tags=["environment"])
    app.include_router(models.build_router(c), prefix="/models", tags=["models"])
    app.include_router(downloads.build_router(c), prefix="/downloads", tags=["downloads"])
    app.include_router(runs.build_router(c), prefix="/runs", tags=["runs"])
    app.include_router(studio.build_router(c), tags=["studio"])

    install_exception_handlers(app)

    logging.getLogger(__name__).info("API application initialized")
    return app


def main() -> None:
    import uvicorn

    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.server.host, port=settings.server.port)
