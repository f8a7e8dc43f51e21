from __future__ import annotations

import hmac
import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar

from fastapi import Header
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ..core.config.settings import Settings
from ..core.errors.base import AppError, ErrorCode
from ..core.logging.service import LoggingService

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id (client supplied or generated) and logs its outcome."""

    async def dispatch(
        self: RequestIdMiddleware, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = (request.headers.get(_REQUEST_ID_HEADER) or "").strip() or str(uuid.uuid4())
        token = request_id_var.set(rid)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[_REQUEST_ID_HEADER] = rid
        LoggingService.create().adapter(category="api", service="http").info(
            "request",
            extra={
                "event": "http_request",
                "method": request.method,
                "url": request.url.path,
                "status": str(response.status_code),
                "request_id": rid,
                "elapsed_seconds": round(time.perf_counter() - start, 4),
            },
        )
        return response


def api_key_dependency(settings: Settings) -> Callable[[str | None], None]:
    """Header check for ``X-API-Key``; a no-op when no key is configured."""
    required_key = settings.security.api_key.strip()
    if required_key == "":

        def _open(x_api_key: str | None = Header(default=None)) -> None:
            return None

        return _open

    expected = required_key.encode("utf-8")

    def _check(x_api_key: str | None = Header(default=None)) -> None:
        if x_api_key is None or not hmac.compare_digest(x_api_key.encode("utf-8"), expected):
            raise AppError(ErrorCode.UNAUTHORIZED, "Unauthorized")

    return _check
