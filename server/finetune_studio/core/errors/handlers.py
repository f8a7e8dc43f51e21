from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ...api.middleware import request_id_var
from .base import AppError, ErrorCode

_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.DATA_NOT_FOUND: 404,
    ErrorCode.MISSING_ARTIFACT: 404,
    ErrorCode.CONFIG_INVALID: 400,
    ErrorCode.DATA_FILE_INVALID: 400,
    ErrorCode.ALREADY_RUNNING: 409,
    ErrorCode.DUPLICATE: 409,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.DOWNLOAD_FAILED: 502,
    ErrorCode.PROCESS_FAILED: 500,
    ErrorCode.STORAGE_ERROR: 500,
    ErrorCode.INTERNAL: 500,
}


def status_for(code: ErrorCode) -> int:
    return _STATUS_MAP.get(code, 500)


def install_exception_handlers(app: FastAPI) -> None:
    async def _app_error_handler(_: Request, exc: Exception) -> JSONResponse:
        rid = request_id_var.get()
        if isinstance(exc, AppError):
            payload: dict[str, str] = {
                "error": exc.code.value,
                "code": exc.code.value,
                "message": exc.message,
                "request_id": rid,
            }
            return JSONResponse(content=payload, status_code=status_for(exc.code))
        payload2: dict[str, str] = {
            "error": ErrorCode.INTERNAL.value,
            "code": ErrorCode.INTERNAL.value,
            "message": str(exc),
            "request_id": rid,
        }
        return JSONResponse(content=payload2, status_code=500)

    async def _unhandled(_: Request, exc: Exception) -> JSONResponse:  # pragma: no cover
        rid = request_id_var.get()
        payload: dict[str, str] = {
            "code": ErrorCode.INTERNAL.value,
            "message": str(exc),
            "request_id": rid,
        }
        return JSONResponse(content=payload, status_code=500)

    # Explicit registration instead of decorators
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(Exception, _unhandled)
