from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    DATA_NOT_FOUND = "DATA_NOT_FOUND"
    CONFIG_INVALID = "CONFIG_INVALID"
    MISSING_ARTIFACT = "MISSING_ARTIFACT"
    DATA_FILE_INVALID = "DATA_FILE_INVALID"
    PROCESS_FAILED = "PROCESS_FAILED"
    ALREADY_RUNNING = "ALREADY_RUNNING"
    STORAGE_ERROR = "STORAGE_ERROR"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    DUPLICATE = "DUPLICATE"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTERNAL = "INTERNAL"


class AppError(Exception):
    def __init__(self: AppError, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self: AppError) -> dict[str, str]:
        return {"error": self.code.value, "message": self.message}


class _CodedError(AppError):
    CODE: ErrorCode = ErrorCode.INTERNAL

    def __init__(self: _CodedError, message: str) -> None:
        super().__init__(self.CODE, message)


class ConfigurationError(_CodedError):
    CODE = ErrorCode.CONFIG_INVALID


class MissingArtifactError(_CodedError):
    CODE = ErrorCode.MISSING_ARTIFACT


class DataFileError(_CodedError):
    CODE = ErrorCode.DATA_FILE_INVALID


class ProcessError(_CodedError):
    """External process crashed, exited non-zero or could not be spawned."""

    CODE = ErrorCode.PROCESS_FAILED


class AlreadyRunningError(_CodedError):
    CODE = ErrorCode.ALREADY_RUNNING


class StorageError(_CodedError):
    CODE = ErrorCode.STORAGE_ERROR


class DownloadError(_CodedError):
    CODE = ErrorCode.DOWNLOAD_FAILED


class NotFoundError(_CodedError):
    CODE = ErrorCode.DATA_NOT_FOUND


class DuplicateError(_CodedError):
    CODE = ErrorCode.DUPLICATE
