"""AppError serialization and the coded subclasses."""

from __future__ import annotations

import pytest
from finetune_studio.core.errors.base import (
    AlreadyRunningError,
    AppError,
    ConfigurationError,
    DataFileError,
    DownloadError,
    DuplicateError,
    ErrorCode,
    MissingArtifactError,
    NotFoundError,
    ProcessError,
    StorageError,
)
from finetune_studio.core.errors.handlers import status_for


def test_app_error_to_dict() -> None:
    err = AppError(ErrorCode.INTERNAL, "Something went wrong")
    assert err.to_dict() == {"error": "INTERNAL", "message": "Something went wrong"}
    assert str(err) == "Something went wrong"


@pytest.mark.parametrize(
    ("cls", "code", "status"),
    [
        (ConfigurationError, ErrorCode.CONFIG_INVALID, 400),
        (DataFileError, ErrorCode.DATA_FILE_INVALID, 400),
        (MissingArtifactError, ErrorCode.MISSING_ARTIFACT, 404),
        (NotFoundError, ErrorCode.DATA_NOT_FOUND, 404),
        (AlreadyRunningError, ErrorCode.ALREADY_RUNNING, 409),
        (DuplicateError, ErrorCode.DUPLICATE, 409),
        (DownloadError, ErrorCode.DOWNLOAD_FAILED, 502),
        (ProcessError, ErrorCode.PROCESS_FAILED, 500),
        (StorageError, ErrorCode.STORAGE_ERROR, 500),
    ],
)
def test_coded_errors_carry_code_and_status(
    cls: type[AppError], code: ErrorCode, status: int
) -> None:
    err = cls("boom")
    assert isinstance(err, AppError)
    assert err.code is code
    assert err.message == "boom"
    assert status_for(err.code) == status
