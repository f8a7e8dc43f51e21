from __future__ import annotations

import time
from pathlib import Path
from typing import Final, Protocol

import httpx
from huggingface_hub import HfApi, hf_hub_download
from huggingface_hub.errors import (
    EntryNotFoundError,
    GatedRepoError,
    HfHubHTTPError,
    LocalEntryNotFoundError,
    RepositoryNotFoundError,
    RevisionNotFoundError,
)
from pydantic import BaseModel

from ...logging.service import LoggingService


class HubClientError(Exception):
    pass


class AuthorizationError(HubClientError):
    pass


class RestrictedRepoError(HubClientError):
    pass


class RepoNotFoundError(HubClientError):
    pass


class HubUnavailableError(HubClientError):
    """Transport failures and 5xx answers; the only errors worth retrying."""


class RepoFile(BaseModel):
    filename: str
    size: int | None = None

    model_config = {"extra": "forbid", "validate_assignment": True}


class RepoInfo(BaseModel):
    repo_id: str
    sha: str | None
    files: list[RepoFile]

    model_config = {"extra": "forbid", "validate_assignment": True}


class HubSource(Protocol):
    def model_info(self: HubSource, repo_id: str, *, revision: str) -> RepoInfo: ...

    def fetch(
        self: HubSource, repo_id: str, filename: str, *, revision: str, cache_dir: Path
    ) -> Path: ...


_HUB_ERRORS: Final[tuple[type[Exception], ...]] = (
    HfHubHTTPError,
    EntryNotFoundError,
    httpx.HTTPError,
)


def translate_hub_error(e: Exception, what: str) -> HubClientError:
    # LocalEntryNotFoundError is how hf_hub_download reports an unreachable hub
    if isinstance(e, LocalEntryNotFoundError):
        return HubUnavailableError(f"{what}: hub unreachable")
    if isinstance(e, GatedRepoError):
        return RestrictedRepoError(f"{what}: access to repository is restricted")
    if isinstance(e, (RepositoryNotFoundError, RevisionNotFoundError)):
        return RepoNotFoundError(f"{what}: repository or revision not found")
    if isinstance(e, EntryNotFoundError):
        return RepoNotFoundError(f"{what}: file not found")
    if isinstance(e, HfHubHTTPError):
        status = e.response.status_code if e.response is not None else 0
        if status in (401, 403):
            return AuthorizationError(f"{what}: unauthorized (HTTP {status})")
        if status >= 500:
            return HubUnavailableError(f"{what}: hub error (HTTP {status})")
        return HubClientError(f"{what}: HTTP {status}")
    return HubUnavailableError(f"{what}: {e}")


class HubClient:
    """Hub access through huggingface_hub.

    Files are written by ``hf_hub_download`` into the standard cache layout
    (``blobs/``, ``snapshots/<sha>/``, ``refs/<revision>``) under ``cache_dir``.
    """

    def __init__(
        self,
        endpoint: str = "",
        token: str = "",
        *,
        timeout_seconds: float = 60.0,
        retries: int = 3,
        backoff_seconds: float = 0.5,
    ) -> None:
        self._endpoint: Final[str | None] = endpoint.rstrip("/") or None
        self._token: Final[str | None] = token.strip() or None
        self._timeout: Final[float] = timeout_seconds
        self._retries: Final[int] = max(0, retries)
        self._backoff: Final[float] = max(0.0, backoff_seconds)
        self._api: Final[HfApi] = HfApi(endpoint=self._endpoint, token=self._token)
        self._logger = LoggingService.create().adapter(category="downloads", service="hub")

    def model_info(self, repo_id: str, *, revision: str = "main") -> RepoInfo:
        try:
            info = self._api.model_info(repo_id, revision=revision, files_metadata=True)
        except _HUB_ERRORS as e:
            raise translate_hub_error(e, repo_id) from e
        files = [RepoFile(filename=s.rfilename, size=s.size) for s in info.siblings or []]
        return RepoInfo(repo_id=repo_id, sha=info.sha, files=files)

    def fetch(self, repo_id: str, filename: str, *, revision: str, cache_dir: Path) -> Path:
        attempt = 0
        while True:
            try:
                path = hf_hub_download(
                    repo_id,
                    filename,
                    revision=revision,
                    cache_dir=str(cache_dir),
                    token=self._token,
                    endpoint=self._endpoint,
                    etag_timeout=self._timeout,
                )
                return Path(path)
            except _HUB_ERRORS as e:
                err = translate_hub_error(e, f"{repo_id}/{filename}")
                if not isinstance(err, HubUnavailableError) or attempt >= self._retries:
                    raise err from e
                attempt += 1
                self._logger.warning(
                    "Hub fetch retry",
                    extra={
                        "event": "download_retry",
                        "model_id": repo_id,
                        "filename": filename,
                        "count": attempt,
                        "reason": str(err),
                    },
                )
                time.sleep(self._backoff * attempt)
