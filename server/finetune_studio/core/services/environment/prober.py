from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Final

from ...config.settings import Settings
from ...contracts.environment import EnvironmentStatus, ProbeResult
from ...errors.base import StorageError

_logger: Final[logging.Logger] = logging.getLogger(__name__)


def run_probe(argv: Sequence[str], *, timeout: float, accept_stderr: bool = False) -> ProbeResult:
    """Run one bounded external check.

    Succeeds only on exit code 0 with a non-empty payload on stdout (or stderr when
    ``accept_stderr`` is set). Timeouts and spawn errors are reported as failures.
    """
    command = " ".join(argv)
    try:
        proc = subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        _logger.debug("probe timed out: %s", command)
        return ProbeResult(command=command, ok=False, reason=f"timed out after {timeout:g}s")
    except OSError as e:
        _logger.debug("probe could not start: %s: %s", command, e)
        return ProbeResult(command=command, ok=False, reason=f"spawn failed: {e}")
    if proc.returncode != 0:
        tail = (proc.stderr or "").strip().splitlines()
        reason = tail[-1] if tail else f"exit code {proc.returncode}"
        return ProbeResult(command=command, ok=False, reason=reason)
    payload = (proc.stdout or "").strip()
    if payload == "" and accept_stderr:
        payload = (proc.stderr or "").strip()
    if payload == "":
        return ProbeResult(command=command, ok=False, reason="empty output")
    return ProbeResult(command=command, ok=True, output=payload.splitlines()[0].strip())


def resolve_cache_directory(candidates: Sequence[str]) -> Path:
    """Return the first existing candidate, creating the last one if none exist."""
    if not candidates:
        raise StorageError("no cache directory candidates configured")
    paths = [Path(os.path.expandvars(c)).expanduser() for c in candidates]
    for p in paths:
        if p.exists():
            return p
    default = paths[-1]
    try:
        default.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"failed to create cache directory {default}: {e}") from e
    _logger.info(
        "Created cache directory",
        extra={"event": "cache_dir_created", "path": str(default)},
    )
    return default


def total_memory_bytes() -> int | None:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError) as e:
        _logger.debug("physical memory unavailable: %s", e)
        return None
    if pages <= 0 or page_size <= 0:
        return None
    return int(pages) * int(page_size)


class EnvironmentProber:
    def __init__(self: EnvironmentProber, settings: Settings) -> None:
        self._python = settings.app.python_executable
        self._module = settings.app.ml_runtime_module
        self._timeout = settings.app.probe_timeout_sec
        self._candidates = list(settings.app.cache_candidates)

    def interpreter_command(self: EnvironmentProber) -> list[str]:
        return [self._python, "--version"]

    def runtime_command(self: EnvironmentProber) -> list[str]:
        code = (
            f"import {self._module} as _m; "
            "print(getattr(_m, '__version__', None) or 'unknown')"
        )
        return [self._python, "-c", code]

    def probe(self: EnvironmentProber) -> EnvironmentStatus:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="probe") as pool:
            f_interp = pool.submit(
                run_probe, self.interpreter_command(), timeout=self._timeout, accept_stderr=True
            )
            f_runtime = pool.submit(run_probe, self.runtime_command(), timeout=self._timeout)
            interp = f_interp.result()
            runtime = f_runtime.result()
        for res in (interp, runtime):
            if res.ok:
                _logger.info(
                    "Probe succeeded",
                    extra={"event": "probe_ok", "command": res.command, "version": res.output},
                )
            else:
                _logger.warning(
                    "Probe failed",
                    extra={"event": "probe_failed", "command": res.command, "reason": res.reason},
                )
        cache_error: str | None = None
        try:
            cache_dir = str(resolve_cache_directory(self._candidates))
        except StorageError as e:
            _logger.error(
                "Cache directory unresolved",
                extra={"event": "cache_dir_failed", "reason": e.message},
            )
            cache_dir = ""
            cache_error = e.message
        status = EnvironmentStatus(
            interpreter_available=interp.ok,
            interpreter_version=interp.output,
            ml_runtime_available=runtime.ok,
            ml_runtime_version=runtime.output,
            cache_directory=cache_dir,
            cache_error=cache_error,
            total_memory_bytes=total_memory_bytes(),
        )
        _logger.info(
            "Environment probed",
            extra={"event": "environment_probed", "readiness": status.readiness},
        )
        return status
