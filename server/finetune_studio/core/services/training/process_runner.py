from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import Final

from ...errors.base import ProcessError

_logger: Final[logging.Logger] = logging.getLogger(__name__)


class ManagedProcess:
    """A child process whose merged stdout/stderr is consumed line by line.

    A reader thread drains the pipe into a buffer so the consumer can wait with a
    timeout, notice cancellation and enforce a deadline without blocking on the pipe.
    """

    def __init__(
        self: ManagedProcess,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        tail_lines: int = 20,
    ) -> None:
        self._argv = list(argv)
        self._cwd = cwd
        self._env = dict(env) if env is not None else None
        self._proc: subprocess.Popen[str] | None = None
        self._buf: deque[str] = deque()
        self._cond = threading.Condition()
        self._eof = False
        self._tail: deque[str] = deque(maxlen=tail_lines)
        self._reader: threading.Thread | None = None

    @property
    def pid(self: ManagedProcess) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def tail(self: ManagedProcess) -> list[str]:
        return list(self._tail)

    def start(self: ManagedProcess) -> None:
        proc_env = os.environ.copy()
        if self._env:
            proc_env.update(self._env)
        proc_env.setdefault("PYTHONUNBUFFERED", "1")
        try:
            self._proc = subprocess.Popen(
                self._argv,
                cwd=self._cwd,
                env=proc_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise ProcessError(f"failed to start {self._argv[0]}: {e}") from e
        _logger.info(
            "Process started",
            extra={"event": "process_started", "pid": self._proc.pid, "command": self._argv[0]},
        )
        self._reader = threading.Thread(
            target=self._drain, name=f"proc-reader-{self._proc.pid}", daemon=True
        )
        self._reader.start()

    def _drain(self: ManagedProcess) -> None:
        proc = self._proc
        try:
            if proc is not None and proc.stdout is not None:
                for raw in proc.stdout:
                    line = raw.rstrip("\r\n")
                    self._tail.append(line)
                    with self._cond:
                        self._buf.append(line)
                        self._cond.notify_all()
        except (OSError, ValueError) as e:
            # Pipe closed underneath us after terminate()
            _logger.debug("process reader stopped: %s", e)
        finally:
            with self._cond:
                self._eof = True
                self._cond.notify_all()

    def lines(
        self: ManagedProcess,
        *,
        should_stop: Callable[[], bool],
        deadline: float | None = None,
        poll_interval: float = 0.25,
    ) -> Iterator[str]:
        """Yield output lines until EOF, cancellation, or the monotonic deadline."""
        while True:
            if should_stop():
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise ProcessError("training process exceeded the run timeout")
            with self._cond:
                if not self._buf and not self._eof:
                    self._cond.wait(timeout=poll_interval)
                if self._buf:
                    line: str | None = self._buf.popleft()
                elif self._eof:
                    return
                else:
                    line = None
            if line is not None:
                yield line

    def wait(self: ManagedProcess, timeout: float | None = None) -> int:
        if self._proc is None:
            raise ProcessError("process was never started")
        try:
            code = self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise ProcessError(f"process did not exit within {timeout:g}s") from e
        if self._reader is not None:
            self._reader.join(timeout=1.0)
        return code

    def running(self: ManagedProcess) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def terminate(self: ManagedProcess, grace: float = 5.0) -> None:
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            _logger.warning(
                "process ignored SIGTERM, killing",
                extra={"event": "process_kill", "pid": proc.pid},
            )
            proc.kill()
            proc.wait(timeout=grace)


def run_bounded(argv: Sequence[str], *, timeout: float) -> str:
    """Run a short command to completion and return its stdout; ProcessError otherwise."""
    try:
        proc = subprocess.run(
            list(argv), capture_output=True, text=True, timeout=timeout, check=False
        )
    except subprocess.TimeoutExpired as e:
        raise ProcessError(f"{argv[0]} timed out after {timeout:g}s") from e
    except OSError as e:
        raise ProcessError(f"failed to start {argv[0]}: {e}") from e
    if proc.returncode != 0:
        lines = (proc.stderr or proc.stdout or "").strip().splitlines()
        detail = lines[-1] if lines else "no output"
        raise ProcessError(f"{argv[0]} exited with code {proc.returncode}: {detail}")
    return proc.stdout
