from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest
from finetune_studio.core.errors.base import ProcessError
from finetune_studio.core.services.training.process_runner import ManagedProcess, run_bounded


def _script(body: str) -> list[str]:
    return [sys.executable, "-c", body]


def test_lines_stream_until_eof() -> None:
    proc = ManagedProcess(
        _script("import sys\nfor i in range(3):\n    sys.stdout.write(f'line {i}\\n')")
    )
    proc.start()
    got = list(proc.lines(should_stop=lambda: False))
    assert got == ["line 0", "line 1", "line 2"]
    assert proc.wait(timeout=10) == 0
    assert proc.tail == got
    assert proc.running() is False


def test_stderr_is_merged_and_exit_code_reported() -> None:
    proc = ManagedProcess(_script("import sys\nsys.stderr.write('boom\\n')\nsys.exit(4)"))
    proc.start()
    assert list(proc.lines(should_stop=lambda: False)) == ["boom"]
    assert proc.wait(timeout=10) == 4


def test_tail_is_bounded() -> None:
    proc = ManagedProcess(
        _script("import sys\nfor i in range(50):\n    sys.stdout.write(f'{i}\\n')"),
        tail_lines=5,
    )
    proc.start()
    for _ in proc.lines(should_stop=lambda: False):
        continue
    proc.wait(timeout=10)
    assert proc.tail == ["45", "46", "47", "48", "49"]


def test_should_stop_ends_iteration_and_terminate_kills() -> None:
    proc = ManagedProcess(_script("import time\ntime.sleep(30)"))
    proc.start()
    t0 = time.monotonic()
    assert list(proc.lines(should_stop=lambda: time.monotonic() - t0 > 0.3)) == []
    assert proc.running() is True
    proc.terminate(grace=5)
    assert proc.running() is False


def test_deadline_raises() -> None:
    proc = ManagedProcess(_script("import time\ntime.sleep(30)"))
    proc.start()
    with pytest.raises(ProcessError, match="run timeout"):
        for _ in proc.lines(should_stop=lambda: False, deadline=time.monotonic() + 0.3):
            continue
    proc.terminate(grace=5)


def test_wait_timeout_raises() -> None:
    proc = ManagedProcess(_script("import time\ntime.sleep(30)"))
    proc.start()
    with pytest.raises(ProcessError):
        proc.wait(timeout=0.2)
    proc.terminate(grace=5)


def test_start_failure_is_process_error(tmp_path: Path) -> None:
    proc = ManagedProcess([str(tmp_path / "missing-binary")])
    with pytest.raises(ProcessError, match="failed to start"):
        proc.start()
    assert proc.pid is None
    with pytest.raises(ProcessError):
        proc.wait()


def test_env_is_passed_to_child() -> None:
    proc = ManagedProcess(
        _script("import os, sys\nsys.stdout.write(os.environ['FS_TEST_VALUE'])"),
        env={"FS_TEST_VALUE": "hello"},
    )
    proc.start()
    assert list(proc.lines(should_stop=lambda: False)) == ["hello"]
    proc.wait(timeout=10)


def test_run_bounded() -> None:
    assert run_bounded(_script("import sys\nsys.stdout.write('ok')"), timeout=10) == "ok"
    with pytest.raises(ProcessError, match="code 3"):
        run_bounded(_script("import sys\nsys.stderr.write('bad\\n')\nsys.exit(3)"), timeout=10)
    with pytest.raises(ProcessError, match="timed out"):
        run_bounded(_script("import time\ntime.sleep(10)"), timeout=0.2)
