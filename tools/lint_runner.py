#!/usr/bin/env python3
from __future__ import annotations

import subprocess
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
SERVER = ROOT / "server"


def run(cmd: list[str], cwd: Path) -> int:
    proc = subprocess.run(cmd, cwd=str(cwd))
    return proc.returncode


def main(argv: list[str]) -> int:
    with_tests = "--tests" in argv
    steps: list[tuple[str, list[str], Path]] = [
        ("poetry lock", ["poetry", "lock"], ROOT),
        ("poetry sync --with dev", ["poetry", "sync", "--with", "dev"], ROOT),
        ("ruff --fix", ["poetry", "run", "ruff", "check", "server", "--fix"], ROOT),
        ("ruff format", ["poetry", "run", "ruff", "format", "server"], ROOT),
        ("mypy --strict", ["poetry", "run", "mypy", "finetune_studio", "tests"], SERVER),
        ("guards", [sys.executable, str(ROOT / "scripts" / "guard.py")], ROOT),
    ]
    if with_tests:
        steps.append(("pytest", ["poetry", "run", "pytest", "-q"], ROOT))
    for label, cmd, cwd in steps:
        print(f"[lint] {label}")
        if run(cmd, cwd) != 0:
            return 1
    print("[lint] OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
