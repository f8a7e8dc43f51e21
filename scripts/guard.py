#!/usr/bin/env python
"""Repository guard rules for finetune-studio.

Line rules apply to the package and its tests. Structural rules (silent excepts,
pydantic-first contracts, process and sleep boundaries) run per file. Exits 2 and
lists every violation when anything is flagged.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import NamedTuple

ROOT = Path(__file__).resolve().parent.parent
PACKAGE = ROOT / "server" / "finetune_studio"
TESTS = ROOT / "server" / "tests"

SKIP_DIRS = {".venv", "__pycache__", ".mypy_cache", ".ruff_cache"}

LINE_RULES: dict[str, re.Pattern[str]] = {
    # Typing escape hatches
    "typing.Any": re.compile(r"\btyping\.Any\b"),
    "Any usage": re.compile(r"(?<!\w)Any(?!\w)"),
    "type: ignore": re.compile(r"type:\s*ignore"),
    "typing.cast": re.compile(r"\btyping\.cast\b"),
    "noqa": re.compile(r"#\s*noqa\b"),
    # Drift markers
    "TODO": re.compile(r"\bTODO\b"),
    "FIXME": re.compile(r"\bFIXME\b"),
    "HACK": re.compile(r"\bHACK\b"),
    "XXX": re.compile(r"\bXXX\b"),
    # Output goes through logging only
    "print()": re.compile(r"(^|\s)print\s*\("),
    "logging.basicConfig": re.compile(r"\blogging\.basicConfig\s*\("),
    "dataclass(frozen=True)": re.compile(r"@dataclass\(\s*frozen\s*=\s*True\s*\)"),
    # Child processes are spawned from argv lists
    "shell=True": re.compile(r"\bshell\s*=\s*True\b"),
    "os.system": re.compile(r"\bos\.system\s*\("),
    "os.popen": re.compile(r"\bos\.popen\s*\("),
}

# Only these modules may talk to subprocess directly
PROCESS_MODULES = {
    PACKAGE / "core" / "services" / "training" / "process_runner.py",
    PACKAGE / "core" / "services" / "environment" / "prober.py",
}

_EXCEPT_RE = re.compile(r"^(\s*)except(\s+([^:]+))?:\s*(#.*)?$")
_SILENT_RE = re.compile(r"^\s+(pass|\.\.\.)\s*(#.*)?$")
_LOG_RE = re.compile(r"\.(debug|info|warning|error|exception|critical)\(")
_RAISE_RE = re.compile(r"\braise\b")


class Violation(NamedTuple):
    path: Path
    line: int
    rule: str

    def __str__(self: Violation) -> str:
        return f"{self.path.relative_to(ROOT)}:{self.line}: {self.rule}"


def iter_sources(bases: Iterable[Path]) -> Iterator[Path]:
    for base in bases:
        if not base.exists():
            continue
        for p in sorted(base.rglob("*.py")):
            if SKIP_DIRS.isdisjoint(p.parts):
                yield p


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def check_lines(path: Path, lines: list[str]) -> Iterator[Violation]:
    for i, line in enumerate(lines, start=1):
        for name, pat in LINE_RULES.items():
            if pat.search(line):
                yield Violation(path, i, f"disallowed pattern: {name}")


def _except_body(lines: list[str], start: int, indent: int) -> list[str]:
    body: list[str] = []
    for cur in lines[start:]:
        if cur.strip() == "":
            continue
        if _indent(cur) <= indent:
            break
        body.append(cur)
    return body


def check_excepts(path: Path, lines: list[str]) -> Iterator[Violation]:
    """Every handler logs or re-raises; broad handlers must do both."""
    for i, line in enumerate(lines, start=1):
        m = _EXCEPT_RE.match(line)
        if m is None:
            continue
        body = _except_body(lines, i, len(m.group(1)))
        if not body or _SILENT_RE.match(body[0]):
            yield Violation(path, i, "silent except body")
            continue
        types = (m.group(3) or "").strip()
        broad = types == "" or "Exception" in types
        logs = any(_LOG_RE.search(b) for b in body)
        raises = any(_RAISE_RE.search(b) for b in body)
        if broad and not (logs and raises):
            yield Violation(path, i, "broad except requires log and raise")
        elif not broad and not (logs or raises):
            yield Violation(path, i, "except block without log/raise")


def check_pydantic_first(path: Path, lines: list[str]) -> Iterator[Violation]:
    """Contracts and config are pydantic models, never dataclasses."""
    parts = path.parts
    if PACKAGE.name not in parts or not ({"contracts", "config"} & set(parts)):
        return
    for i, line in enumerate(lines, start=1):
        if re.match(r"^\s*@dataclass\b", line) or "from dataclasses import" in line:
            yield Violation(path, i, "dataclass in contracts/config")


def check_boundaries(path: Path, lines: list[str]) -> Iterator[Violation]:
    """subprocess stays behind the process modules; orchestrators never sleep."""
    if PACKAGE not in path.parents:
        return
    for i, line in enumerate(lines, start=1):
        if path not in PROCESS_MODULES and re.search(r"^\s*(import|from)\s+subprocess\b", line):
            yield Violation(path, i, "subprocess outside process modules")
        if "orchestrators" in path.parts and re.search(r"\btime\.sleep\s*\(", line):
            yield Violation(path, i, "sleep in orchestrator")


CHECKS: list[Callable[[Path, list[str]], Iterator[Violation]]] = [
    check_lines,
    check_excepts,
    check_pydantic_first,
    check_boundaries,
]


def scan(paths: Iterable[Path]) -> list[Violation]:
    found: list[Violation] = []
    for path in paths:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        for check in CHECKS:
            found.extend(check(path, lines))
    return found


def main() -> int:
    violations = scan(iter_sources([PACKAGE, TESTS]))
    if violations:
        print(f"Guard checks failed ({len(violations)}):")
        for v in violations:
            print(f"  {v}")
        return 2
    print("Guards OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
