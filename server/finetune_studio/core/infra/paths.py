from __future__ import annotations

from pathlib import Path

from ...core.config.settings import Settings


def _expand(raw: str) -> Path:
    return Path(raw).expanduser()


def runs_root(settings: Settings) -> Path:
    return _expand(settings.app.runs_root)


def outputs_root(settings: Settings) -> Path:
    return _expand(settings.app.outputs_root)


# Runs
def run_dir(settings: Settings, run_id: str) -> Path:
    return runs_root(settings) / run_id


def run_data_dir(settings: Settings, run_id: str) -> Path:
    return run_dir(settings, run_id) / "data"


def run_logs_path(settings: Settings, run_id: str) -> Path:
    return run_dir(settings, run_id) / "logs.jsonl"


def run_manifest_path(settings: Settings, run_id: str) -> Path:
    return run_dir(settings, run_id) / "manifest.json"


# Outputs (trained adapters)
def output_dir(settings: Settings, output_directory: str) -> Path:
    """Absolute output directories are used as-is; relative ones live under outputs_root."""
    p = _expand(output_directory)
    if p.is_absolute():
        return p
    return outputs_root(settings) / p
