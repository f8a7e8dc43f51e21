from __future__ import annotations

from pathlib import Path

import pytest
from finetune_studio.core.config.settings import Settings
from finetune_studio.core.contracts.training import build_configuration
from finetune_studio.core.errors.base import NotFoundError, StorageError
from finetune_studio.core.infra import paths
from finetune_studio.infra.storage.run_store import RunStore


def test_create_and_reload_manifest(tmp_path: Path) -> None:
    store = RunStore(runs_root=str(tmp_path / "runs"))
    cfg = build_configuration({"model_id": "Org/My_Model", "epochs": 2})
    m = store.create_run(cfg, backend="mlx-lora", data_file="/d/train.jsonl")
    assert m.run_id.startswith("org-my-model-")
    assert m.status == "loading"
    assert m.system is not None and m.system.cpu_count >= 1
    assert (store.run_dir(m.run_id) / "manifest.json").is_file()

    m.status = "completed"
    m.final_loss = 0.5
    store.save(m)
    loaded = store.load(m.run_id)
    assert loaded.status == "completed" and loaded.final_loss == 0.5
    assert loaded.config.epochs == 2


def test_run_ids_are_unique(tmp_path: Path) -> None:
    store = RunStore(runs_root=str(tmp_path))
    cfg = build_configuration({})
    ids = {store.create_run(cfg, backend="b", data_file="d").run_id for _ in range(5)}
    assert len(ids) == 5


def test_load_missing_and_corrupt(tmp_path: Path) -> None:
    store = RunStore(runs_root=str(tmp_path))
    with pytest.raises(NotFoundError):
        store.load("nope")
    (tmp_path / "bad").mkdir()
    (tmp_path / "bad" / "manifest.json").write_text("{", encoding="utf-8")
    with pytest.raises(StorageError):
        store.load("bad")


def test_create_run_unwritable_root(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    store = RunStore(runs_root=str(blocker / "runs"))
    with pytest.raises(StorageError):
        store.create_run(build_configuration({}), backend="b", data_file="d")


def test_save_failure_is_logged_not_raised(tmp_path: Path) -> None:
    store = RunStore(runs_root=str(tmp_path))
    m = store.create_run(build_configuration({}), backend="b", data_file="d")
    target = store.run_dir(m.run_id)
    (target / "manifest.json").unlink()
    target.rmdir()
    store.save(m)
    assert not target.exists()


def test_output_dir_resolution(settings: Settings, tmp_path: Path) -> None:
    assert paths.output_dir(settings, "adapter") == tmp_path / "outputs" / "adapter"
    assert paths.output_dir(settings, str(tmp_path / "abs")) == tmp_path / "abs"
    assert paths.run_logs_path(settings, "r1") == tmp_path / "runs" / "r1" / "logs.jsonl"
    assert paths.run_data_dir(settings, "r1") == tmp_path / "runs" / "r1" / "data"
