from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

from conftest import FakeBackend, RunHarness, run_config
from finetune_studio.core.contracts.training import ACTIVE_STATUSES


def test_full_run_emits_one_tick_per_epoch_and_completes(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend())
    snap = h.orchestrator.start(run_config(epochs=3), str(data_file))
    assert snap.status == "loading"
    assert snap.progress == 0.0 and snap.current_epoch == 0

    final = h.orchestrator.wait(timeout=60)
    assert final.status == "completed", final.error
    assert final.current_epoch == 3
    assert final.progress == 1.0
    assert final.has_trained_model is True
    assert final.output_path is not None
    assert (Path(final.output_path) / "adapters.safetensors").is_file()

    epoch_entries = [e for e in final.log if e.message.startswith("Epoch ")]
    assert [e.message.split(" ")[1] for e in epoch_entries] == ["1/3", "2/3", "3/3"]
    # Log entries are append-ordered
    stamps = [e.ts for e in final.log]
    assert stamps == sorted(stamps)


def test_run_events_and_stage_order(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend())
    h.orchestrator.start(run_config(epochs=2), str(data_file))
    h.orchestrator.wait(timeout=60)

    types = [ev["type"] for ev in h.events]
    assert types[0] == "trainer.run.started.v1"
    assert types[-1] == "trainer.run.completed.v1"
    stages = [ev["status"] for ev in h.events if ev["type"] == "trainer.run.stage.v1"]
    assert stages == ["loading", "tokenizing", "training", "saving"]
    progress = [ev for ev in h.events if ev["type"] == "trainer.run.progress.v1"]
    assert [ev["epoch"] for ev in progress] == [1, 2]
    values = [ev["progress"] for ev in progress]
    assert values == sorted(values) and values[-1] == 1.0


def test_run_writes_manifest_prepared_data_and_run_log(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend())
    snap = h.orchestrator.start(run_config(epochs=1), str(data_file))
    h.orchestrator.wait(timeout=60)
    assert snap.run_id is not None

    run_dir = Path(h.settings.app.runs_root) / snap.run_id
    manifest = json.loads((run_dir / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["status"] == "completed"
    assert manifest["model_id"] == "org/tiny-model"
    assert manifest["train_count"] == 6
    assert manifest["steps"] == 3
    assert manifest["final_loss"] is not None

    train_lines = (run_dir / "data" / "train.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(train_lines) == 6
    assert "### Instruction:" in json.loads(train_lines[0])["text"]

    logs = (run_dir / "logs.jsonl").read_text(encoding="utf-8").splitlines()
    assert logs, "per-run log file should not be empty"
    assert all(json.loads(line)["run_id"] == snap.run_id for line in logs)


def test_verbose_logging_forwards_process_output(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend())
    h.orchestrator.start(run_config(epochs=1, verbose_logging=True), str(data_file))
    final = h.orchestrator.wait(timeout=60)
    assert final.status == "completed"
    assert any(e.message == "Loading pretrained model" for e in final.log)


def test_restart_after_completion_resets_progress(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend())
    h.orchestrator.start(run_config(epochs=1), str(data_file))
    first = h.orchestrator.wait(timeout=60)
    assert first.status == "completed"

    again = h.orchestrator.start(run_config(epochs=2), str(data_file))
    assert again.status in ACTIVE_STATUSES
    assert again.progress == 0.0 and again.current_epoch == 0
    assert again.run_id != first.run_id
    assert not any(e.message.startswith("Epoch ") for e in again.log)
    final = h.orchestrator.wait(timeout=60)
    assert final.status == "completed" and final.current_epoch == 2


def test_test_model_appends_prompt_and_response(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend(reply="Hello, I was fine-tuned."))
    h.orchestrator.start(run_config(epochs=1), str(data_file))
    h.orchestrator.wait(timeout=60)

    reply = h.orchestrator.test_model("Who are you?").result(timeout=60)
    assert reply == "Hello, I was fine-tuned."
    messages = [e.message for e in h.orchestrator.snapshot().log]
    assert "Testing model with prompt: Who are you?" in messages
    assert "Model response: Hello, I was fine-tuned." in messages
