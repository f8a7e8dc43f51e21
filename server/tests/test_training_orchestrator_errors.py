from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import FakeBackend, RunHarness, run_config, write_records
from finetune_studio.core.contracts.inventory import ModelArtifact
from finetune_studio.core.errors.base import (
    AlreadyRunningError,
    ConfigurationError,
    DataFileError,
    MissingArtifactError,
)


def test_start_while_running_is_rejected_and_run_untouched(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend(delay=0.3))
    first = h.orchestrator.start(run_config(epochs=5), str(data_file))
    with pytest.raises(AlreadyRunningError):
        h.orchestrator.start(run_config(epochs=1), str(data_file))
    snap = h.orchestrator.snapshot()
    assert snap.run_id == first.run_id
    assert snap.total_epochs == 5
    assert snap.status in ("loading", "tokenizing", "training", "saving")
    h.orchestrator.stop()


@pytest.mark.parametrize(
    "overrides",
    [{"epochs": 0}, {"learning_rate": -1.0}, {"batch_size": 0}, {"max_sequence_length": 0}],
)
def test_invalid_configuration_rejected_synchronously(
    make_harness: Callable[[FakeBackend], RunHarness],
    data_file: Path,
    overrides: dict[str, object],
) -> None:
    h = make_harness(FakeBackend())
    with pytest.raises(ConfigurationError):
        h.orchestrator.start(run_config(**overrides), str(data_file))
    snap = h.orchestrator.snapshot()
    assert snap.status == "idle" and snap.run_id is None and snap.log == ()


def test_unknown_or_incomplete_model_is_missing_artifact(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend())
    with pytest.raises(MissingArtifactError):
        h.orchestrator.start(run_config(model_id="org/absent"), str(data_file))
    h.inventory.register(
        ModelArtifact(
            id="org/partial",
            display_name="partial",
            size_bytes=0,
            storage_path=str(data_file.parent),
            downloaded=False,
        )
    )
    with pytest.raises(MissingArtifactError, match="not fully downloaded"):
        h.orchestrator.start(run_config(model_id="org/partial"), str(data_file))
    assert h.orchestrator.snapshot().status == "idle"


def test_missing_data_file_rejected(
    make_harness: Callable[[FakeBackend], RunHarness], tmp_path: Path
) -> None:
    h = make_harness(FakeBackend())
    with pytest.raises(DataFileError):
        h.orchestrator.start(run_config(), str(tmp_path / "nope.jsonl"))
    assert h.orchestrator.snapshot().status == "idle"


def test_nonzero_exit_drives_run_to_failed(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend(exit_code=3))
    h.orchestrator.start(run_config(epochs=2), str(data_file))
    final = h.orchestrator.wait(timeout=60)
    assert final.status == "failed"
    assert final.error is not None and "code 3" in final.error
    assert "out of memory" in final.error
    assert final.log[-1].level == "error"
    failed = [ev for ev in h.events if ev["type"] == "trainer.run.failed.v1"]
    assert failed and failed[-1]["status"] == "failed"


def test_process_exiting_early_fails_the_run(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    # Reports only the first epoch and then exits cleanly
    h = make_harness(FakeBackend(last_step=3))
    h.orchestrator.start(run_config(epochs=3), str(data_file))
    final = h.orchestrator.wait(timeout=60)
    assert final.status == "failed"
    assert final.current_epoch == 1
    assert final.error is not None and "epoch 1 of 3" in final.error


def test_malformed_data_fails_during_loading(
    make_harness: Callable[[FakeBackend], RunHarness], tmp_path: Path
) -> None:
    bad = tmp_path / "bad.jsonl"
    bad.write_text('{"instruction": "a", "output": "b"}\nnot json\n', encoding="utf-8")
    h = make_harness(FakeBackend())
    h.orchestrator.start(run_config(), str(bad))
    final = h.orchestrator.wait(timeout=60)
    assert final.status == "failed"
    assert final.error is not None and "line 2" in final.error
    assert h.backend.commands == []


def test_too_few_records_for_batch_fails_during_tokenizing(
    make_harness: Callable[[FakeBackend], RunHarness], tmp_path: Path
) -> None:
    small = write_records(tmp_path / "small.jsonl", 3)
    h = make_harness(FakeBackend())
    h.orchestrator.start(run_config(batch_size=8), str(small))
    final = h.orchestrator.wait(timeout=60)
    assert final.status == "failed"
    assert final.error is not None and "batch size 8" in final.error


def test_failed_run_stays_inspectable_until_dismissed(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend(exit_code=1))
    h.orchestrator.start(run_config(epochs=1), str(data_file))
    failed = h.orchestrator.wait(timeout=60)
    assert failed.status == "failed"
    assert h.orchestrator.snapshot().error == failed.error

    cleared = h.orchestrator.dismiss()
    assert cleared.status == "idle"
    assert cleared.error is None and cleared.log == () and cleared.run_id is None


def test_dismiss_rejected_while_active(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend(delay=0.5))
    h.orchestrator.start(run_config(epochs=5), str(data_file))
    with pytest.raises(AlreadyRunningError):
        h.orchestrator.dismiss()
    h.orchestrator.stop()


def test_test_model_requires_completed_run(
    make_harness: Callable[[FakeBackend], RunHarness],
) -> None:
    h = make_harness(FakeBackend())
    with pytest.raises(MissingArtifactError):
        h.orchestrator.test_model("hi")


def test_unknown_trainer_backend_is_configuration_error(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend())
    h.settings.app.trainer_backend = "does-not-exist"
    with pytest.raises(ConfigurationError, match="Unknown trainer backend"):
        h.orchestrator.start(run_config(), str(data_file))
    assert h.orchestrator.snapshot().status == "idle"


def test_dismiss_when_idle_is_noop(make_harness: Callable[[FakeBackend], RunHarness]) -> None:
    h = make_harness(FakeBackend())
    assert h.orchestrator.dismiss().status == "idle"
