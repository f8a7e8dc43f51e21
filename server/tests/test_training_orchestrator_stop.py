from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path

from conftest import FakeBackend, RunHarness, run_config
from finetune_studio.events.trainer import Event


def test_stop_during_training_halts_ticks(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend(delay=0.5))
    first_tick = threading.Event()

    def _on_event(ev: Event) -> None:
        if ev["type"] == "trainer.run.progress.v1":
            first_tick.set()

    h.orchestrator.subscribe(_on_event)
    h.orchestrator.start(run_config(epochs=10), str(data_file))
    assert first_tick.wait(timeout=60)

    stopped = h.orchestrator.stop()
    assert stopped.status == "stopped"
    epoch_at_stop = stopped.current_epoch
    assert 1 <= epoch_at_stop < 10

    final = h.orchestrator.wait(timeout=60)
    assert final.status == "stopped"
    assert final.current_epoch == epoch_at_stop
    assert final.has_trained_model is False
    assert final.log[-1].message.startswith("Training stopped by user")
    failed = [ev for ev in h.events if ev["type"] == "trainer.run.failed.v1"]
    assert len(failed) == 1 and failed[0]["status"] == "stopped"
    assert not any(ev["type"] == "trainer.run.completed.v1" for ev in h.events)


def test_stop_is_idempotent_and_noop_when_idle(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend(delay=0.5))
    idle = h.orchestrator.stop()
    assert idle.status == "idle" and idle.log == ()

    h.orchestrator.start(run_config(epochs=10), str(data_file))
    first = h.orchestrator.stop()
    second = h.orchestrator.stop()
    assert first.status == "stopped"
    assert second.status == "stopped"
    assert second.log == first.log


def test_stop_during_preparation_stops_before_training(
    make_harness: Callable[[FakeBackend], RunHarness], data_file: Path
) -> None:
    h = make_harness(FakeBackend(delay=0.5))
    h.orchestrator.start(run_config(epochs=2), str(data_file))
    snap = h.orchestrator.stop()
    assert snap.status == "stopped"
    final = h.orchestrator.wait(timeout=60)
    assert final.status == "stopped"
    assert final.current_epoch == 0
