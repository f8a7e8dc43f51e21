from __future__ import annotations

import json
import sys
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from finetune_studio.core.config.settings import AppConfig, Settings
from finetune_studio.core.contracts.inventory import repo_dir_name
from finetune_studio.core.contracts.trainer import DatasetPlan, TrainerBackend
from finetune_studio.core.contracts.training import TrainingConfiguration
from finetune_studio.core.services.inventory.model_inventory import ModelInventory
from finetune_studio.core.services.registries import TrainerRegistry
from finetune_studio.core.services.training.mlx_lora_backend import MLXLoraBackend
from finetune_studio.events.publisher import EventPublisher
from finetune_studio.events.trainer import Event
from finetune_studio.orchestrators.training_orchestrator import TrainingOrchestrator

# Child process speaking the mlx_lm progress protocol:
# argv = total_steps steps_per_report delay exit_code adapter_dir last_step
FAKE_TRAINER = r"""
import pathlib
import sys
import time

total, per, delay, code = int(sys.argv[1]), int(sys.argv[2]), float(sys.argv[3]), int(sys.argv[4])
adapter_dir, last = pathlib.Path(sys.argv[5]), int(sys.argv[6])
sys.stdout.write("Loading pretrained model\n")
sys.stdout.flush()
step = per
while step <= min(total, last):
    time.sleep(delay)
    sys.stdout.write(f"Iter {step}: Train loss {2.0 / step:.3f}, Learning Rate 1.000e-05\n")
    sys.stdout.flush()
    step += per
if code == 0:
    adapter_dir.mkdir(parents=True, exist_ok=True)
    (adapter_dir / "adapters.safetensors").write_bytes(b"lora")
else:
    sys.stdout.write("RuntimeError: out of memory\n")
sys.exit(code)
"""

FAKE_GENERATE = r"""
import sys
sys.stdout.write("==========\n" + sys.argv[2] + "\n==========\nPrompt: 12 tokens\n")
"""


class FakeBackend(MLXLoraBackend):
    """MLX backend whose commands run small local scripts instead of mlx_lm."""

    def __init__(
        self: FakeBackend,
        *,
        delay: float = 0.0,
        exit_code: int = 0,
        last_step: int | None = None,
        reply: str = "I am a fine-tuned assistant.",
    ) -> None:
        super().__init__(sys.executable)
        self.delay = delay
        self.exit_code = exit_code
        self.last_step = last_step
        self.reply = reply
        self.commands: list[list[str]] = []

    def train_command(
        self: FakeBackend,
        cfg: TrainingConfiguration,
        *,
        model_path: str,
        plan: DatasetPlan,
        adapter_dir: Path,
        seed: int,
    ) -> list[str]:
        last = self.last_step if self.last_step is not None else plan.total_steps
        argv = [
            sys.executable,
            "-c",
            FAKE_TRAINER,
            str(plan.total_steps),
            str(plan.steps_per_epoch),
            str(self.delay),
            str(self.exit_code),
            str(adapter_dir),
            str(last),
        ]
        self.commands.append(argv)
        return argv

    def generate_command(
        self: FakeBackend,
        *,
        model_path: str,
        adapter_dir: Path,
        prompt: str,
        max_tokens: int,
    ) -> list[str]:
        return [sys.executable, "-c", FAKE_GENERATE, prompt, self.reply]


@dataclass
class HubCache:
    root: Path

    def add(
        self: HubCache,
        model_id: str,
        *,
        files: dict[str, bytes] | None = None,
        incomplete: bool = False,
        revision: str = "main",
    ) -> Path:
        repo = self.root / repo_dir_name(model_id)
        snap = repo / "snapshots" / "abc123"
        snap.mkdir(parents=True, exist_ok=True)
        for name, body in (files or {"config.json": b"{}", "model.safetensors": b"w" * 64}).items():
            (snap / name).write_bytes(body)
        refs = repo / "refs"
        refs.mkdir(exist_ok=True)
        (refs / revision).write_text("abc123", encoding="utf-8")
        if incomplete:
            blobs = repo / "blobs"
            blobs.mkdir(exist_ok=True)
            (blobs / "deadbeef.incomplete").write_bytes(b"")
        return repo


@dataclass
class RunHarness:
    settings: Settings
    inventory: ModelInventory
    publisher: EventPublisher
    orchestrator: TrainingOrchestrator
    backend: FakeBackend
    events: list[Event] = field(default_factory=list)


def write_records(path: Path, count: int) -> Path:
    with path.open("w", encoding="utf-8") as f:
        for i in range(count):
            rec: dict[str, str] = {"instruction": f"Say {i}", "output": f"{i}"}
            if i % 2 == 0:
                rec["input"] = f"number {i}"
            f.write(json.dumps(rec) + "\n")
    return path


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        app=AppConfig(
            python_executable=sys.executable,
            ml_runtime_module="json",
            probe_timeout_sec=20.0,
            cache_candidates=[str(tmp_path / "hub")],
            runs_root=str(tmp_path / "runs"),
            outputs_root=str(tmp_path / "outputs"),
            stage_timeout_sec=30.0,
            stop_grace_sec=3.0,
            holdout_fraction=0.0,
            test_timeout_sec=30.0,
        )
    )


@pytest.fixture
def hub_cache(tmp_path: Path) -> HubCache:
    root = tmp_path / "hub"
    root.mkdir()
    return HubCache(root=root)


@pytest.fixture
def data_file(tmp_path: Path) -> Path:
    # 6 records, batch size 2 -> 3 steps per epoch
    return write_records(tmp_path / "train.jsonl", 6)


@pytest.fixture
def make_harness(
    settings: Settings, hub_cache: HubCache
) -> Iterator[Callable[[FakeBackend], RunHarness]]:
    created: list[RunHarness] = []

    def _make(backend: FakeBackend) -> RunHarness:
        hub_cache.add("org/tiny-model")
        inventory = ModelInventory()
        inventory.scan(hub_cache.root)
        publisher = EventPublisher()
        registry = TrainerRegistry(backends={settings.app.trainer_backend: backend})
        orch = TrainingOrchestrator(
            settings=settings, inventory=inventory, registry=registry, publisher=publisher
        )
        h = RunHarness(
            settings=settings,
            inventory=inventory,
            publisher=publisher,
            orchestrator=orch,
            backend=backend,
        )
        orch.subscribe(h.events.append)
        created.append(h)
        return h

    yield _make
    for h in created:
        h.orchestrator.shutdown()


def run_config(**overrides: object) -> dict[str, object]:
    cfg: dict[str, object] = {
        "model_id": "org/tiny-model",
        "output_directory": "adapter-out",
        "epochs": 3,
        "batch_size": 2,
        "learning_rate": 1e-4,
        "max_sequence_length": 128,
    }
    cfg.update(overrides)
    return cfg


def registry_with(backend: TrainerBackend, settings: Settings) -> TrainerRegistry:
    return TrainerRegistry(backends={settings.app.trainer_backend: backend})

